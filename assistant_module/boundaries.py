"""Interfaces of the collaborators the assistant core talks to."""

from __future__ import annotations

from typing import Any, Optional, Protocol, Sequence


class MailboxQuery(Protocol):
    """Read-only view of the mailbox used for intent rewriting.

    Records expose ``sender``, ``sender_name``, ``subject``, ``body`` and
    ``is_read``.
    """

    def total_count(self) -> int: ...

    def unread_count(self) -> int: ...

    def unread(self) -> Sequence[Any]: ...

    def latest(self) -> Optional[Any]: ...

    def search(self, keyword: str) -> Sequence[Any]: ...


class SettingsProvider(Protocol):
    def voice_locale(self) -> Optional[str]: ...

    def tts_enabled(self) -> bool: ...


class SpeechOutput(Protocol):
    def speak(self, text: str) -> None: ...
