"""Immutable conversation ledger with token estimation and compaction.

A :class:`ConversationSession` is never mutated: appending a turn or
compacting the ledger returns a new session value that keeps the same id and
start time. The orchestrator swaps its live reference to the new value.
"""

from __future__ import annotations

import math
import re
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple


class Speaker(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Turn:
    """One utterance in a conversation."""

    speaker: Speaker
    text: str
    created_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def user(cls, text: str, created_at: Optional[datetime] = None) -> "Turn":
        return cls(Speaker.USER, text, created_at or _utcnow())

    @classmethod
    def assistant(cls, text: str, created_at: Optional[datetime] = None) -> "Turn":
        return cls(Speaker.ASSISTANT, text, created_at or _utcnow())

    @property
    def is_user(self) -> bool:
        return self.speaker is Speaker.USER

    @property
    def formatted_time(self) -> str:
        return self.created_at.strftime("%H:%M")

    def word_count(self) -> int:
        return len(self.text.split())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "speaker": self.speaker.value,
            "text": self.text,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class ConversationSession:
    """Ordered, append-only ledger of turns plus identity metadata."""

    id: str
    started_at: datetime
    turns: Tuple[Turn, ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "turns", tuple(self.turns))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    def __len__(self) -> int:
        return len(self.turns)

    def recent(self, max_turns: int) -> List[Turn]:
        """Return the last ``max_turns`` turns, or all of them if fewer exist."""
        if max_turns <= 0:
            return []
        return list(self.turns[-max_turns:])

    def user_turns(self) -> List[Turn]:
        return [turn for turn in self.turns if turn.is_user]

    def assistant_turns(self) -> List[Turn]:
        return [turn for turn in self.turns if not turn.is_user]

    def estimated_tokens(self) -> int:
        """Rough token count: ~0.75 token per whitespace-delimited word, halves rounded up."""
        return math.floor(sum(turn.word_count() for turn in self.turns) * 0.75 + 0.5)

    def needs_compaction(self, threshold_tokens: int = 1500) -> bool:
        return self.estimated_tokens() > threshold_tokens

    def compacted(self, keep_turns: int = 6) -> "ConversationSession":
        metadata = dict(self.metadata)
        metadata["condensed"] = True
        metadata["original_turn_count"] = len(self.turns)
        return ConversationSession(
            id=self.id,
            started_at=self.started_at,
            turns=tuple(self.recent(keep_turns)),
            metadata=metadata,
        )

    def append(self, turn: Turn) -> "ConversationSession":
        return ConversationSession(
            id=self.id,
            started_at=self.started_at,
            turns=self.turns + (turn,),
            metadata=self.metadata,
        )

    def duration(self, now: Optional[datetime] = None) -> timedelta:
        return (now or _utcnow()) - self.started_at

    def summary(self, now: Optional[datetime] = None) -> str:
        if not self.turns:
            return "Nouvelle conversation"
        minutes = int(self.duration(now).total_seconds() // 60)
        return (
            f"Session: {len(self.user_turns())} messages utilisateur, "
            f"{len(self.assistant_turns())} réponses assistant, "
            f"durée: {minutes}min"
        )

    def export_text(self, now: Optional[datetime] = None) -> str:
        """Render the conversation as a plain-text transcript."""
        minutes = int(self.duration(now).total_seconds() // 60)
        lines = [
            "=== MailMind Conversation ===",
            f"Session ID: {self.id}",
            f"Date: {self.started_at.isoformat()}",
            f"Messages: {len(self.turns)}",
            f"Duration: {minutes} minutes",
            "",
        ]
        for turn in self.turns:
            role = "USER" if turn.is_user else "ASSISTANT"
            lines.append(f"[{role}] {turn.formatted_time}")
            lines.append(turn.text)
            lines.append("")
        return "\n".join(lines) + "\n"

    def extract_topics(self, limit: int = 5) -> List[str]:
        """Most frequent words longer than three characters."""
        text = " ".join(turn.text.lower() for turn in self.turns)
        words = [word for word in re.split(r"\W+", text) if len(word) > 3]
        return [word for word, _ in Counter(words).most_common(limit)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.id,
            "started_at": self.started_at.isoformat(),
            "message_count": len(self.turns),
            "estimated_tokens": self.estimated_tokens(),
            "topics": self.extract_topics(),
            "metadata": dict(self.metadata),
            "turns": [turn.to_dict() for turn in self.turns],
        }


def new_session() -> ConversationSession:
    return ConversationSession(id=uuid.uuid4().hex, started_at=_utcnow())


def session_from_history(
    history: Sequence[str], base: Optional[ConversationSession] = None
) -> ConversationSession:
    """Build a session from alternating user/assistant strings.

    Entries are paired in order; a trailing unpaired entry is ignored. The
    session reuses ``base``'s id and start time when given.
    """
    now = _utcnow()
    total = len(history)
    turns: List[Turn] = []
    for index in range(0, total - 1, 2):
        turns.append(Turn.user(history[index], now - timedelta(minutes=total - index)))
        turns.append(Turn.assistant(history[index + 1], now - timedelta(minutes=total - index - 1)))

    if base is None:
        base = new_session()
    return ConversationSession(id=base.id, started_at=base.started_at, turns=tuple(turns))
