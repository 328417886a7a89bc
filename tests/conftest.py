"""Pytest configuration for the assistant tests.

Provides an in-memory mailbox and a scripted backend so that no test needs a
running inference server.
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from assistant_module.backends import BackendAdapter, create_backend  # noqa: E402
from assistant_module.config import AssistantConfig, BackendDescriptor, BackendKind  # noqa: E402
from assistant_module.context import ConversationSession  # noqa: E402
from mailbox_store import Mailbox, MailboxRecord  # noqa: E402


class ScriptedBackend(BackendAdapter):
    """Backend whose probe and replies are controlled by the test."""

    def __init__(self, descriptor: BackendDescriptor, *, available: bool = True, **kwargs) -> None:
        super().__init__(descriptor, **kwargs)
        self.available = available
        self.replies: List[str] = []
        self.failure: Optional[BaseException] = None
        self.prompts: List[str] = []
        self.contexts: List[Optional[ConversationSession]] = []
        self.on_generate: Optional[Callable[[], None]] = None
        self.on_probe: Optional[Callable[[], None]] = None

    def _probe(self) -> None:
        if self.on_probe is not None:
            self.on_probe()
        if not self.available:
            raise ConnectionError("probe refused")

    def _generate(self, message: str, context: Optional[ConversationSession]) -> str:
        self.prompts.append(message)
        self.contexts.append(context)
        if self.on_generate is not None:
            self.on_generate()
        if self.failure is not None:
            raise self.failure
        if self.replies:
            return self.replies.pop(0)
        return f"echo: {message}"


def make_record(
    record_id: str,
    sender_name: str,
    subject: str,
    body: str = "",
    *,
    is_read: bool = False,
    days_ago: int = 0,
) -> MailboxRecord:
    return MailboxRecord(
        id=record_id,
        sender=f"{sender_name.split()[0].lower()}@example.com",
        sender_name=sender_name,
        subject=subject,
        body=body or f"Message about {subject}",
        received_at=datetime(2025, 3, 14, 9, 0, tzinfo=timezone.utc) - timedelta(days=days_ago),
        is_read=is_read,
    )


@pytest.fixture
def mailbox() -> Mailbox:
    return Mailbox(
        [
            make_record("1", "Marie Dupont", "Réunion projet jeudi", "On décale la réunion à 14h.", days_ago=0),
            make_record("2", "Ma Banque", "Relevé mensuel", "Votre relevé de banque est prêt.", days_ago=1),
            make_record("3", "Lucas Martin", "Proposition de collaboration", is_read=True, days_ago=2),
            make_record("4", "Tech Digest", "Newsletter hebdomadaire", is_read=True, days_ago=3),
        ]
    )


@pytest.fixture
def descriptor() -> BackendDescriptor:
    return BackendDescriptor.http("http://inference.test:11434", "test-model")


@pytest.fixture
def config(descriptor) -> AssistantConfig:
    return AssistantConfig(backend=descriptor)


@pytest.fixture
def backends() -> List[ScriptedBackend]:
    """Every backend built by ``scripted_factory``, in creation order."""
    return []


@pytest.fixture
def scripted_factory(backends):
    def factory(descriptor: BackendDescriptor) -> BackendAdapter:
        if descriptor.kind is not BackendKind.HTTP_INFERENCE:
            return create_backend(descriptor)
        backend = ScriptedBackend(descriptor, available=descriptor.option("available", True))
        backends.append(backend)
        return backend

    return factory
