"""Load and query a JSON mailbox for the assistant's intent router.

The mailbox is a read-only collection of :class:`MailboxRecord` entries kept
newest first. It exposes the narrow query capability the assistant core
needs (counts, latest record, keyword search) plus a few helpers used by the
HTTP surface.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MailboxRecord:
    """One received email."""

    id: str
    sender: str
    sender_name: str
    subject: str
    body: str
    received_at: datetime
    is_read: bool = False
    attachments: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def has_attachments(self) -> bool:
        return bool(self.attachments)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "MailboxRecord":
        try:
            received = str(payload["receivedDate"]).replace("Z", "+00:00")
            return cls(
                id=str(payload["id"]),
                sender=str(payload["from"]),
                sender_name=str(payload["fromName"]),
                subject=str(payload["subject"]),
                body=str(payload["body"]),
                received_at=datetime.fromisoformat(received),
                is_read=bool(payload.get("isRead", False)),
                attachments=tuple(str(item) for item in payload.get("attachments") or ()),
            )
        except KeyError as exc:
            raise ValueError(f"Mailbox record is missing field {exc.args[0]!r}") from exc

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "from": self.sender,
            "fromName": self.sender_name,
            "subject": self.subject,
            "body": self.body,
            "receivedDate": self.received_at.isoformat(),
            "isRead": self.is_read,
            "hasAttachments": self.has_attachments,
            "attachments": list(self.attachments),
        }

    def to_context_string(self) -> str:
        lines = [
            f"Email #{self.id}:",
            f"De: {self.sender_name} <{self.sender}>",
            f"Date: {self.received_at.strftime('%d/%m/%Y %H:%M')}",
            f"Sujet: {self.subject}",
            "(Lu)" if self.is_read else "(Non lu)",
            f"Contenu: {self.body}",
        ]
        if self.has_attachments:
            lines.append(f"Pièces jointes: {', '.join(self.attachments)}")
        return "\n".join(lines)


class Mailbox:
    """In-memory mailbox sorted newest first."""

    def __init__(self, records: Sequence[MailboxRecord] = ()) -> None:
        self._records: List[MailboxRecord] = sorted(records, key=lambda r: r.received_at, reverse=True)

    def __len__(self) -> int:
        return len(self._records)

    def all(self) -> List[MailboxRecord]:
        return list(self._records)

    def total_count(self) -> int:
        return len(self._records)

    def unread(self) -> List[MailboxRecord]:
        return [record for record in self._records if not record.is_read]

    def unread_count(self) -> int:
        return sum(1 for record in self._records if not record.is_read)

    def latest(self) -> Optional[MailboxRecord]:
        return self._records[0] if self._records else None

    def get(self, record_id: str) -> Optional[MailboxRecord]:
        for record in self._records:
            if record.id == record_id:
                return record
        return None

    def search(self, keyword: str) -> List[MailboxRecord]:
        """Case-insensitive substring match over sender name, subject and body."""
        needle = keyword.lower()
        if not needle:
            return []
        return [
            record
            for record in self._records
            if needle in record.sender_name.lower()
            or needle in record.subject.lower()
            or needle in record.body.lower()
        ]

    def context_text(self, limit: int = 5) -> str:
        """Plain-text digest of the inbox for prompts and diagnostics."""
        if not self._records:
            return "Aucun email dans la boîte de réception."
        parts = [
            "=== BOÎTE DE RÉCEPTION ===",
            f"Total: {self.total_count()} email(s)",
            f"Non lus: {self.unread_count()} email(s)",
            "",
            "EMAILS RÉCENTS:",
        ]
        for record in self._records[:limit]:
            parts.append(record.to_context_string())
            parts.append("---")
        return "\n".join(parts)


def load_mailbox(path: Union[str, Path]) -> Mailbox:
    """Load a mailbox from a JSON file holding a list of records."""
    start_time = time.perf_counter()
    mailbox_path = Path(path)
    if not mailbox_path.exists():
        raise FileNotFoundError(f"Mailbox file not found at {mailbox_path}")

    logger.info("Loading mailbox from %s", mailbox_path)
    with mailbox_path.open("r", encoding="utf-8") as f:
        payload = json.load(f)

    if not isinstance(payload, list):
        raise ValueError("Mailbox file must contain a list of email entries")

    mailbox = Mailbox([MailboxRecord.from_dict(entry) for entry in payload])
    elapsed = time.perf_counter() - start_time
    logger.info(
        "Loaded %d email(s), %d unread, in %.2f seconds",
        mailbox.total_count(),
        mailbox.unread_count(),
        elapsed,
    )
    return mailbox


def default_mailbox_path() -> Path:
    return Path(__file__).resolve().parent / "data" / "mock_emails.json"
