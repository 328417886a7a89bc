"""Helpers for loading and querying the assistant's mailbox."""

from .loader import Mailbox, MailboxRecord, default_mailbox_path, load_mailbox

__all__ = ["Mailbox", "MailboxRecord", "default_mailbox_path", "load_mailbox"]
