"""Rule-based mailbox intent classification and prompt rewriting.

The router never calls the model. It lowercases the user's text, decides
whether it concerns the mailbox and, if so, applies a fixed ordered rule
list where the first match wins. Overlapping keywords are resolved by that
order, not by scoring.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Optional, Tuple

from .boundaries import MailboxQuery

logger = logging.getLogger(__name__)

MAILBOX_KEYWORDS: Tuple[str, ...] = (
    "email", "mail", "message", "courrier", "inbox",
    "boîte", "boite", "réception", "reception",
    "combien", "how many", "dernier", "derniere", "dernière", "latest",
    "non lu", "pas lu", "unread",
    "reçu", "recu", "received", "envoyé", "envoye", "sender",
    "marie", "lucas", "banque", "cloud", "rh", "newsletter",
    "réunion", "reunion", "abonnement", "congé", "conge", "collaboration",
)
HOW_MANY_PHRASES: Tuple[str, ...] = ("combien", "how many")
UNREAD_PHRASES: Tuple[str, ...] = (
    "non lu", "pas lu", "pas encore lu", "ne sont pas", "non-lu", "unread",
)
MAIL_PHRASES: Tuple[str, ...] = ("email", "mail", "courrier")
LATEST_PHRASES: Tuple[str, ...] = (
    "dernier", "derniere", "dernière", "récent", "recent", "latest", "last email",
)
RECEIVED_PHRASES: Tuple[str, ...] = ("reçu", "recu", "received")
ENTITY_KEYWORDS: Tuple[str, ...] = (
    "banque", "cloud", "réunion", "marie", "lucas", "rh",
    "newsletter", "congé", "abonnement", "collaboration",
)

READ_ALOUD_TEMPLATE = (
    "Tu es un assistant vocal. Lis cet email à voix haute:\n"
    "\n"
    "De: {sender}\n"
    "Sujet: {subject}\n"
    "Contenu: {body}\n"
    "\n"
    "Reformule naturellement ce message en 2-3 phrases. STOP immédiatement après. "
    "NE COMMENTE PAS ton travail. NE DIS RIEN d'autre après avoir lu le message."
)
UNREAD_COUNT_TEMPLATE = "Réponds EXACTEMENT en une phrase: Tu as {count} emails non lus."
TOTAL_COUNT_TEMPLATE = "Réponds EXACTEMENT en une phrase: Tu as {count} emails au total."
NO_UNREAD_INSTRUCTION = "Réponds: Tu n'as pas d'emails non lus."
UNREAD_LIST_TEMPLATE = "Réponds: Tu as {count} emails non lus de: {listing}"
UNSUPPORTED_INSTRUCTION = (
    "Réponds en UNE phrase courte: Je ne peux pas répondre à cette question sur les emails."
)


class IntentRule(str, Enum):
    PASSTHROUGH = "passthrough"
    UNREAD_COUNT = "unread_count"
    TOTAL_COUNT = "total_count"
    LATEST = "latest"
    ENTITY = "entity"
    UNREAD_LIST = "unread_list"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class IntentDecision:
    rule: IntentRule
    prompt: str
    keyword: Optional[str] = None


def _contains_any(text: str, phrases: Iterable[str]) -> bool:
    return any(phrase in text for phrase in phrases)


def read_aloud_instruction(record: Any) -> str:
    return READ_ALOUD_TEMPLATE.format(
        sender=record.sender_name,
        subject=record.subject,
        body=record.body,
    )


class IntentRouter:
    """Rewrites mailbox questions into terse instructions for the backend."""

    def __init__(self, mailbox: Optional[MailboxQuery]) -> None:
        self.mailbox = mailbox

    def is_mailbox_related(self, text: str) -> bool:
        return _contains_any(text.lower(), MAILBOX_KEYWORDS)

    def rewrite(self, text: str) -> str:
        return self.route(text).prompt

    def route(self, text: str) -> IntentDecision:
        if self.mailbox is None or not self.is_mailbox_related(text):
            return IntentDecision(IntentRule.PASSTHROUGH, text)

        decision = self._classify(text.lower())
        logger.info("Mailbox intent matched rule %s", decision.rule.value)
        return decision

    def _classify(self, query: str) -> IntentDecision:
        mailbox = self.mailbox
        asks_count = _contains_any(query, HOW_MANY_PHRASES)
        mentions_unread = _contains_any(query, UNREAD_PHRASES)

        if asks_count and mentions_unread:
            prompt = UNREAD_COUNT_TEMPLATE.format(count=mailbox.unread_count())
            return IntentDecision(IntentRule.UNREAD_COUNT, prompt)
        if asks_count and _contains_any(query, MAIL_PHRASES):
            prompt = TOTAL_COUNT_TEMPLATE.format(count=mailbox.total_count())
            return IntentDecision(IntentRule.TOTAL_COUNT, prompt)

        asks_latest = _contains_any(query, LATEST_PHRASES) or (
            _contains_any(query, RECEIVED_PHRASES) and _contains_any(query, MAIL_PHRASES)
        )
        if asks_latest:
            latest = mailbox.latest()
            if latest is not None:
                return IntentDecision(IntentRule.LATEST, read_aloud_instruction(latest))

        for keyword in ENTITY_KEYWORDS:
            if keyword not in query:
                continue
            results = mailbox.search(keyword)
            if results:
                return IntentDecision(IntentRule.ENTITY, read_aloud_instruction(results[0]), keyword)

        if mentions_unread:
            if mailbox.unread_count() == 0:
                return IntentDecision(IntentRule.UNREAD_LIST, NO_UNREAD_INSTRUCTION)
            unread = list(mailbox.unread())
            listing = ", ".join(f"{record.sender_name}: {record.subject}" for record in unread)
            prompt = UNREAD_LIST_TEMPLATE.format(count=len(unread), listing=listing)
            return IntentDecision(IntentRule.UNREAD_LIST, prompt)

        return IntentDecision(IntentRule.UNSUPPORTED, UNSUPPORTED_INSTRUCTION)
