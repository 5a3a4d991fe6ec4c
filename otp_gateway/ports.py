"""Capability ports for the gateway's external collaborators.

Adapters implement these protocols. ``build_gateway`` picks a real adapter
when its settings are present and the no-op adapter below otherwise.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)


class UpsertResult(str, Enum):
    """Outcome of a ledger upsert."""

    INSERTED = "inserted"
    UPDATED = "updated"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class MailServerConfig:
    """Connection settings for one IMAP session."""

    user: str
    password: str = field(repr=False)
    host: str
    port: int = 993
    tls: bool = True
    timeout: float = 10.0
    verify_tls: bool = True
    mailbox: str = "INBOX"


@dataclass(frozen=True)
class SearchCriteria:
    """Message filter for a mailbox search.

    ``since`` is an exact lower bound on the server receipt time.
    """

    since: datetime
    unseen: bool = False
    sender: str | None = None
    subject: str | None = None


@dataclass(frozen=True)
class MailCandidate:
    """A message returned by a search, ephemeral per request."""

    received_at: datetime
    raw_body: bytes = field(repr=False)


class NotifierPort(Protocol):
    """Out-of-band channel that delivers rotated PINs to an operator."""

    async def send(self, to_address: str, subject: str, body: str) -> bool:
        """Deliver a message. Returns True on success."""
        ...


class LedgerPort(Protocol):
    """Durable record of the current PIN per account."""

    async def upsert(self, email: str, pin: str) -> UpsertResult:
        """Insert or update the PIN recorded for ``email``."""
        ...


class MailTransportPort(Protocol):
    """Blocking mail session. One instance serves one session."""

    def connect(self, config: MailServerConfig) -> None:
        """Open, authenticate and select the configured mailbox."""
        ...

    def search(self, criteria: SearchCriteria) -> list[MailCandidate]:
        """Return messages matching ``criteria``."""
        ...

    def close(self) -> None:
        """Close the session. Safe to call when not connected."""
        ...


class NullNotifier:
    """Notifier used when no SMTP server is configured."""

    async def send(self, to_address: str, subject: str, body: str) -> bool:
        logger.warning("notifier.disabled", extra={"to": to_address, "subject": subject})
        return False


class NullLedger:
    """Ledger used when no spreadsheet is configured."""

    async def upsert(self, email: str, pin: str) -> UpsertResult:
        logger.warning("ledger.disabled", extra={"email": email})
        return UpsertResult.SKIPPED
