"""Replay rotation notifications from a mailbox into the ledger.

Rotation writes to the ledger are best-effort. When a write failed but the
notification went out, the notification mail is the only record of the new
PIN; this job scans recent notifications and upserts them again.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Callable

from pydantic import BaseModel

from .exceptions import SyncNotConfigured, TransportError
from .mail import ImapTransport, resolve_mail_server
from .mailbox import message_text
from .ports import LedgerPort, MailCandidate, MailServerConfig, MailTransportPort, SearchCriteria, UpsertResult

logger = logging.getLogger(__name__)

NOTIFICATION_PATTERN = re.compile(r"(?P<identifier>[^\s,]+)\s*,\s*(?P<pin>\d{4})(?!\d)")


class SyncReport(BaseModel):
    """Counts returned by a sync run."""

    inspected: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0


def parse_notification(text: str) -> tuple[str, str] | None:
    """Return ``(identifier, pin)`` from a ``"<identifier>, <4 digits>"`` body."""
    match = NOTIFICATION_PATTERN.search(text or "")
    if match is None:
        return None
    return match.group("identifier"), match.group("pin")


class RotationSyncJob:
    """Scan the rotation inbox and replay notifications into the ledger."""

    def __init__(
        self,
        ledger: LedgerPort,
        inbox: str,
        app_password: str | None,
        subject: str,
        transport_factory: Callable[[], MailTransportPort] = ImapTransport,
        lookback: timedelta = timedelta(days=7),
        timeout: float = 10.0,
        verify_tls: bool = True,
    ) -> None:
        self._ledger = ledger
        self._inbox = inbox
        self._app_password = app_password
        self._subject = subject
        self._transport_factory = transport_factory
        self._lookback = lookback
        self._timeout = timeout
        self._verify_tls = verify_tls

    async def sync_from_mailbox(self) -> SyncReport:
        """Replay recent rotation notifications, oldest first.

        Raises:
            SyncNotConfigured: if no inbox or app password is configured.
            UnsupportedProvider: if the inbox domain has no known server.
            TransportError: on connection or search failure.
        """
        if not self._inbox or not self._app_password:
            raise SyncNotConfigured()
        config = resolve_mail_server(
            self._inbox, self._app_password, timeout=self._timeout, verify_tls=self._verify_tls
        )
        criteria = SearchCriteria(
            since=datetime.now(timezone.utc) - self._lookback,
            subject=self._subject,
        )
        try:
            candidates = await asyncio.wait_for(
                asyncio.to_thread(self._search_blocking, config, criteria),
                timeout=self._timeout * 2,
            )
        except TimeoutError as e:
            raise TransportError(f"mail session with {config.host} timed out") from e

        report = SyncReport()
        for candidate in sorted(candidates, key=lambda c: c.received_at):
            report.inspected += 1
            parsed = parse_notification(message_text(candidate.raw_body))
            if parsed is None:
                report.skipped += 1
                continue
            identifier, pin = parsed
            result = await asyncio.wait_for(
                self._ledger.upsert(identifier, pin), timeout=self._timeout
            )
            if result is UpsertResult.INSERTED:
                report.inserted += 1
            elif result is UpsertResult.UPDATED:
                report.updated += 1
            else:
                report.skipped += 1

        logger.info("sync.done", extra=report.model_dump())
        return report

    def _search_blocking(
        self, config: MailServerConfig, criteria: SearchCriteria
    ) -> list[MailCandidate]:
        transport = self._transport_factory()
        try:
            transport.connect(config)
            return transport.search(criteria)
        finally:
            transport.close()
