"""Mailbox OTP retrieval.

Opens a fresh mail session per call, searches recent unread messages,
picks the newest and extracts the first standalone 6-digit code.
"""

from __future__ import annotations

import asyncio
import email
import logging
import re
from datetime import datetime, timedelta, timezone
from email import policy
from enum import Enum
from html.parser import HTMLParser
from typing import Callable

from pydantic import BaseModel

from .exceptions import TransportError
from .mail import ImapTransport, resolve_mail_server
from .ports import MailCandidate, MailTransportPort, SearchCriteria

logger = logging.getLogger(__name__)

CODE_PATTERN = re.compile(r"\b\d{6}\b")


class OtpSource(str, Enum):
    """Where an OTP came from."""

    TOTP = "otp"
    MAILBOX = "mailbox"


class LookupStatus(str, Enum):
    """Outcome of a code lookup."""

    FOUND = "found"
    NO_MESSAGES = "no_messages"
    NO_CODE = "no_code"


class CodeLookup(BaseModel):
    """Tagged result of an OTP lookup. ``code`` is set only when FOUND."""

    status: LookupStatus
    source: OtpSource
    code: str | None = None

    @property
    def found(self) -> bool:
        return self.status is LookupStatus.FOUND


class _HTMLTextExtractor(HTMLParser):
    """Extract plain text from HTML content."""

    def __init__(self) -> None:
        super().__init__()
        self.text: list[str] = []
        self._skip = 0

    def handle_starttag(self, tag, attrs):
        if tag.lower() in ("script", "style"):
            self._skip += 1

    def handle_endtag(self, tag):
        if tag.lower() in ("script", "style") and self._skip:
            self._skip -= 1

    def handle_data(self, data):
        if not self._skip:
            self.text.append(data)

    def get_text(self) -> str:
        return " ".join(self.text)


def html_to_text(html: str) -> str:
    extractor = _HTMLTextExtractor()
    extractor.feed(html)
    extractor.close()
    return extractor.get_text()


def message_text(raw: bytes) -> str:
    """Return the readable text of a MIME message.

    Prefers the text/plain body; falls back to text/html with tags stripped.
    """
    msg = email.message_from_bytes(raw, policy=policy.default)
    part = msg.get_body(preferencelist=("plain", "html"))
    if part is None:
        return ""
    try:
        content = part.get_content()
    except (LookupError, ValueError) as e:
        logger.warning(f"Failed to decode message body: {e}")
        payload = part.get_payload(decode=True) or b""
        content = payload.decode("utf-8", errors="ignore")
    if part.get_content_type() == "text/html":
        return html_to_text(content)
    return content


def extract_code(text: str) -> str | None:
    """Return the first standalone 6-digit sequence in ``text``."""
    match = CODE_PATTERN.search(text or "")
    return match.group(0) if match else None


def newest(candidates: list[MailCandidate]) -> MailCandidate:
    """Return the candidate with the latest receipt time."""
    return sorted(candidates, key=lambda c: c.received_at, reverse=True)[0]


class MailboxOtpFetcher:
    """Fetch the latest OTP code from an account's inbox."""

    def __init__(
        self,
        transport_factory: Callable[[], MailTransportPort] = ImapTransport,
        sender_filter: str | None = None,
        lookback: timedelta = timedelta(minutes=5),
        timeout: float = 10.0,
        verify_tls: bool = True,
    ) -> None:
        self._transport_factory = transport_factory
        self._sender_filter = sender_filter or None
        self._lookback = lookback
        self._timeout = timeout
        self._verify_tls = verify_tls

    async def fetch_latest_code(
        self,
        account_email: str,
        app_password: str,
        sender_filter: str | None = None,
    ) -> CodeLookup:
        """Search the inbox and return the code from the newest message.

        Raises:
            UnsupportedProvider: if the email domain has no known server.
            TransportError: on connection or search failure, or when the
                whole session exceeds twice the timeout.
        """
        config = resolve_mail_server(
            account_email, app_password, timeout=self._timeout, verify_tls=self._verify_tls
        )
        sender = sender_filter or self._sender_filter
        since = datetime.now(timezone.utc) - self._lookback
        criteria = SearchCriteria(since=since, unseen=True, sender=sender)
        # socket timeouts bound each IMAP call; this bounds the session
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._fetch_blocking, config, criteria),
                timeout=self._timeout * 2,
            )
        except TimeoutError as e:
            raise TransportError(f"mail session with {config.host} timed out") from e

    def _fetch_blocking(self, config, criteria: SearchCriteria) -> CodeLookup:
        transport = self._transport_factory()
        try:
            transport.connect(config)
            candidates = transport.search(criteria)
            logger.info(
                "mailbox.search",
                extra={"account": config.user, "candidates": len(candidates)},
            )
            if not candidates:
                return CodeLookup(status=LookupStatus.NO_MESSAGES, source=OtpSource.MAILBOX)
            latest = newest(candidates)
            code = extract_code(message_text(latest.raw_body))
            if code is None:
                return CodeLookup(status=LookupStatus.NO_CODE, source=OtpSource.MAILBOX)
            return CodeLookup(status=LookupStatus.FOUND, source=OtpSource.MAILBOX, code=code)
        finally:
            transport.close()
