"""IMAP mail transport and provider lookup."""

from __future__ import annotations

import imaplib
import logging
import ssl
import time
from datetime import datetime, timedelta, timezone

from .exceptions import TransportError, UnsupportedProvider
from .ports import MailCandidate, MailServerConfig, SearchCriteria

logger = logging.getLogger(__name__)

# domain -> (host, port, tls)
IMAP_PROVIDERS: dict[str, tuple[str, int, bool]] = {
    "gmail.com": ("imap.gmail.com", 993, True),
    "yahoo.com": ("imap.mail.yahoo.com", 993, True),
    "outlook.com": ("imap-mail.outlook.com", 993, True),
    "hotmail.com": ("imap-mail.outlook.com", 993, True),
}


def resolve_mail_server(
    email: str,
    password: str,
    timeout: float = 10.0,
    verify_tls: bool = True,
) -> MailServerConfig:
    """Return the IMAP settings for an address from its domain.

    Raises:
        UnsupportedProvider: if the domain is not in ``IMAP_PROVIDERS``.
    """
    _, _, domain = email.strip().lower().rpartition("@")
    try:
        host, port, tls = IMAP_PROVIDERS[domain]
    except KeyError:
        raise UnsupportedProvider(f"mail provider {domain or email!r} is not supported") from None
    return MailServerConfig(
        user=email,
        password=password,
        host=host,
        port=port,
        tls=tls,
        timeout=timeout,
        verify_tls=verify_tls,
    )


def _imap_date(value: datetime) -> str:
    # IMAP SINCE takes a date only, e.g. 01-Jan-2024
    months = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
    return f"{value.day:02d}-{months[value.month - 1]}-{value.year}"


def _quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def build_imap_query(criteria: SearchCriteria) -> str:
    """Translate criteria into an IMAP SEARCH string.

    SINCE only has day granularity and is compared against the server's
    local date, so the query starts a day early and exact filtering happens
    after fetch.
    """
    parts: list[str] = []
    if criteria.unseen:
        parts.append("UNSEEN")
    since = criteria.since.astimezone(timezone.utc) - timedelta(days=1)
    parts.append(f"SINCE {_imap_date(since)}")
    if criteria.sender:
        parts.append(f"FROM {_quote(criteria.sender)}")
    if criteria.subject:
        parts.append(f"SUBJECT {_quote(criteria.subject)}")
    return f"({' '.join(parts)})"


class ImapTransport:
    """Blocking IMAP session built on ``imaplib``."""

    def __init__(self) -> None:
        self._conn: imaplib.IMAP4 | None = None

    def connect(self, config: MailServerConfig) -> None:
        """Create, authenticate and select the mailbox.

        Raises:
            TransportError: on connection, TLS or login failure.
        """
        try:
            if config.tls:
                context = ssl.create_default_context()
                if not config.verify_tls:
                    context.check_hostname = False
                    context.verify_mode = ssl.CERT_NONE
                self._conn = imaplib.IMAP4_SSL(
                    config.host, config.port, ssl_context=context, timeout=config.timeout
                )
            else:
                self._conn = imaplib.IMAP4(config.host, config.port, timeout=config.timeout)
            self._conn.login(config.user, config.password)
            status, _ = self._conn.select(config.mailbox)
            if status != "OK":
                raise TransportError(f"cannot select mailbox {config.mailbox}")
        except (imaplib.IMAP4.error, OSError) as e:
            logger.error(
                "mail.connect.failed",
                extra={"host": config.host, "user": config.user, "error": str(e)},
            )
            raise TransportError(f"IMAP connection to {config.host} failed: {e}") from e
        logger.debug("mail.connect", extra={"host": config.host, "user": config.user})

    def search(self, criteria: SearchCriteria) -> list[MailCandidate]:
        """Return messages matching ``criteria``.

        Messages are fetched with ``BODY.PEEK[]`` so their flags are untouched.

        Raises:
            TransportError: on protocol or socket failure.
        """
        if self._conn is None:
            raise TransportError("IMAP session is not connected")
        query = build_imap_query(criteria)
        since = criteria.since.astimezone(timezone.utc)
        candidates: list[MailCandidate] = []
        try:
            status, data = self._conn.search(None, query)
            if status != "OK":
                raise TransportError(f"IMAP search failed: {status}")
            numbers = data[0].split() if data and data[0] else []
            for num in numbers:
                status, msg_data = self._conn.fetch(num, "(INTERNALDATE BODY.PEEK[])")
                if status != "OK":
                    continue
                candidate = _parse_fetch(msg_data)
                if candidate is not None and candidate.received_at >= since:
                    candidates.append(candidate)
        except (imaplib.IMAP4.error, OSError) as e:
            logger.error("mail.search.failed", extra={"query": query, "error": str(e)})
            raise TransportError(f"IMAP search failed: {e}") from e
        logger.debug(
            "mail.search",
            extra={"query": query, "matched": len(numbers), "kept": len(candidates)},
        )
        return candidates

    def close(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        try:
            if conn.state == "SELECTED":
                conn.close()
            conn.logout()
        except (imaplib.IMAP4.error, OSError) as e:
            logger.debug(f"Error closing IMAP connection: {e}")


def _parse_fetch(msg_data: list) -> MailCandidate | None:
    for item in msg_data:
        if isinstance(item, tuple) and len(item) == 2:
            header, raw = item
            parsed = imaplib.Internaldate2tuple(header)
            if parsed is None:
                return None
            received_at = datetime.fromtimestamp(time.mktime(parsed), tz=timezone.utc)
            return MailCandidate(received_at=received_at, raw_body=raw)
    return None
