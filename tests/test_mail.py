from __future__ import annotations

import imaplib
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from otp_gateway.exceptions import TransportError, UnsupportedProvider
from otp_gateway.mail import ImapTransport, build_imap_query, resolve_mail_server
from otp_gateway.ports import SearchCriteria


@pytest.mark.parametrize(
    "email, host",
    [
        ("a@gmail.com", "imap.gmail.com"),
        ("a@Yahoo.com", "imap.mail.yahoo.com"),
        ("a@outlook.com", "imap-mail.outlook.com"),
        ("a@hotmail.com", "imap-mail.outlook.com"),
    ],
)
def test_resolve_known_providers(email: str, host: str) -> None:
    config = resolve_mail_server(email, "pw", timeout=5)
    assert config.host == host
    assert config.port == 993 and config.tls
    assert config.timeout == 5
    assert "pw" not in repr(config)


def test_resolve_unknown_provider() -> None:
    with pytest.raises(UnsupportedProvider):
        resolve_mail_server("a@example.org", "pw")


def test_build_imap_query() -> None:
    criteria = SearchCriteria(
        since=datetime(2024, 3, 5, 23, 59, tzinfo=timezone.utc),
        unseen=True,
        sender="noreply@openai.com",
    )
    assert build_imap_query(criteria) == '(UNSEEN SINCE 04-Mar-2024 FROM "noreply@openai.com")'


def test_build_imap_query_subject_quoting() -> None:
    criteria = SearchCriteria(
        since=datetime(2024, 1, 1, tzinfo=timezone.utc), subject='PIN "rotated"'
    )
    assert build_imap_query(criteria) == '(SINCE 31-Dec-2023 SUBJECT "PIN \\"rotated\\"")'


def test_build_imap_query_starts_a_day_early_after_utc_midnight() -> None:
    criteria = SearchCriteria(since=datetime(2024, 3, 6, 0, 2, tzinfo=timezone.utc), unseen=True)
    assert build_imap_query(criteria) == "(UNSEEN SINCE 05-Mar-2024)"


def _internaldate(when: datetime) -> bytes:
    stamp = imaplib.Time2Internaldate(when)
    return f"1 (INTERNALDATE {stamp} BODY[] {{10}}".encode()


@patch("imaplib.IMAP4_SSL")
def test_transport_search_filters_window_and_peeks(mock_ssl: MagicMock) -> None:
    conn = MagicMock()
    conn.state = "SELECTED"
    conn.select.return_value = ("OK", [b"3"])
    conn.search.return_value = ("OK", [b"1 2"])
    now = datetime.now(timezone.utc).replace(microsecond=0)
    fresh, stale = now - timedelta(minutes=1), now - timedelta(minutes=30)
    conn.fetch.side_effect = [
        ("OK", [(_internaldate(fresh), b"fresh body"), b")"]),
        ("OK", [(_internaldate(stale), b"stale body"), b")"]),
    ]
    mock_ssl.return_value = conn

    transport = ImapTransport()
    transport.connect(resolve_mail_server("a@gmail.com", "pw"))
    found = transport.search(SearchCriteria(since=now - timedelta(minutes=5), unseen=True))
    transport.close()

    assert [c.raw_body for c in found] == [b"fresh body"]
    assert found[0].received_at == fresh
    conn.login.assert_called_once_with("a@gmail.com", "pw")
    conn.select.assert_called_once_with("INBOX")
    assert conn.fetch.call_args_list[0].args[1] == "(INTERNALDATE BODY.PEEK[])"
    conn.close.assert_called_once()
    conn.logout.assert_called_once()


@patch("imaplib.IMAP4_SSL")
def test_transport_login_failure_is_transport_error(mock_ssl: MagicMock) -> None:
    conn = MagicMock()
    conn.login.side_effect = imaplib.IMAP4.error("AUTHENTICATIONFAILED")
    mock_ssl.return_value = conn

    with pytest.raises(TransportError, match="AUTHENTICATIONFAILED"):
        ImapTransport().connect(resolve_mail_server("a@gmail.com", "pw"))


@patch("imaplib.IMAP4_SSL")
def test_transport_connect_timeout(mock_ssl: MagicMock) -> None:
    mock_ssl.side_effect = TimeoutError("timed out")
    with pytest.raises(TransportError):
        ImapTransport().connect(resolve_mail_server("a@gmail.com", "pw"))


def test_search_without_connect() -> None:
    with pytest.raises(TransportError):
        ImapTransport().search(SearchCriteria(since=datetime.now(timezone.utc)))


def test_close_without_connect_is_noop() -> None:
    ImapTransport().close()
