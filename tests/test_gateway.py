from __future__ import annotations

import asyncio

import pytest

from fakes import FakeTransport, RecordingLedger, RecordingNotifier, candidate, make_settings
from otp_gateway.exceptions import (
    AuthError,
    CodeNotFound,
    NoMessagesFound,
    NotConfigured,
    PinNotConfigured,
    PinVerificationError,
    RateLimitExceeded,
    UnsupportedProvider,
    ValidationError,
)
from otp_gateway.gateway import build_gateway
from otp_gateway.mailbox import LookupStatus, OtpSource
from otp_gateway.ports import NullLedger, NullNotifier


def _gateway(transport=None, notifier=None, ledger=None, **overrides):
    transport = transport if transport is not None else FakeTransport(
        [candidate("Your code is 123456")]
    )
    return build_gateway(
        make_settings(**overrides),
        notifier=notifier or RecordingNotifier(),
        ledger=ledger or RecordingLedger(),
        transport_factory=lambda: transport,
    )


@pytest.mark.asyncio
async def test_cap_then_rotation_then_old_pin_rejected() -> None:
    notifier, ledger = RecordingNotifier(), RecordingLedger()
    gw = _gateway(notifier=notifier, ledger=ledger)

    for _ in range(3):
        lookup = await gw.get_otp("a@x.com", "1234")
        assert lookup.status is LookupStatus.FOUND
        assert lookup.source is OtpSource.TOTP

    with pytest.raises(RateLimitExceeded):
        await gw.get_otp("a@x.com", "1234")
    await gw.drain()

    new_pin = gw.store.get("a@x.com").pin_secret
    assert new_pin != "1234" and len(new_pin) == 4 and new_pin.isdigit()
    assert notifier.sent == [("ops@gmail.com", "OTP gateway PIN rotated", f"a@x.com, {new_pin}")]
    assert ledger.calls == [("a@x.com", new_pin)]
    assert not gw.rotator.gate.is_rotating("a@x.com")

    with pytest.raises(AuthError):
        await gw.get_otp("a@x.com", "1234")
    assert (await gw.get_otp("a@x.com", new_pin)).code


@pytest.mark.asyncio
async def test_account_email_is_case_insensitive() -> None:
    gw = _gateway()
    lookup = await gw.get_otp("  A@X.com ", "1234")
    assert lookup.status is LookupStatus.FOUND
    assert gw.limiter.usage("a@x.com", "1234") == 1


@pytest.mark.asyncio
async def test_rotation_only_touches_trigger_account() -> None:
    gw = _gateway(pin_max_uses=1)
    await gw.get_otp("a@x.com", "1234")
    await gw.get_otp("mail@gmail.com", "4321")
    with pytest.raises(RateLimitExceeded):
        await gw.get_otp("a@x.com", "1234")
    await gw.drain()

    assert gw.store.get("mail@gmail.com").pin_secret == "4321"
    assert gw.limiter.usage("mail@gmail.com") == 1
    with pytest.raises(RateLimitExceeded):
        await gw.get_otp("mail@gmail.com", "4321")
    await gw.drain()


@pytest.mark.asyncio
async def test_concurrent_request_with_stale_pin_is_rejected() -> None:
    notifier = RecordingNotifier()
    gw = _gateway(notifier=notifier, pin_max_uses=1)
    await gw.get_otp("a@x.com", "1234")

    results = await asyncio.gather(
        gw.get_otp("a@x.com", "1234"),
        gw.get_otp("a@x.com", "1234"),
        return_exceptions=True,
    )
    await gw.drain()

    assert sorted(type(r).__name__ for r in results) == ["AuthError", "RateLimitExceeded"]
    assert len(notifier.sent) == 1


@pytest.mark.asyncio
async def test_global_pin_mode_rotates_shared_pin() -> None:
    notifier = RecordingNotifier()
    gw = _gateway(
        notifier=notifier, use_global_pin=True, global_pin="7777", global_pin_max_uses=1
    )
    await gw.get_otp("a@x.com", "7777")
    # counters are per account under the shared PIN
    await gw.get_otp("mail@gmail.com", "7777")

    with pytest.raises(RateLimitExceeded):
        await gw.get_otp("a@x.com", "7777")
    await gw.drain()

    shared = gw.global_state.current
    assert shared != "7777"
    assert notifier.sent[0][2] == f"a@x.com, {shared}"
    assert gw.limiter.usage("mail@gmail.com") == 0
    with pytest.raises(AuthError):
        await gw.get_otp("mail@gmail.com", "7777")
    assert (await gw.get_otp("mail@gmail.com", shared)).code == "123456"


@pytest.mark.asyncio
async def test_global_mode_ignores_per_account_pin() -> None:
    gw = _gateway(use_global_pin=True, global_pin="7777")
    with pytest.raises(AuthError):
        await gw.get_otp("a@x.com", "1234")


@pytest.mark.asyncio
async def test_fan_out_failures_do_not_change_response() -> None:
    notifier = RecordingNotifier(error=OSError("smtp down"))
    ledger = RecordingLedger(error=RuntimeError("sheets down"))
    gw = _gateway(notifier=notifier, ledger=ledger, pin_max_uses=1)
    await gw.get_otp("a@x.com", "1234")

    with pytest.raises(RateLimitExceeded):
        await gw.get_otp("a@x.com", "1234")
    await gw.drain()

    assert gw.store.get("a@x.com").pin_secret != "1234"
    assert not gw.rotator.gate.is_rotating("a@x.com")


@pytest.mark.asyncio
async def test_rotation_without_notifier_or_ledger() -> None:
    gw = build_gateway(
        make_settings(pin_max_uses=1),
        notifier=NullNotifier(),
        ledger=NullLedger(),
        transport_factory=FakeTransport,
    )
    await gw.get_otp("a@x.com", "1234")
    with pytest.raises(RateLimitExceeded):
        await gw.get_otp("a@x.com", "1234")
    await gw.drain()
    assert gw.store.get("a@x.com").pin_secret != "1234"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "email, pin, error",
    [
        (None, "1234", ValidationError),
        ("a@x.com", None, ValidationError),
        ("a@x.com", "", ValidationError),
        ("nobody@x.com", "1234", ValidationError),
        ("nopin@gmail.com", "1234", PinNotConfigured),
        ("a@x.com", "0000", AuthError),
        ("bare@gmail.com", "1111", NotConfigured),
        ("odd@example.org", "2222", UnsupportedProvider),
    ],
)
async def test_request_errors(email, pin, error) -> None:
    gw = _gateway()
    with pytest.raises(error):
        await gw.get_otp(email, pin)


@pytest.mark.asyncio
async def test_failed_requests_do_not_count() -> None:
    gw = _gateway()
    for _ in range(5):
        with pytest.raises(AuthError):
            await gw.get_otp("a@x.com", "9999")
    assert gw.limiter.usage("a@x.com") == 0


@pytest.mark.asyncio
async def test_malformed_hash_is_server_error() -> None:
    gw = _gateway(credentials={"h@x.com": {"pinHash": "$2b$12$broken", "totpSecret": "JBSWY3DPEHPK3PXP"}})
    with pytest.raises(PinVerificationError):
        await gw.get_otp("h@x.com", "1234")


@pytest.mark.asyncio
async def test_mailbox_lookup_uses_sender_filter() -> None:
    transport = FakeTransport([candidate("code 654321")])
    gw = _gateway(transport=transport)
    lookup = await gw.get_otp("mail@gmail.com", "4321")

    assert lookup.code == "654321"
    assert lookup.source is OtpSource.MAILBOX
    assert transport.config.host == "imap.gmail.com"
    assert transport.config.password == "app-pass"
    assert transport.criteria.unseen
    assert transport.criteria.sender == "noreply@openai.com"


@pytest.mark.asyncio
async def test_empty_mailbox() -> None:
    gw = _gateway(transport=FakeTransport([]))
    with pytest.raises(NoMessagesFound) as exc:
        await gw.get_otp("mail@gmail.com", "4321")
    assert exc.value.message == "no code found"


@pytest.mark.asyncio
async def test_newest_message_without_code() -> None:
    transport = FakeTransport(
        [candidate("old code 111111", minutes_ago=4), candidate("no code", minutes_ago=1)]
    )
    gw = _gateway(transport=transport)
    with pytest.raises(CodeNotFound):
        await gw.get_otp("mail@gmail.com", "4321")


@pytest.mark.asyncio
async def test_sync_uses_inbox_app_password() -> None:
    transport = FakeTransport(
        [candidate("mail@gmail.com, 0420", subject="OTP gateway PIN rotated")]
    )
    ledger = RecordingLedger()
    gw = _gateway(transport=transport, ledger=ledger)

    report = await gw.sync_rotated_pins()

    assert report.inserted == 1
    assert ledger.rows == {"mail@gmail.com": "0420"}
    assert transport.config.password == "ops-pass"
    assert transport.criteria.subject == "OTP gateway PIN rotated"


@pytest.mark.asyncio
async def test_sync_explicit_app_password_wins() -> None:
    transport = FakeTransport([])
    gw = _gateway(transport=transport, rotation_sync_app_password="sync-pass")
    report = await gw.sync_rotated_pins()
    assert report.inspected == 0
    assert transport.config.password == "sync-pass"
