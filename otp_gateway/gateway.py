"""Request flow for exchanging a PIN for an OTP.

``OtpGateway.get_otp`` runs: credential lookup, PIN verification, usage
admission (which may start a rotation), then OTP retrieval.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Callable

from .config import Settings
from .credentials import CredentialRecord, CredentialStore
from .exceptions import (
    AuthError,
    CodeNotFound,
    NoMessagesFound,
    PinNotConfigured,
    RateLimitExceeded,
    ValidationError,
)
from .ledger import SheetsLedger
from .mail import ImapTransport
from .mailbox import CodeLookup, LookupStatus, MailboxOtpFetcher
from .notifier import SmtpNotifier
from .pin import PinVerifier
from .ports import LedgerPort, MailTransportPort, NotifierPort, NullLedger, NullNotifier
from .provider import OtpProvider
from .rotation import PinRotator
from .sync import RotationSyncJob, SyncReport
from .usage import GlobalPinState, UsageLimiter

logger = logging.getLogger(__name__)


class OtpGateway:
    """Owns the shared state and coordinates one OTP request at a time."""

    def __init__(
        self,
        store: CredentialStore,
        limiter: UsageLimiter,
        rotator: PinRotator,
        provider: OtpProvider,
        sync_job: RotationSyncJob,
        verifier: PinVerifier | None = None,
        global_state: GlobalPinState | None = None,
    ) -> None:
        self.store = store
        self.limiter = limiter
        self.rotator = rotator
        self.provider = provider
        self.sync_job = sync_job
        self.verifier = verifier or PinVerifier()
        self.global_state = global_state
        self._background: set[asyncio.Task] = set()

    def _stored_secret(self, record: CredentialRecord) -> str:
        if self.global_state is not None:
            return self.global_state.current
        return record.pin_secret

    async def get_otp(self, account_email: str | None, pin: str | None) -> CodeLookup:
        """Exchange a PIN for the account's current OTP.

        Raises:
            ValidationError: missing email or PIN, or unknown account.
            PinNotConfigured: no PIN is configured.
            AuthError: wrong PIN.
            PinVerificationError: malformed stored hash.
            RateLimitExceeded: usage cap reached; rotation started.
            NotConfigured, UnsupportedProvider, TransportError,
            OtpGenerationError: OTP retrieval failures.
            NoMessagesFound, CodeNotFound: mailbox had no usable code.
        """
        if not account_email or not pin:
            raise ValidationError()
        account_id = account_email.strip().lower()
        record = self.store.get(account_id)
        if record is None:
            raise ValidationError("email is not supported")

        secret = self._stored_secret(record)
        if not secret:
            raise PinNotConfigured()
        ok = await asyncio.to_thread(self.verifier.verify, pin, secret)
        if not ok:
            logger.info("otp.request.denied", extra={"account": account_id})
            raise AuthError()

        self._admit(record, pin, secret)

        lookup = await self.provider.fetch(record)
        if lookup.status is LookupStatus.NO_MESSAGES:
            raise NoMessagesFound()
        if lookup.status is LookupStatus.NO_CODE:
            raise CodeNotFound()
        logger.info(
            "otp.request.served",
            extra={"account": account_id, "source": lookup.source.value},
        )
        return lookup

    def _admit(self, record: CredentialRecord, pin: str, secret: str) -> None:
        """Count one use, or rotate and reject once the cap is reached.

        Runs without awaiting so no other request interleaves between the
        staleness check, the count and the rotation.
        """
        account_id = record.account_id
        current = self.store.get(account_id)
        if current is None or self._stored_secret(current) != secret:
            # rotated while this request was verifying
            raise AuthError()

        usage_pin = self.global_state.current if self.global_state is not None else pin
        if self.limiter.consume(account_id, usage_pin):
            return

        logger.warning(
            "otp.request.limit_exceeded",
            extra={"account": account_id, "max_uses": self.limiter.max_uses},
        )
        rotation = self.rotator.begin(account_id)
        if rotation is not None:
            task = asyncio.create_task(self.rotator.fan_out(rotation))
            self._background.add(task)
            task.add_done_callback(self._background.discard)
        raise RateLimitExceeded()

    async def sync_rotated_pins(self) -> SyncReport:
        return await self.sync_job.sync_from_mailbox()

    async def drain(self) -> None:
        """Wait for pending rotation fan-outs."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)


def _build_notifier(settings: Settings) -> NotifierPort:
    if settings.smtp.host:
        return SmtpNotifier(settings.smtp, timeout=settings.external_timeout_seconds)
    return NullNotifier()


def _build_ledger(settings: Settings) -> LedgerPort:
    if settings.ledger.spreadsheet_id:
        return SheetsLedger(
            settings.ledger,
            google=settings.google,
            timeout=settings.external_timeout_seconds,
        )
    return NullLedger()


def build_gateway(
    settings: Settings,
    store: CredentialStore | None = None,
    notifier: NotifierPort | None = None,
    ledger: LedgerPort | None = None,
    transport_factory: Callable[[], MailTransportPort] = ImapTransport,
) -> OtpGateway:
    """Wire a gateway from settings.

    Collaborators default to the adapters selected by the settings.
    """
    store = store if store is not None else CredentialStore.from_settings(settings)
    notifier = notifier or _build_notifier(settings)
    ledger = ledger or _build_ledger(settings)
    timeout = settings.external_timeout_seconds

    global_state: GlobalPinState | None = None
    if settings.use_global_pin:
        global_state = GlobalPinState(settings.global_pin)
        limiter = UsageLimiter(settings.global_pin_max_uses)
    else:
        limiter = UsageLimiter(settings.pin_max_uses)

    rotator = PinRotator(
        store,
        limiter,
        notifier,
        ledger,
        notify_to=settings.rotation_notify_to,
        subject=settings.rotation_subject,
        global_state=global_state,
        timeout=timeout,
    )
    fetcher = MailboxOtpFetcher(
        transport_factory=transport_factory,
        sender_filter=settings.mail_sender_filter,
        lookback=timedelta(seconds=settings.mail_lookback_seconds),
        timeout=timeout,
        verify_tls=settings.imap_verify_tls,
    )

    inbox = settings.sync_inbox
    app_password = settings.rotation_sync_app_password
    if not app_password and inbox:
        inbox_record = store.get(inbox)
        app_password = inbox_record.mail_app_password if inbox_record else None
    sync_job = RotationSyncJob(
        ledger,
        inbox=inbox,
        app_password=app_password,
        subject=settings.rotation_subject,
        transport_factory=transport_factory,
        lookback=timedelta(days=settings.sync_lookback_days),
        timeout=timeout,
        verify_tls=settings.imap_verify_tls,
    )

    logger.info(
        "gateway.built",
        extra={
            "accounts": len(store),
            "global_pin": settings.use_global_pin,
            "notifier": type(notifier).__name__,
            "ledger": type(ledger).__name__,
        },
    )
    return OtpGateway(
        store,
        limiter,
        rotator,
        OtpProvider(fetcher),
        sync_job,
        global_state=global_state,
    )
