"""Choose how an account's OTP is produced."""

from __future__ import annotations

import logging

from .credentials import CredentialRecord
from .exceptions import NotConfigured
from .mailbox import CodeLookup, LookupStatus, MailboxOtpFetcher, OtpSource
from .totp import totp_now

logger = logging.getLogger(__name__)


class OtpProvider:
    """Produce an OTP from a TOTP seed, or from the mailbox as a fallback."""

    def __init__(self, fetcher: MailboxOtpFetcher) -> None:
        self._fetcher = fetcher

    async def fetch(self, record: CredentialRecord) -> CodeLookup:
        """Return the current OTP for ``record``.

        A TOTP seed takes priority and never touches the network.

        Raises:
            NotConfigured: if the record has neither seed nor app password.
            OtpGenerationError: if the seed is invalid.
        """
        if record.totp_seed:
            code = totp_now(record.totp_seed)
            logger.info("otp.totp", extra={"account": record.account_id})
            return CodeLookup(status=LookupStatus.FOUND, source=OtpSource.TOTP, code=code)
        if record.mail_app_password:
            return await self._fetcher.fetch_latest_code(
                record.account_id, record.mail_app_password
            )
        raise NotConfigured()
