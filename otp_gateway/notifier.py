"""SMTP notifier for rotated PINs."""

from __future__ import annotations

import logging
from email.message import EmailMessage

import aiosmtplib

from .config import SmtpSettings

logger = logging.getLogger(__name__)

SMTPS_PORT = 465


class SmtpNotifier:
    """Send plain-text notifications through an authenticated SMTP server."""

    def __init__(self, config: SmtpSettings, timeout: float = 10.0) -> None:
        """
        Initialize SMTP notifier.

        Args:
            config: SMTP server settings
            timeout: Connect and command timeout in seconds
        """
        self._config = config
        self._timeout = timeout

    async def send(self, to_address: str, subject: str, body: str) -> bool:
        """
        Send a plain-text email.

        The body is sent verbatim so the rotation sync job can parse it back.

        Returns:
            True if successful
        """
        if not to_address:
            logger.error("notifier.smtp.no_recipient")
            return False

        message = EmailMessage()
        message["From"] = self._config.sender or self._config.username
        message["To"] = to_address
        message["Subject"] = subject
        message.set_content(body)

        use_tls = self._config.port == SMTPS_PORT
        try:
            await aiosmtplib.send(
                message,
                hostname=self._config.host,
                port=self._config.port,
                username=self._config.username or None,
                password=self._config.password or None,
                use_tls=use_tls,
                start_tls=self._config.starttls and not use_tls,
                timeout=self._timeout,
            )
        except (aiosmtplib.SMTPException, OSError, TimeoutError) as e:
            logger.error(
                "notifier.smtp.failed",
                extra={"to": to_address, "error": str(e)},
            )
            return False

        logger.info("notifier.smtp.sent", extra={"to": to_address})
        return True
