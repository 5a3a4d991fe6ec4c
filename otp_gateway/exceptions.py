"""Exception hierarchy for the OTP gateway.

Every error carries the HTTP status and the client-facing message used by the
API layer, so request handling code only raises and never formats responses.
"""

from __future__ import annotations


class GatewayError(Exception):
    """Base exception class for all gateway errors."""

    status_code: int = 500
    default_message: str = "internal error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(GatewayError):
    """Raised when a request is missing required fields."""

    status_code = 400
    default_message = "email and pin are required"


class UnsupportedProvider(GatewayError):
    """Raised when the account's mail domain has no known IMAP server."""

    status_code = 400
    default_message = "mail provider is not supported"


class NotConfigured(GatewayError):
    """Raised when an account has neither a TOTP seed nor an app password."""

    status_code = 400
    default_message = "account is not set up for OTP retrieval"


class SyncNotConfigured(NotConfigured):
    """Raised when the rotation sync inbox or its app password is missing."""

    status_code = 500
    default_message = "rotation sync inbox is not configured"


class AuthError(GatewayError):
    """Raised when the submitted PIN does not match."""

    status_code = 401
    default_message = "wrong pin"


class PinNotConfigured(AuthError):
    """Raised when no PIN is configured for the account."""

    status_code = 403
    default_message = "pin is not configured"


class RateLimitExceeded(GatewayError):
    """Raised when the usage cap is reached. A PIN rotation has been started."""

    status_code = 429
    default_message = "usage limit exceeded, pin rotated"


class NoMessagesFound(GatewayError):
    """Raised when the mailbox search returns no candidate messages."""

    status_code = 404
    default_message = "no code found"


class CodeNotFound(GatewayError):
    """Raised when the newest candidate message holds no 6-digit code."""

    status_code = 404
    default_message = "no code found in latest message"


class TransportError(GatewayError):
    """Raised when connecting to or searching the mail server fails."""

    status_code = 500
    default_message = "mail transport failure"


class PinVerificationError(GatewayError):
    """Raised when a stored PIN hash cannot be compared."""

    status_code = 500
    default_message = "pin verification failed"


class OtpGenerationError(GatewayError):
    """Raised when a TOTP code cannot be generated from the stored seed."""

    status_code = 500
    default_message = "otp generation failed"
