"""PIN hashing, verification and generation.

Stored PIN secrets are either bcrypt hashes (``$2a$``, ``$2b$``, ``$2y$``
prefixes) or plaintext. Plaintext is what rotation produces, since a freshly
generated PIN only lives in memory and in the out-of-band notification.
"""

from __future__ import annotations

import logging
import secrets

import bcrypt

from .exceptions import PinVerificationError

logger = logging.getLogger(__name__)

BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")
PIN_DIGITS = 4
# longest password bcrypt accepts
BCRYPT_MAX_BYTES = 72


def is_bcrypt_hash(stored: str) -> bool:
    """Return True when the stored secret looks like a bcrypt hash."""
    return stored.startswith(BCRYPT_PREFIXES)


def hash_pin(pin: str, rounds: int = 12) -> str:
    """Return a bcrypt hash of the PIN.

    Args:
        pin: Plaintext PIN.
        rounds: bcrypt cost factor.
    """
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(pin.encode("utf-8"), salt).decode("utf-8")


class PinVerifier:
    """Compare submitted PINs against stored hash-or-plaintext secrets."""

    def verify(self, submitted_pin: str, stored_secret: str | None) -> bool:
        """Return True when ``submitted_pin`` matches ``stored_secret``.

        An empty stored secret never matches. Plaintext comparison is
        case-sensitive and constant-time. Input longer than bcrypt accepts
        never matches a hash.

        Raises:
            PinVerificationError: if a stored hash is malformed.
        """
        if not stored_secret:
            return False
        if is_bcrypt_hash(stored_secret):
            submitted = submitted_pin.encode("utf-8")
            if len(submitted) > BCRYPT_MAX_BYTES:
                return False
            try:
                return bcrypt.checkpw(submitted, stored_secret.encode("utf-8"))
            except ValueError as e:
                logger.error("pin.verify.hash_error", extra={"error": str(e)})
                raise PinVerificationError() from e
        return secrets.compare_digest(
            submitted_pin.encode("utf-8"), stored_secret.encode("utf-8")
        )


def generate_pin(previous: str | None = None) -> str:
    """Return a zero-padded 4-digit PIN from a CSPRNG.

    When the previous PIN is known in plaintext the new one always differs.
    """
    while True:
        pin = f"{secrets.randbelow(10 ** PIN_DIGITS):0{PIN_DIGITS}d}"
        if pin != previous:
            return pin
