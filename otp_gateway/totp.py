from __future__ import annotations

import base64
import binascii
import hmac
import struct
import time
from hashlib import sha1
from typing import Optional

from .exceptions import OtpGenerationError

TOTP_PERIOD = 30
TOTP_DIGITS = 6


def _base32_decode_no_padding(data: str) -> bytes:
    """Decode a possibly unpadded base32 string into bytes.

    Adds missing padding and ignores spaces; case-insensitive.
    """
    value = data.strip().replace(" ", "").upper()
    # Add required padding for base32 if missing
    missing = (-len(value)) % 8
    if missing:
        value += "=" * missing
    return base64.b32decode(value, casefold=True)


def _hotp(secret: bytes, counter: int, digits: int) -> str:
    """Generate an HOTP code using SHA1.

    Args:
        secret: Raw shared secret bytes.
        counter: Moving factor (8-byte integer).
        digits: Number of digits in the output code.
    """
    counter_bytes = struct.pack("!Q", counter)
    digest = hmac.new(secret, counter_bytes, sha1).digest()
    offset = digest[-1] & 0x0F
    code = int.from_bytes(digest[offset : offset + 4], "big") & 0x7FFFFFFF
    return str(code % (10 ** digits)).zfill(digits)


def totp_now(
    base32_seed: str,
    period: int = TOTP_PERIOD,
    digits: int = TOTP_DIGITS,
    now: Optional[float] = None,
) -> str:
    """Generate the TOTP code for the current time window.

    Args:
        base32_seed: Base32-encoded shared secret.
        period: Time step in seconds.
        digits: Number of digits.
        now: Optional unix timestamp override for testing.

    Raises:
        OtpGenerationError: if the seed is not valid base32.
    """
    unix_time = int(now if now is not None else time.time())
    try:
        secret = _base32_decode_no_padding(base32_seed)
    except (binascii.Error, ValueError) as e:
        raise OtpGenerationError(f"otp generation failed: {e}") from e
    if not secret:
        raise OtpGenerationError("otp generation failed: empty seed")
    return _hotp(secret, unix_time // period, digits)
