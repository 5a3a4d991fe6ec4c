"""
OTP Gateway Package.

Exchanges a short-lived access PIN for a one-time passcode, generated from a
shared TOTP seed or read from the account's mailbox, so automation clients
never hold real account credentials.
"""

from __future__ import annotations

from dotenv import load_dotenv

# Load local env vars when present.
load_dotenv()

__version__ = "0.1.0"
__all__: list[str] = []
