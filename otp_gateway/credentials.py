"""Account credential records and the in-memory store that owns them."""

from __future__ import annotations

import logging
import threading
from typing import Any, Iterable, Mapping

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .config import Settings
from .secrets import get_secret_json

logger = logging.getLogger(__name__)


class CredentialRecord(BaseModel):
    """Credential record for one account.

    Attributes:
        account_id: Account email address, lower-cased.
        pin_secret: bcrypt hash or plaintext PIN gating OTP access.
        mail_app_password: App password used to read the account's inbox.
        totp_seed: Base32 TOTP seed. Takes priority over the app password.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    account_id: str = Field(..., min_length=3)
    pin_secret: str = Field(
        default="", validation_alias=AliasChoices("pin_secret", "pinHash", "pin")
    )
    mail_app_password: str | None = Field(
        default=None,
        validation_alias=AliasChoices("mail_app_password", "appPass", "app_password"),
    )
    totp_seed: str | None = Field(
        default=None,
        validation_alias=AliasChoices("totp_seed", "totpSecret", "totp_secret"),
    )

    def __repr__(self) -> str:
        # Secrets stay out of logs and tracebacks.
        return f"CredentialRecord(account_id={self.account_id!r})"

    __str__ = __repr__


class CredentialStore:
    """Mapping of account identity to its credential record.

    Lookups are case-insensitive on the account email. Rotation replaces a
    record's ``pin_secret`` through :meth:`replace_pin`.
    """

    def __init__(self, records: Iterable[CredentialRecord] = ()) -> None:
        self._records: dict[str, CredentialRecord] = {}
        self._lock = threading.Lock()
        for record in records:
            self._records[_normalize(record.account_id)] = record

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Mapping[str, Any]]) -> CredentialStore:
        """Build a store from ``{email: {pinHash, appPass, totpSecret}}``."""
        records = [
            CredentialRecord(account_id=_normalize(email), **dict(fields))
            for email, fields in mapping.items()
        ]
        return cls(records)

    @classmethod
    def from_settings(cls, settings: Settings) -> CredentialStore:
        """Load records from CREDENTIALS and, when named, Secrets Manager.

        Secrets Manager entries override inline entries for the same email.
        """
        mapping: dict[str, Mapping[str, Any]] = {
            _normalize(k): v for k, v in settings.credentials.items()
        }
        if settings.credentials_secret_name:
            secret = get_secret_json(settings.credentials_secret_name)
            mapping.update({_normalize(k): v for k, v in secret.items()})
        store = cls.from_mapping(mapping)
        logger.info("credentials.loaded", extra={"accounts": len(store)})
        return store

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, account_id: object) -> bool:
        return isinstance(account_id, str) and _normalize(account_id) in self._records

    def get(self, account_id: str) -> CredentialRecord | None:
        """Return the record for an account, or None when unknown."""
        with self._lock:
            return self._records.get(_normalize(account_id))

    def accounts(self) -> list[str]:
        with self._lock:
            return list(self._records)

    def replace_pin(self, account_id: str, pin_secret: str) -> CredentialRecord:
        """Replace an account's PIN secret and return the new record.

        Raises:
            KeyError: if the account is unknown.
        """
        key = _normalize(account_id)
        with self._lock:
            current = self._records[key]
            updated = current.model_copy(update={"pin_secret": pin_secret})
            self._records[key] = updated
        return updated


def _normalize(account_id: str) -> str:
    return account_id.strip().lower()
