"""Application settings loaded from the environment.

Nested groups (SMTP, ledger, Google service account) use the ``__``
delimiter, e.g. ``SMTP__HOST`` or ``GOOGLE__PRIVATE_KEY``.
"""

from __future__ import annotations

import json
from functools import lru_cache
from typing import Annotated, Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class SmtpSettings(BaseModel):
    """Outbound SMTP server used for rotation notifications."""

    host: str = ""
    port: int = 587
    username: str = ""
    password: str = ""
    sender: str = ""
    starttls: bool = True


class LedgerSettings(BaseModel):
    """Google Sheets workbook that records the current PIN per account."""

    spreadsheet_id: str = ""
    sheet_name: str = "PINs"


class GoogleServiceAccountSettings(BaseModel):
    """Settings for Google service account authentication."""

    SCOPES: list[str] = [
        "https://www.googleapis.com/auth/spreadsheets",
    ]

    type: str = "service_account"
    project_id: str = ""
    private_key_id: str = ""
    private_key: str = ""
    client_email: str = ""
    client_id: str = ""
    auth_uri: str = "https://accounts.google.com/o/oauth2/auth"
    token_uri: str = "https://oauth2.googleapis.com/token"
    auth_provider_x509_cert_url: str = "https://www.googleapis.com/oauth2/v1/certs"
    client_x509_cert_url: str = ""
    universe_domain: str = "googleapis.com"


class Settings(BaseSettings):
    """Settings for the OTP gateway."""

    credentials: Annotated[dict[str, dict[str, Any]], NoDecode] = Field(
        default_factory=dict
    )
    credentials_secret_name: str = ""

    use_global_pin: bool = False
    global_pin: str = ""
    global_pin_max_uses: int = Field(default=3, ge=1)
    pin_max_uses: int = Field(default=3, ge=1)

    rotation_notify_to: str = ""
    rotation_subject: str = "OTP gateway PIN rotated"
    rotation_sync_inbox: str = ""
    rotation_sync_app_password: str = ""

    mail_sender_filter: str = "noreply@openai.com"
    mail_lookback_seconds: int = Field(default=300, ge=1)
    sync_lookback_days: int = Field(default=7, ge=1)
    external_timeout_seconds: float = Field(default=10.0, gt=0)
    imap_verify_tls: bool = True

    smtp: SmtpSettings = Field(default_factory=SmtpSettings)
    ledger: LedgerSettings = Field(default_factory=LedgerSettings)
    google: GoogleServiceAccountSettings = Field(
        default_factory=GoogleServiceAccountSettings
    )

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @field_validator("credentials", mode="before")
    @classmethod
    def _parse_credentials(cls, value: Any) -> Any:
        # Empty CREDENTIALS means no inline accounts.
        if value in (None, ""):
            return {}
        if isinstance(value, str):
            return json.loads(value)
        return value

    @property
    def sync_inbox(self) -> str:
        """Inbox scanned for rotation notifications."""
        return (self.rotation_sync_inbox or self.rotation_notify_to).strip().lower()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
