"""Google Sheets ledger of the current PIN per account.

Sheet layout: column A holds the account email, column B the PIN and
column C the UTC time of the last write. Row 1 may hold headers.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .config import GoogleServiceAccountSettings, LedgerSettings
from .google_auth import get_google_credentials
from .ports import UpsertResult

logger = logging.getLogger(__name__)


class SheetsLedger:
    """Ledger backed by a Google Sheets workbook."""

    def __init__(
        self,
        config: LedgerSettings,
        google: GoogleServiceAccountSettings | None = None,
        service: Any = None,
        timeout: float = 10.0,
    ) -> None:
        """Initialize the ledger.

        Args:
            config: Spreadsheet id and sheet name.
            google: Service account settings; used when ``service`` is None.
            service: Prebuilt Sheets API resource, mainly for tests.
            timeout: Bound for one upsert, in seconds.
        """
        self._config = config
        self._google = google
        self._service = service
        self._timeout = timeout
        self._lock = asyncio.Lock()

    def _sheets(self) -> Any:
        if self._service is None:
            logger.debug("Building Google Sheets client")
            credentials = get_google_credentials(self._google or GoogleServiceAccountSettings())
            self._service = build(
                "sheets", "v4", credentials=credentials, cache_discovery=False
            )
        return self._service.spreadsheets().values()

    def _find_row(self, email: str) -> int | None:
        """Return the 1-based row holding ``email`` in column A, if any."""
        result = (
            self._sheets()
            .get(
                spreadsheetId=self._config.spreadsheet_id,
                range=f"{self._config.sheet_name}!A:A",
            )
            .execute()
        )
        for index, row in enumerate(result.get("values", []), start=1):
            if row and str(row[0]).strip().lower() == email:
                return index
        return None

    def _upsert_blocking(self, email: str, pin: str) -> UpsertResult:
        email = email.strip().lower()
        stamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
        row = self._find_row(email)
        if row is None:
            self._sheets().append(
                spreadsheetId=self._config.spreadsheet_id,
                range=f"{self._config.sheet_name}!A:C",
                valueInputOption="RAW",
                insertDataOption="INSERT_ROWS",
                body={"values": [[email, pin, stamp]]},
            ).execute()
            return UpsertResult.INSERTED
        self._sheets().update(
            spreadsheetId=self._config.spreadsheet_id,
            range=f"{self._config.sheet_name}!B{row}:C{row}",
            valueInputOption="RAW",
            body={"values": [[pin, stamp]]},
        ).execute()
        return UpsertResult.UPDATED

    async def upsert(self, email: str, pin: str) -> UpsertResult:
        """Insert or update the PIN recorded for ``email``.

        Upserts are serialized so two writes for a new email cannot both
        append a row.

        Raises:
            HttpError: on Sheets API failures.
            TimeoutError: when the call exceeds the configured timeout.
        """
        async with self._lock:
            try:
                result = await asyncio.wait_for(
                    asyncio.to_thread(self._upsert_blocking, email, pin),
                    timeout=self._timeout,
                )
            except HttpError as e:
                logger.error(f"Google Sheets API error: {e}")
                raise
        logger.info("ledger.upsert", extra={"email": email, "result": result.value})
        return result
