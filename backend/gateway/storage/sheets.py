"""
Google Sheets sink — appends summary rows to a spreadsheet tab.

Rows are appended with USER_ENTERED so the =HYPERLINK/=DATE/=TIME
formulas built by the summary module are evaluated by Sheets.
"""

from __future__ import annotations

import asyncio
from typing import Any

from google.oauth2.service_account import Credentials
from googleapiclient.discovery import build

from gateway.core.logging import get_logger
from gateway.pipeline.models import SheetDestination

logger = get_logger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]


class SheetsSink:
    """Appends rows through the Sheets v4 API."""

    def __init__(self, credentials_path: str, service: Any | None = None) -> None:
        self._credentials_path = credentials_path
        self._service = service

    @property
    def service(self) -> Any:
        if self._service is None:
            creds = Credentials.from_service_account_file(self._credentials_path, scopes=SCOPES)
            self._service = build("sheets", "v4", credentials=creds, cache_discovery=False)
        return self._service

    async def append_row(self, destination: SheetDestination, row: list[str]) -> None:
        await asyncio.to_thread(self._append, destination, row)
        logger.info(
            "Row appended",
            spreadsheet_id=destination.spreadsheet_id,
            sheet_name=destination.sheet_name,
            columns=len(row),
        )

    def _append(self, destination: SheetDestination, row: list[str]) -> None:
        self.service.spreadsheets().values().append(
            spreadsheetId=destination.spreadsheet_id,
            range=destination.sheet_name,
            valueInputOption="USER_ENTERED",
            insertDataOption="OVERWRITE",
            body={"values": [row]},
        ).execute()
