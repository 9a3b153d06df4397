"""Append-only store for projected invoice rows."""

import logging
from collections.abc import Sequence
from typing import Any, Protocol

from receiptflow.sheets.client import SheetsClient, column_letter
from receiptflow.sheets.projector import SHEET_HEADERS, Cell

logger = logging.getLogger(__name__)


class RowStore(Protocol):
    """Protocol for row stores."""

    def append_rows(self, rows: Sequence[Sequence[Cell]]) -> dict[str, Any]:
        """Append rows after the existing ones."""
        ...

    def get_header_row(self) -> list[Any]:
        """First row of the sheet, empty when the sheet is empty."""
        ...

    def set_header_row(self, cells: Sequence[str]) -> None:
        """Overwrite the first row of the sheet."""
        ...


class SheetRowStore:
    """Row store backed by one tab of a Google spreadsheet."""

    def __init__(self, client: SheetsClient, spreadsheet_id: str, sheet_name: str) -> None:
        self.client = client
        self.spreadsheet_id = spreadsheet_id
        self.sheet_name = sheet_name
        self._last_column = column_letter(len(SHEET_HEADERS))

    def append_rows(self, rows: Sequence[Sequence[Cell]]) -> dict[str, Any]:
        result = self.client.append_values(
            self.spreadsheet_id,
            f"{self.sheet_name}!A:{self._last_column}",
            [list(row) for row in rows],
        )
        updated = result.get("updates", {}).get("updatedRange")
        logger.info(
            f"Appended {len(rows)} row(s) to {self.spreadsheet_id}/{self.sheet_name}: {updated}"
        )
        return result

    def get_header_row(self) -> list[Any]:
        values = self.client.get_values(
            self.spreadsheet_id, f"{self.sheet_name}!A1:{self._last_column}1"
        )
        return values[0] if values else []

    def set_header_row(self, cells: Sequence[str]) -> None:
        self.client.update_values(
            self.spreadsheet_id,
            f"{self.sheet_name}!A1:{column_letter(len(cells))}1",
            [list(cells)],
        )


def ensure_header(store: RowStore) -> bool:
    """Write the header row if the sheet is empty.

    Returns:
        True when the header was written, False when one already existed
    """
    existing = store.get_header_row()
    if existing:
        if list(existing) != list(SHEET_HEADERS):
            logger.warning("Sheet header differs from the current layout; run a migration")
        return False
    store.set_header_row(SHEET_HEADERS)
    logger.info(f"Initialized sheet with {len(SHEET_HEADERS)}-column invoice header")
    return True


def migrate_header(store: RowStore) -> None:
    """Overwrite the header row with the current layout."""
    store.set_header_row(SHEET_HEADERS)
    logger.info(f"Migrated sheet header to {len(SHEET_HEADERS)}-column layout")
