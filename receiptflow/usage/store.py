"""Persistence of monthly usage counts.

Each period ("YYYYMM") is one row of the Usage tab: Month | Count. Rows are
created on the first increment of a period and never deleted, so the tab
doubles as usage history.
"""

import logging
import threading
from typing import Protocol

from receiptflow.sheets.client import SheetsApiError, SheetsClient
from receiptflow.usage.errors import LedgerUnavailable

logger = logging.getLogger(__name__)

USAGE_HEADERS = ["Month", "Count"]


class UsageStore(Protocol):
    """Protocol for usage stores."""

    def get_period_count(self, period: str) -> int | None:
        """Stored count of a period, None when the period has no record."""
        ...

    def set_period_count(self, period: str, count: int) -> None:
        """Create or overwrite the record of a period."""
        ...


class InMemoryUsageStore:
    """Usage store for single-process deployments and tests."""

    def __init__(self, counts: dict[str, int] | None = None) -> None:
        self.counts: dict[str, int] = dict(counts or {})
        self._lock = threading.Lock()

    def get_period_count(self, period: str) -> int | None:
        with self._lock:
            return self.counts.get(period)

    def set_period_count(self, period: str, count: int) -> None:
        with self._lock:
            self.counts[period] = count


def _parse_count(value: object) -> int:
    try:
        return max(0, int(str(value).strip()))
    except ValueError:
        return 0


class SheetUsageStore:
    """Usage store backed by a dedicated tab of the invoice spreadsheet.

    The tab is created with its header row the first time it is found
    missing.
    """

    def __init__(
        self, client: SheetsClient, spreadsheet_id: str, sheet_name: str = "Usage"
    ) -> None:
        self.client = client
        self.spreadsheet_id = spreadsheet_id
        self.sheet_name = sheet_name
        self._initialized = False

    def _ensure_sheet(self) -> None:
        if self._initialized:
            return
        if self.sheet_name not in self.client.sheet_titles(self.spreadsheet_id):
            self.client.add_sheet(self.spreadsheet_id, self.sheet_name)
            self.client.update_values(
                self.spreadsheet_id, f"{self.sheet_name}!A1:B1", [USAGE_HEADERS]
            )
            logger.info(f"Created usage tracking sheet '{self.sheet_name}'")
        self._initialized = True

    def ensure_sheet(self) -> None:
        """Create the usage tab with its header row if it is missing."""
        try:
            self._ensure_sheet()
        except SheetsApiError as e:
            raise LedgerUnavailable(f"Failed to prepare usage sheet: {e}") from e

    def _find(self, period: str) -> tuple[int | None, int | None]:
        """Locate a period: (1-based row number, count), both None when absent."""
        rows = self.client.get_values(self.spreadsheet_id, f"{self.sheet_name}!A:B")
        for index, row in enumerate(rows, start=1):
            if row and str(row[0]).strip() == period:
                return index, _parse_count(row[1]) if len(row) > 1 else 0
        return None, None

    def get_period_count(self, period: str) -> int | None:
        try:
            self._ensure_sheet()
            _, count = self._find(period)
        except SheetsApiError as e:
            raise LedgerUnavailable(f"Failed to read usage for {period}: {e}") from e
        return count

    def set_period_count(self, period: str, count: int) -> None:
        try:
            self._ensure_sheet()
            row_number, _ = self._find(period)
            if row_number is None:
                self.client.append_values(
                    self.spreadsheet_id,
                    f"{self.sheet_name}!A:B",
                    [[period, count]],
                    value_input_option="RAW",
                )
            else:
                self.client.update_values(
                    self.spreadsheet_id, f"{self.sheet_name}!B{row_number}", [[count]]
                )
        except SheetsApiError as e:
            raise LedgerUnavailable(f"Failed to write usage for {period}: {e}") from e
