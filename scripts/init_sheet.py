#!/usr/bin/env python3
"""Prepare the invoice spreadsheet.

Writes the invoice header row when the sheet is empty and creates the usage
tab. With --migrate the header row is overwritten with the current column
layout, which is needed after the layout changed.

Usage:
    python scripts/init_sheet.py
    python scripts/init_sheet.py --migrate --sheet-name Invoices

Requirements:
    - APP_SHEETS_ACCESS_TOKEN and APP_SPREADSHEET_ID set
"""

import argparse
import logging

from receiptflow.sheets.client import SheetsClient
from receiptflow.sheets.row_store import RowStore, SheetRowStore, ensure_header, migrate_header
from receiptflow.shared.config import Settings, get_settings
from receiptflow.usage.store import SheetUsageStore

logger = logging.getLogger(__name__)


def init_sheet(store: RowStore, migrate: bool = False) -> str:
    """Initialize or migrate the header row of a row store.

    Returns:
        What was done: "migrated", "initialized" or "unchanged"
    """
    if migrate:
        migrate_header(store)
        return "migrated"
    return "initialized" if ensure_header(store) else "unchanged"


def run(settings: Settings, sheet_name: str | None = None, migrate: bool = False) -> str:
    if not settings.spreadsheet_id:
        raise SystemExit("APP_SPREADSHEET_ID is not set")

    client = SheetsClient(settings)
    store = SheetRowStore(client, settings.spreadsheet_id, sheet_name or settings.sheet_name)
    result = init_sheet(store, migrate=migrate)
    logger.info(f"Invoice sheet {store.sheet_name}: {result}")

    if settings.usage_backend == "sheets":
        usage = SheetUsageStore(client, settings.spreadsheet_id, settings.usage_sheet_name)
        usage.ensure_sheet()
        logger.info(f"Usage sheet {settings.usage_sheet_name}: ready")
    return result


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Initialize the invoice spreadsheet")
    parser.add_argument(
        "--sheet-name",
        default=None,
        help="Tab receiving invoice rows (default: APP_SHEET_NAME)",
    )
    parser.add_argument(
        "--migrate",
        action="store_true",
        help="Overwrite an existing header row with the current layout",
    )
    args = parser.parse_args()

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    print(run(settings, sheet_name=args.sheet_name, migrate=args.migrate))
