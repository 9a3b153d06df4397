"""Locale-tolerant field parsers used throughout invoice normalization.

Model output is loosely typed: amounts arrive as numbers, as strings with
thousands separators and currency symbols ("฿1,200.00 บาท"), tax ids arrive
with dashes and spaces, dates in whatever format was printed on the receipt.
These helpers map that input into canonical values and never raise.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Any

from dateutil import parser as date_parser

# Prefix that makes the spreadsheet store a cell as literal text
TEXT_MARKER = "'"

_NON_NUMERIC = re.compile(r"[^0-9.\-]")
_TAX_ID_SEPARATORS = re.compile(r"[\s\-.]")
_TAX_ID = re.compile(r"(?<!\d)\d{13}(?!\d)")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_number(value: Any) -> Decimal | None:
    """Parse a numeric value from a number or free-form string.

    Every character other than digits, '.' and '-' is stripped first, so
    "1,234.50 THB" becomes Decimal("1234.50").

    Args:
        value: Number, string or None

    Returns:
        Decimal value, or None when nothing numeric remains
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            return None
        return Decimal(str(value))

    cleaned = _NON_NUMERIC.sub("", str(value))
    if not cleaned:
        return None
    try:
        number = Decimal(cleaned)
    except InvalidOperation:
        return None
    return number if number.is_finite() else None


def extract_tax_id(text: Any) -> str | None:
    """Extract a 13-digit tax id.

    Whitespace, hyphens and dots are removed before searching, so
    "010-756-6000-453" yields "0107566000453".

    Args:
        text: Text possibly containing a tax id

    Returns:
        First run of exactly 13 digits, or None
    """
    if text is None or isinstance(text, bool):
        return None
    cleaned = _TAX_ID_SEPARATORS.sub("", str(text))
    match = _TAX_ID.search(cleaned)
    return match.group(0) if match else None


def normalize_date(text: Any) -> str | None:
    """Normalize a date to YYYY-MM-DD.

    Unparseable input is returned prefixed with TEXT_MARKER so the
    spreadsheet keeps it as text instead of coercing it to a serial number.

    Args:
        text: Date string in any format, or None

    Returns:
        ISO date, marker-prefixed original, or None
    """
    if text is None:
        return None
    value = str(text).strip()
    if not value:
        return None
    if _ISO_DATE.match(value) or value.startswith(TEXT_MARKER):
        return value

    try:
        parsed = date_parser.parse(value)
    except (ValueError, OverflowError):
        return f"{TEXT_MARKER}{value}"
    return parsed.date().isoformat()
