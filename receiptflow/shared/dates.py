"""Date helpers for period keys, folder names and sheet timestamps."""

from collections.abc import Callable
from datetime import datetime
from zoneinfo import ZoneInfo

Clock = Callable[[], datetime]


def make_clock(timezone: str | None = None) -> Clock:
    """Build a wall clock in the given IANA timezone, or process local time."""
    if timezone:
        tz = ZoneInfo(timezone)
        return lambda: datetime.now(tz)
    return lambda: datetime.now().astimezone()


def period_key(moment: datetime) -> str:
    """Quota period of a moment, e.g. '202601'."""
    return moment.strftime("%Y%m")


def format_period(key: str) -> str:
    """'202601' -> '2026-01'."""
    return f"{key[:4]}-{key[4:]}"


def date_folder(moment: datetime) -> str:
    """One storage folder per calendar day, e.g. '20260111'."""
    return moment.strftime("%Y%m%d")


def format_date_time(moment: datetime) -> str:
    """Sheet timestamp, e.g. '2026-01-11 14:03:59'."""
    return moment.strftime("%Y-%m-%d %H:%M:%S")


def format_date(moment: datetime) -> str:
    """Directory date, e.g. '2026-01-11'."""
    return moment.strftime("%Y-%m-%d")
