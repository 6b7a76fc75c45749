"""
Calendar Dates - UTC calendar-date comparison for calibration checks.

Time of day never matters: both timestamps are reduced to their UTC
calendar date before comparing. Naive timestamps are taken as UTC.

Besides ISO 8601, slashed dates as printed on field reports are read
(``15/03/2024``, ``03/15/24``). Their day/month order is ambiguous, so
callers pass the configured ``DateFormat``.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from enum import Enum
from typing import Union

__all__ = [
    "DateFormat",
    "DateLike",
    "to_utc_date",
    "parse_date",
    "is_expired",
    "is_expiring_today",
]

DateLike = Union[date, datetime, str]

# Day, month and year separated by "/", "." or "-"; two-digit years are 20xx
_SLASHED = re.compile(r"^(\d{1,2})[/.-](\d{1,2})[/.-](\d{2}|\d{4})$")


class DateFormat(str, Enum):
    """Day/month order of non-ISO dates."""

    DMY = "DD/MM/YYYY"
    MDY = "MM/DD/YYYY"


def _parse_slashed(text: str, date_format: DateFormat) -> date | None:
    match = _SLASHED.match(text)
    if match is None:
        return None
    first, second, year = match.groups()
    if date_format is DateFormat.MDY:
        month, day = int(first), int(second)
    else:
        day, month = int(first), int(second)
    full_year = int(year) + 2000 if len(year) == 2 else int(year)
    # Out-of-range day or month raises ValueError
    return date(full_year, month, day)


def to_utc_date(value: DateLike, date_format: DateFormat = DateFormat.DMY) -> date:
    """
    Reduce a date, datetime or date string to its UTC calendar date.

    Strings are ISO 8601 or slashed dates in ``date_format`` order.

    Raises:
        ValueError: Value is not a recognizable date

    Example:
        >>> to_utc_date("2024-03-15T23:30:00-03:00")
        datetime.date(2024, 3, 16)
        >>> to_utc_date("03/15/24", DateFormat.MDY)
        datetime.date(2024, 3, 15)
    """
    if isinstance(value, str):
        text = value.strip()
        slashed = _parse_slashed(text, DateFormat(date_format))
        if slashed is not None:
            return slashed
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        value = datetime.fromisoformat(text)

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()

    if isinstance(value, date):
        return value

    raise ValueError(f"Not a date: {value!r}")


def parse_date(value: object, date_format: DateFormat = DateFormat.DMY) -> date | None:
    """Lenient to_utc_date(): None for missing or unparseable values."""
    if value is None or value == "":
        return None
    try:
        return to_utc_date(value, date_format)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


def is_expired(
    expiry: DateLike,
    measured: DateLike,
    date_format: DateFormat = DateFormat.DMY,
) -> bool:
    """
    Calibration expired before the measurement day.

    Example:
        >>> is_expired("2024-03-14", "2024-03-15T08:00:00")
        True
        >>> is_expired("2024-03-15T00:00:00", "2024-03-15T23:59:00")
        False
    """
    return to_utc_date(expiry, date_format) < to_utc_date(measured, date_format)


def is_expiring_today(
    expiry: DateLike,
    measured: DateLike,
    date_format: DateFormat = DateFormat.DMY,
) -> bool:
    """Calibration expires on the measurement day itself."""
    return to_utc_date(expiry, date_format) == to_utc_date(measured, date_format)
