"""Conversions between datetimes and the fixed string layouts used as keys."""

from __future__ import annotations

import re
from datetime import datetime, timezone

_MAX_UNIX_NANO = (1 << 63) - 1

_FULL = re.compile(r"([0-9]{4})-([0-9]{2})-([0-9]{2}) ([0-9]{2}):([0-9]{2}):([0-9]{2})")
_YEARLY = re.compile(r"([0-9]{4})")
_MONTHLY = re.compile(r"([0-9]{4})([0-9]{2})")
_DAILY = re.compile(r"([0-9]{4})([0-9]{2})([0-9]{2})")
_HOURLY = re.compile(r"([0-9]{4})([0-9]{2})([0-9]{2})([0-9]{2})")

# Month, day, hour, minute, second used for the fields a layout leaves out.
_MISSING_FIELDS = (1, 1, 0, 0, 0)


def _parse(pattern: re.Pattern[str], s: str) -> datetime | None:
    match = pattern.fullmatch(s)
    if match is None:
        return None
    values = [int(group) for group in match.groups()]
    fields = (*values, *_MISSING_FIELDS[len(values) - 1:])
    try:
        return datetime(*fields, tzinfo=timezone.utc)
    except ValueError:
        return None


def timestamp_by_max_time() -> int:
    """Return the largest representable Unix time in nanoseconds."""
    return _MAX_UNIX_NANO


def string_to_time(s: str) -> datetime | None:
    """Parse ``YYYY-MM-DD hh:mm:ss`` as UTC; None if it does not match."""
    return _parse(_FULL, s)


def time_to_string(t: datetime) -> str:
    """Format as ``YYYY-MM-DD hh:mm:ss``."""
    return (
        f"{t.year:04d}-{t.month:02d}-{t.day:02d} "
        f"{t.hour:02d}:{t.minute:02d}:{t.second:02d}"
    )


def yearly_string_to_time(s: str) -> datetime | None:
    """Parse ``YYYY`` as UTC; None if it does not match."""
    return _parse(_YEARLY, s)


def time_to_yearly_string(t: datetime) -> str:
    """Format as ``YYYY``."""
    return f"{t.year:04d}"


def monthly_string_to_time(s: str) -> datetime | None:
    """Parse ``YYYYMM`` as UTC; None if it does not match."""
    return _parse(_MONTHLY, s)


def time_to_monthly_string(t: datetime) -> str:
    """Format as ``YYYYMM``."""
    return f"{t.year:04d}{t.month:02d}"


def daily_string_to_time(s: str) -> datetime | None:
    """Parse ``YYYYMMDD`` as UTC; None if it does not match."""
    return _parse(_DAILY, s)


def time_to_daily_string(t: datetime) -> str:
    """Format as ``YYYYMMDD``."""
    return f"{t.year:04d}{t.month:02d}{t.day:02d}"


def hourly_string_to_time(s: str) -> datetime | None:
    """Parse ``YYYYMMDDhh`` as UTC; None if it does not match."""
    return _parse(_HOURLY, s)


def time_to_hourly_string(t: datetime) -> str:
    """Format as ``YYYYMMDDhh``."""
    return f"{t.year:04d}{t.month:02d}{t.day:02d}{t.hour:02d}"