"""Timestamp normalization and duration helpers for Task Timer."""

from __future__ import annotations

import logging
import math
import time
from datetime import date, datetime, timedelta, timezone
from typing import Any

logger = logging.getLogger(__name__)

MS_PER_DAY = 24 * 60 * 60 * 1000
MS_PER_YEAR = 365 * MS_PER_DAY

# Largest instant a millisecond timestamp can express (+/- 100 million days)
MAX_EPOCH_MS = 8_640_000_000_000_000

# Length of a millisecond timestamp in the current era
MS_TIMESTAMP_DIGITS = 13


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


def to_ms(dt: datetime) -> int:
    """Convert a datetime to epoch milliseconds (naive values are UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    delta = dt - datetime(1970, 1, 1, tzinfo=timezone.utc)
    return delta // timedelta(milliseconds=1)


def _normalize_number(value: float, now: int, one_year_ago: int) -> int | None:
    if isinstance(value, float) and not math.isfinite(value):
        return None

    # Already a plausible recent timestamp
    if one_year_ago < value < now + MS_PER_DAY:
        return int(value)

    # Any other representable instant
    if abs(value) <= MAX_EPOCH_MS:
        return int(value)

    # Oversized number: keep the leading millisecond digits
    if value < 0:
        return None
    extracted = _leading_digits(int(value), MS_TIMESTAMP_DIGITS)
    if extracted is not None and extracted > one_year_ago:
        return extracted
    return None


def _leading_digits(value: int, count: int) -> int | None:
    """First `count` decimal digits of a non-negative integer.

    Works on magnitudes, so integers too long for str() are fine.
    """
    ndigits = max(1, int(value.bit_length() * math.log10(2)))
    while 10**ndigits <= value:
        ndigits += 1
    while ndigits > 1 and 10 ** (ndigits - 1) > value:
        ndigits -= 1
    if ndigits < count:
        return None
    return value // 10 ** (ndigits - count)


def normalize_timestamp(value: Any, *, now: int | None = None) -> int | None:
    """Normalize a stored timestamp to epoch milliseconds.

    Accepts datetimes, dates, epoch milliseconds (int or float), numeric
    strings and ISO 8601 strings. Oversized integers have their first 13
    digits salvaged.

    Args:
        value: The stored value, or None.
        now: Current time in epoch ms (default: wall clock).

    Returns:
        Epoch milliseconds, None for None input, or `now` when the value
        cannot be interpreted. Never raises.
    """
    if value is None:
        return None
    if now is None:
        now = now_ms()

    if isinstance(value, datetime):
        return to_ms(value)
    if isinstance(value, date):
        local_midnight = datetime(value.year, value.month, value.day).astimezone()
        return to_ms(local_midnight)

    one_year_ago = now - MS_PER_YEAR
    result: int | None = None

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        result = _normalize_number(value, now, one_year_ago)
    elif isinstance(value, str):
        stripped = value.strip()
        try:
            number = int(stripped)
        except ValueError:
            try:
                number = float(stripped)
            except ValueError:
                number = None
        if number is not None:
            result = _normalize_number(number, now, one_year_ago)
        else:
            try:
                result = to_ms(datetime.fromisoformat(stripped.replace("Z", "+00:00")))
            except ValueError:
                result = None

    if result is None:
        logger.warning("Could not normalize timestamp %r, using current time", value)
        return now
    return result


def calculate_duration(start: Any, end: Any = None, *, now: int | None = None) -> int:
    """Elapsed milliseconds between start and end (default: now), never negative."""
    if now is None:
        now = now_ms()
    start_ms = normalize_timestamp(start, now=now)
    if start_ms is None:
        return 0
    end_ms = normalize_timestamp(end, now=now) if end is not None else now
    return max(0, end_ms - start_ms)


def format_duration(ms: int) -> str:
    """Format milliseconds as 'HH:MM:SS'.

    Hours keep counting past 24. Negative durations display as zero.
    """
    ms = max(0, ms)
    hours = ms // 3_600_000
    minutes = (ms % 3_600_000) // 60_000
    seconds = (ms % 60_000) // 1000
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def start_of_day(now: int | None = None) -> int:
    """Local midnight at or before `now`, in epoch milliseconds."""
    if now is None:
        now = now_ms()
    # Naive local wall time, localized again so midnight gets its own offset
    local = datetime.fromtimestamp(now / 1000)
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return to_ms(midnight.astimezone())


def get_day_range(day: date | datetime | None = None) -> tuple[int, int]:
    """Get start of day to start of next day in local time.

    Args:
        day: Date to get range for (default: today).

    Returns:
        Tuple of (start, end) epoch milliseconds (start inclusive, end exclusive).
    """
    if day is None:
        day = datetime.now()
    elif isinstance(day, datetime):
        if day.tzinfo is not None:
            day = day.astimezone().replace(tzinfo=None)
    else:
        day = datetime(day.year, day.month, day.day)

    # Both bounds are localized separately so DST days get the right offsets
    midnight = day.replace(hour=0, minute=0, second=0, microsecond=0)
    start = midnight.astimezone()
    end = (midnight + timedelta(days=1)).astimezone()

    return to_ms(start), to_ms(end)
