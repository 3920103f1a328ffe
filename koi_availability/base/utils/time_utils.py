import logging
from datetime import date, datetime, time
from typing import Optional, Union

import pytz

from koi_availability.base.config import settings

logger = logging.getLogger("time_utils")

TimeLike = Union[str, time]


def to_minutes(value: TimeLike) -> int:
    """
    Converts a time of day to minutes since midnight.

    Accepts ``datetime.time`` or strings in ``HH:MM`` / ``HH:MM:SS`` form.
    Seconds are dropped, so ``09:15:59`` and ``09:15`` compare equal.
    """
    if isinstance(value, time):
        return value.hour * 60 + value.minute
    if not isinstance(value, str):
        raise ValueError(f"Cannot convert {type(value)} to minutes")

    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid time of day: {value!r}")

    hours, minutes = int(parts[0]), int(parts[1])
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ValueError(f"Time of day out of range: {value!r}")
    return hours * 60 + minutes


def format_minutes(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def normalize_time(value: TimeLike) -> str:
    """Canonical ``HH:MM`` form of a time of day."""
    return format_minutes(to_minutes(value))


def is_time_overlap(start_a: TimeLike, end_a: TimeLike, start_b: TimeLike, end_b: TimeLike) -> bool:
    """
    Half-open interval overlap: ``[start_a, end_a)`` and ``[start_b, end_b)``
    overlap iff ``start_a < end_b and start_b < end_a``.

    Touching intervals (09:15 end vs 09:30 start, or 09:15 vs 09:15) never overlap.
    """
    return to_minutes(start_a) < to_minutes(end_b) and to_minutes(start_b) < to_minutes(end_a)


def parse_iso_date(value: Union[str, date, datetime]) -> date:
    """
    Parses an ISO date or date-time into a calendar date.

    The backend sends either ``2025-03-20`` or ``2025-03-20T00:00:00``;
    the time component is discarded.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or len(value.strip()) < 10:
        raise ValueError(f"Invalid ISO date: {value!r}")
    return date.fromisoformat(value.strip()[:10])


def today_local(tz_name: Optional[str] = None) -> date:
    """Current calendar day in the business timezone."""
    tz_name = tz_name or settings.TIMEZONE
    try:
        tz = pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        logger.error(f"[TimeUtils] Invalid timezone '{tz_name}', using UTC")
        tz = pytz.UTC
    return datetime.now(tz).date()
