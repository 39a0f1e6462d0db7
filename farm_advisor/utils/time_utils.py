"""
Time and date utilities for evaluation-time arithmetic.

Key concepts:
  - A single "now" is captured once per evaluation pass and passed explicitly
    into every date-relative computation; nothing below reads the wall clock
    except ``utcnow()``.
  - Whole-day differences floor toward negative infinity, so an event 36 hours
    ago is 1 day ago and an event 12 hours ahead is 0 days away.
  - Naive datetimes (SQLite round-trips, hand-built test fixtures) are treated
    as UTC.
  - Seasons follow the Ghana agricultural calendar.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Union

from farm_advisor.taxonomy.dse_taxonomy import Season

DateLike = Union[date, datetime]

# Month → season for the Ghana agricultural calendar.
_SEASON_BY_MONTH: dict[int, Season] = {
    1:  Season.MAJOR_DRY,
    2:  Season.MAJOR_DRY,
    3:  Season.MAJOR_RAINY,
    4:  Season.MAJOR_RAINY,
    5:  Season.MAJOR_RAINY,
    6:  Season.MAJOR_RAINY,
    7:  Season.MAJOR_RAINY,
    8:  Season.MINOR_DRY,
    9:  Season.MINOR_RAINY,
    10: Season.MINOR_RAINY,
    11: Season.MINOR_RAINY,
    12: Season.MAJOR_DRY,
}


def utcnow() -> datetime:
    """Return the current UTC datetime with timezone info.

    Prefer this over ``datetime.utcnow()`` (which returns naive datetimes).
    """
    return datetime.now(tz=timezone.utc)


def ensure_utc(value: DateLike) -> datetime:
    """Coerce a date or datetime to an aware UTC datetime.

    Plain dates become midnight UTC; naive datetimes are assumed to be UTC.
    """
    if not isinstance(value, datetime):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def whole_days_between(start: DateLike, end: DateLike) -> int:
    """Return signed whole days from ``start`` to ``end``.

    Positive when ``end`` is later than ``start``.

    Args:
        start: Earlier reference point.
        end: Later reference point.

    Returns:
        ``floor((end - start) / 1 day)``.
    """
    return (ensure_utc(end) - ensure_utc(start)) // timedelta(days=1)


def days_since(value: Optional[DateLike], now: DateLike) -> Optional[int]:
    """Whole days elapsed since ``value``, or ``None`` if ``value`` is ``None``."""
    if value is None:
        return None
    return whole_days_between(value, now)


def days_until(value: Optional[DateLike], now: DateLike) -> Optional[int]:
    """Whole days from ``now`` until ``value`` (negative if already past)."""
    if value is None:
        return None
    return whole_days_between(now, value)


def current_season(check_date: DateLike) -> Season:
    """Return the Ghana agricultural season containing ``check_date``.

    Major rainy: March–July.  Minor dry: August.
    Minor rainy: September–November.  Major dry: December–February.
    """
    return _SEASON_BY_MONTH[check_date.month]


def add_days(start: DateLike, days: int) -> datetime:
    return ensure_utc(start) + timedelta(days=days)


# ── Storage round-trip ────────────────────────────────────────────────────────
# Fixed-width UTC strings so lexical order in SQLite matches time order.

_DB_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def to_db_timestamp(value: Optional[DateLike]) -> Optional[str]:
    """Serialize a date/datetime as a fixed-width UTC ISO-8601 string."""
    if value is None:
        return None
    return ensure_utc(value).strftime(_DB_TS_FORMAT)


def from_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp (any ISO-8601 form) into an aware UTC datetime."""
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value))
