"""Civil-date bucketing for per-user daily and weekly aggregates.

Daily stats are keyed by the user's *local* calendar date, while meals and water logs
carry absolute UTC instants. These helpers translate between the two.
"""

import logging
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DEFAULT_TIMEZONE = "UTC"

logger = logging.getLogger("uvicorn.error")


def resolve_zone(timezone_name: Optional[str]) -> tzinfo:
    name = (timezone_name or "").strip() or DEFAULT_TIMEZONE
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("timezone_unrecognized timezone=%s fallback=UTC", name)
        return timezone.utc


def parse_civil_date(date_string: str) -> date:
    return date.fromisoformat(date_string)


def utc_range_for_date(date_string: str, timezone_name: Optional[str]) -> tuple[datetime, datetime]:
    """Return ``[start, end)`` in UTC spanning the civil day in the given zone.

    The offset is taken at local midnight; ``end`` is always exactly 24h after ``start``.
    """
    day = parse_civil_date(date_string)
    local_midnight = datetime(day.year, day.month, day.day, tzinfo=resolve_zone(timezone_name))
    start = local_midnight.astimezone(timezone.utc)
    return start, start + timedelta(hours=24)


def format_date_in_zone(instant: datetime, timezone_name: Optional[str]) -> str:
    # Stored timestamps are naive UTC.
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(resolve_zone(timezone_name)).date().isoformat()


def today_in_zone(timezone_name: Optional[str], now: Optional[datetime] = None) -> str:
    return format_date_in_zone(now or datetime.now(timezone.utc), timezone_name)


def shift_civil_date(date_string: str, days: int) -> str:
    return (parse_civil_date(date_string) + timedelta(days=days)).isoformat()


def to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
