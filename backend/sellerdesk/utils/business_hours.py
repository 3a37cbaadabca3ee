from __future__ import annotations

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo


def _at_hour(day: datetime, hour: int) -> datetime:
    if hour >= 24:
        return day.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1)
    return day.replace(hour=hour, minute=0, second=0, microsecond=0)


def _next_open(cursor: datetime, open_hour: int, days: set[int]) -> datetime:
    day = cursor.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1)
    for _ in range(7):
        if day.weekday() in days:
            return _at_hour(day, open_hour)
        day = day + timedelta(days=1)
    raise ValueError("no business days configured")


def add_business_hours(
    start_ms: int,
    duration_ms: int,
    *,
    open_hour: int,
    close_hour: int,
    days: list[int] | set[int],
    tz_name: str,
) -> int:
    """Add `duration_ms` of office time to `start_ms`, skipping closed hours and days.

    A start outside opening hours begins counting at the next opening.
    Weekdays use Monday=0.
    """
    open_days = {int(d) for d in days}
    if not open_days:
        raise ValueError("no business days configured")
    if not (0 <= int(open_hour) < int(close_hour) <= 24):
        raise ValueError("invalid business hours")
    tz = ZoneInfo(tz_name)

    cursor = datetime.fromtimestamp(start_ms / 1000.0, tz=timezone.utc).astimezone(tz)
    remaining = timedelta(milliseconds=int(duration_ms))

    while True:
        opens = _at_hour(cursor, open_hour)
        closes = _at_hour(cursor, close_hour)
        if cursor.weekday() not in open_days or cursor >= closes:
            cursor = _next_open(cursor, open_hour, open_days)
            continue
        if cursor < opens:
            cursor = opens
        available = closes - cursor
        if remaining <= available:
            end = cursor + remaining
            return int(round(end.astimezone(timezone.utc).timestamp() * 1000))
        remaining -= available
        cursor = _next_open(cursor, open_hour, open_days)
