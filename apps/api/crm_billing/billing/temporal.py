from __future__ import annotations

import calendar
import math
from collections.abc import Callable
from datetime import date, datetime, time, timezone
from typing import Any

Clock = Callable[[], datetime]

_SECONDS_PER_DAY = 86400


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def today(clock: Clock) -> date:
    return clock().date()


def to_calendar_date(value: Any) -> date | None:
    """Normalize a date-like value to a calendar date, or None when it cannot be parsed."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None

    raw = value.strip()
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def add_months(value: date, months: int) -> date:
    month_index = value.month - 1 + months
    year = value.year + (month_index // 12)
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def days_until(value: date, now: date | datetime) -> int:
    """Whole days from ``now`` to ``value``, rounded up; negative once ``value`` has passed.

    With a ``datetime`` for ``now`` the target is midnight of ``value`` in the
    same timezone, so anything later today already counts as day 0.
    """
    if isinstance(now, datetime):
        target = datetime.combine(value, time.min, tzinfo=now.tzinfo)
        return math.ceil((target - now).total_seconds() / _SECONDS_PER_DAY)
    return (value - now).days
