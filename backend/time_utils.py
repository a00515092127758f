"""
Time utilities for the Task Manager application.

This module provides a single source of truth for time operations,
ensuring consistency across all endpoints. Datetimes read back from SQLite
come out naive; they are always stored as UTC, so `as_utc` re-attaches the
zone before any comparison.
"""

import math
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union

DAY = timedelta(days=1)


def utc_now() -> datetime:
    """
    Get current UTC time.
    Single source of truth for "now" throughout the application.

    Returns:
        timezone-aware datetime in UTC
    """
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return `value` as an aware UTC datetime; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value: Union[str, date, datetime, None]) -> Optional[datetime]:
    """
    Normalize a date/datetime/ISO8601 string into an aware UTC datetime.

    - Strings are parsed with datetime.fromisoformat; a date-only string is
      promoted to midnight.
    - A `date` becomes midnight of that day.
    - Naive values are assumed to already be UTC.

    Raises:
        ValueError: if the string is not ISO8601.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str):
        s = value.strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            return as_utc(datetime.fromisoformat(s))
        except ValueError:
            try:
                d = date.fromisoformat(s)
            except ValueError as e:
                raise ValueError(
                    f"Invalid date '{value}'. Use ISO8601 date or datetime (e.g. '2025-01-31' or '2025-01-31T13:45:00')."
                ) from e
            return datetime(d.year, d.month, d.day, tzinfo=timezone.utc)
    raise ValueError("Invalid type for date; expected date, datetime, or ISO8601 string.")


def is_overdue(due_date: Optional[datetime], status: str) -> bool:
    """
    Check if a task is overdue.

    A task is overdue if it has a due date in the past and is not completed.

    Args:
        due_date: The task's due date
        status: The task's status

    Returns:
        True if task is overdue, False otherwise
    """
    if not due_date or status == "completed":
        return False
    return utc_now() > as_utc(due_date)


def days_until(due_date: Optional[datetime]) -> Optional[int]:
    """Whole days from now until `due_date`, rounded up (negative when past)."""
    if due_date is None:
        return None
    return math.ceil((as_utc(due_date) - utc_now()) / DAY)


def days_between(start: Optional[datetime], end: Optional[datetime]) -> Optional[int]:
    """Whole days from `start` to `end`, rounded up."""
    if start is None or end is None:
        return None
    return math.ceil((as_utc(end) - as_utc(start)) / DAY)


def months_ago(months: int, now: Optional[datetime] = None) -> datetime:
    """Same day-of-month `months` calendar months before `now`, clamped to month end."""
    now = now or utc_now()
    year, month = divmod(now.month - 1 - months, 12)
    year += now.year
    month += 1
    # Clamp the day for shorter months (e.g. 31st -> 30th)
    next_month = datetime(year + (month // 12), month % 12 + 1, 1, tzinfo=now.tzinfo)
    last_day = (next_month - DAY).day
    return now.replace(year=year, month=month, day=min(now.day, last_day))
