"""Human-friendly times for browsing snapshot history.

``parse_time_reference`` accepts what an author types after ``--since``:
- ISO dates and times: "2025-01-15", "2025-01-15T14:30:00"
- Relative offsets: "90 seconds ago", "10 min ago", "2 hours ago"
- Named points: "today", "yesterday", "last hour", "last week"
"""

import re
from datetime import datetime, timedelta, timezone

from dateutil import parser as dateparser
from dateutil.relativedelta import relativedelta

from .constants import (
    SECONDS_PER_DAY,
    SECONDS_PER_HOUR,
    SECONDS_PER_MINUTE,
    SECONDS_PER_MONTH,
    SECONDS_PER_WEEK,
    SECONDS_PER_YEAR,
)

_UNIT_ALIASES = {
    "s": "seconds", "sec": "seconds", "second": "seconds",
    "m": "minutes", "min": "minutes", "minute": "minutes",
    "h": "hours", "hr": "hours", "hour": "hours",
    "d": "days", "day": "days",
    "w": "weeks", "week": "weeks",
    "month": "months",
    "year": "years",
}

_AGO_PATTERN = re.compile(r"^(\d+)\s*([a-z]+?)s?\s+ago$")


def _offset(unit: str, amount: int) -> relativedelta:
    return relativedelta(**{_UNIT_ALIASES[unit]: amount})


def parse_time_reference(ref: str, now: datetime | None = None) -> datetime:
    """Parse a time reference into a timezone-aware UTC datetime.

    Raises:
        ValueError: If the reference cannot be parsed
    """
    now = now or datetime.now(timezone.utc)
    text = ref.strip().lower()

    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    named = {
        "now": now,
        "today": start_of_day,
        "yesterday": start_of_day - timedelta(days=1),
        "last hour": now - timedelta(hours=1),
        "last week": now - timedelta(weeks=1),
        "last month": now - relativedelta(months=1),
    }
    if text in named:
        return named[text]

    if match := _AGO_PATTERN.match(text):
        amount, unit = int(match.group(1)), match.group(2)
        if unit in _UNIT_ALIASES:
            return now - _offset(unit, amount)
        raise ValueError(f"Unknown time unit in: {ref}")

    try:
        parsed = dateparser.parse(ref.strip())
    except (ValueError, OverflowError) as e:
        raise ValueError(f"Cannot parse time reference: {ref}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


_SCALE = [
    (SECONDS_PER_YEAR, "year"),
    (SECONDS_PER_MONTH, "month"),
    (SECONDS_PER_WEEK, "week"),
    (SECONDS_PER_DAY, "day"),
    (SECONDS_PER_HOUR, "hour"),
    (SECONDS_PER_MINUTE, "minute"),
]


def format_relative_time(dt: datetime, now: datetime | None = None) -> str:
    """Format a datetime like "just now", "3 minutes ago" or "2 days ago"."""
    now = now or datetime.now(timezone.utc)
    seconds = int((now - dt).total_seconds())

    if seconds < 0:
        return "in the future"
    if seconds < 10:
        return "just now"
    for size, unit in _SCALE:
        if seconds >= size:
            count = seconds // size
            return f"{count} {unit}{'s' if count != 1 else ''} ago"
    return f"{seconds} seconds ago"
