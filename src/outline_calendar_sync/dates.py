"""
Clock, timezone and date-partition helpers shared by the stores and the sync
passes.  Depends on nothing but models.
"""

import re
from datetime import date
from datetime import datetime
from datetime import time
from datetime import timedelta
from datetime import timezone
from datetime import tzinfo
from zoneinfo import ZoneInfo
from zoneinfo import ZoneInfoNotFoundError

from outline_calendar_sync.models import ConfigError

_PARTITION_TITLE_RE = re.compile(r"^([A-Z][a-z]+) (\d{1,2})(?:st|nd|rd|th), (\d{4})$")

_MONTHS = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resolve_timezone(name: str | None) -> tzinfo | None:
    """Return a tzinfo for an IANA name, or None for the system zone."""
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(f"Unknown timezone: {name}") from e


def to_local(value: datetime, tz: tzinfo | None = None) -> datetime:
    """Convert an aware datetime to wall-clock time in tz (system zone when None)."""
    return value.astimezone(tz) if tz else value.astimezone()


def local_midnight(day: date, tz: tzinfo | None = None) -> datetime:
    if tz:
        return datetime.combine(day, time(), tzinfo=tz)
    return datetime.combine(day, time()).astimezone()


def sync_window(now: datetime, days_back: int, days_forward: int) -> tuple[datetime, datetime]:
    return now - timedelta(days=days_back), now + timedelta(days=days_forward)


# ---------------------------------------------------------------------------
# Date partitions
# ---------------------------------------------------------------------------


def partition_id(day: date) -> str:
    """Id of the date partition for a day: MM-DD-YYYY."""
    return day.strftime("%m-%d-%Y")


def partition_date(partition: str) -> date | None:
    try:
        return datetime.strptime(partition, "%m-%d-%Y").date()
    except ValueError:
        return None


def _ordinal(n: int) -> str:
    if 11 <= n % 100 <= 13:
        return f"{n}th"
    suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def partition_title(day: date) -> str:
    """Human title of a date partition, e.g. 'March 1st, 2026'."""
    return f"{_MONTHS[day.month - 1]} {_ordinal(day.day)}, {day.year}"


def parse_partition_title(title: str) -> date | None:
    match = _PARTITION_TITLE_RE.match(title.strip())
    if not match or match.group(1) not in _MONTHS:
        return None
    try:
        return date(int(match.group(3)), _MONTHS.index(match.group(1)) + 1, int(match.group(2)))
    except ValueError:
        return None
