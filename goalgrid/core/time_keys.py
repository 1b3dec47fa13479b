"""Timezone-aware calendar keys: pure business logic.

Every boundary in the engine (today, yesterday, week start) is computed from
the instant as seen in the user's IANA timezone, never in UTC or server-local
time. Once an instant has been turned into a day key, further date arithmetic
is plain calendar arithmetic on that key.

No I/O: this module only transforms data.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, time, timedelta
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DAY_KEY_FORMAT = "%Y-%m-%d"


@lru_cache(maxsize=64)
def get_zone(tz: str) -> ZoneInfo:
    """Resolve an IANA timezone name, raising ValueError for unknown zones."""
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {tz!r}") from exc


def to_local(instant: datetime, tz: str) -> datetime:
    """Convert an instant to wall-clock time in `tz`.

    Naive datetimes are treated as UTC.
    """
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=UTC)
    return instant.astimezone(get_zone(tz))


def day_key(instant: datetime, tz: str) -> str:
    """Calendar date of `instant` in `tz`, formatted YYYY-MM-DD."""
    return to_local(instant, tz).date().isoformat()


def format_week_key(iso_year: int, iso_week: int) -> str:
    return f"{iso_year:04d}-W{iso_week:02d}"


def week_key(instant: datetime, tz: str) -> str:
    """ISO-8601 week of `instant` in `tz`, formatted YYYY-Www."""
    iso_year, iso_week, _ = to_local(instant, tz).isocalendar()
    return format_week_key(iso_year, iso_week)


def week_start(instant: datetime, tz: str) -> datetime:
    """Monday 00:00 (local) of the ISO week containing `instant`.

    The result is an aware datetime in `tz`, i.e. an absolute instant.
    """
    local = to_local(instant, tz)
    monday = local.date() - timedelta(days=local.isoweekday() - 1)
    return datetime.combine(monday, time(), tzinfo=get_zone(tz))


def week_end(instant: datetime, tz: str) -> datetime:
    """Week start plus six calendar days (Sunday 00:00 local)."""
    monday = week_start(instant, tz).date()
    return datetime.combine(monday + timedelta(days=6), time(), tzinfo=get_zone(tz))


# ---------------------------------------------------------------------------
# Day-key helpers
# ---------------------------------------------------------------------------


def parse_day_key(key: str) -> date:
    """Parse a YYYY-MM-DD key. Raises ValueError on malformed input."""
    if len(key) != 10:
        raise ValueError(f"Not a YYYY-MM-DD day key: {key!r}")
    return datetime.strptime(key, DAY_KEY_FORMAT).date()


def shift_day_key(key: str, days: int) -> str:
    """Move a day key by `days` calendar days (negative goes back)."""
    return (parse_day_key(key) + timedelta(days=days)).isoformat()


def days_between(start_key: str, end_key: str) -> int:
    """Number of calendar days from `start_key` to `end_key`."""
    return (parse_day_key(end_key) - parse_day_key(start_key)).days


def week_key_for_day(key: str) -> str:
    """ISO week key of a local calendar date."""
    iso_year, iso_week, _ = parse_day_key(key).isocalendar()
    return format_week_key(iso_year, iso_week)


def parse_week_key(key: str) -> tuple[int, int]:
    """Split a YYYY-Www key into (iso_year, iso_week)."""
    try:
        year_part, week_part = key.split("-W")
        iso_year, iso_week = int(year_part), int(week_part)
        date.fromisocalendar(iso_year, iso_week, 1)
    except ValueError as exc:
        raise ValueError(f"Not a YYYY-Www week key: {key!r}") from exc
    return iso_year, iso_week


def day_keys_for_week(key: str) -> list[str]:
    """The seven day keys (Monday..Sunday) of an ISO week key."""
    iso_year, iso_week = parse_week_key(key)
    monday = date.fromisocalendar(iso_year, iso_week, 1)
    return [(monday + timedelta(days=i)).isoformat() for i in range(7)]


def week_day_keys(instant: datetime, tz: str) -> list[str]:
    """The seven local day keys of the ISO week containing `instant`."""
    return day_keys_for_week(week_key(instant, tz))


def week_start_for_key(key: str, tz: str) -> datetime:
    """Monday 00:00 in `tz` of the given ISO week key."""
    iso_year, iso_week = parse_week_key(key)
    monday = date.fromisocalendar(iso_year, iso_week, 1)
    return datetime.combine(monday, time(), tzinfo=get_zone(tz))


def week_end_for_key(key: str, tz: str) -> datetime:
    """Sunday 00:00 in `tz` of the given ISO week key."""
    return week_start_for_key(key, tz) + timedelta(days=6)


def shift_week_key(key: str, weeks: int) -> str:
    iso_year, iso_week = parse_week_key(key)
    monday = date.fromisocalendar(iso_year, iso_week, 1) + timedelta(weeks=weeks)
    y, w, _ = monday.isocalendar()
    return format_week_key(y, w)


def next_week_start(instant: datetime, tz: str) -> datetime:
    """Monday 00:00 local of the ISO week after the one containing `instant`."""
    monday = week_start(instant, tz).date() + timedelta(days=7)
    return datetime.combine(monday, time(), tzinfo=get_zone(tz))


def next_week_key(instant: datetime, tz: str) -> str:
    return shift_week_key(week_key(instant, tz), 1)


def local_noon(key: str, tz: str) -> datetime:
    """12:00 local on the given day, the timestamp used for backfilled check-ins."""
    return datetime.combine(parse_day_key(key), time(12, 0), tzinfo=get_zone(tz))
