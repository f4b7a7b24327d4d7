"""
Timezone arithmetic helpers for occurrence computation.

All functions are pure. Instants are returned as timezone-aware datetimes;
local calendar days are plain ``date`` objects observed in an IANA zone.

Input conventions:
- ``date`` objects and date-only strings (YYYY-MM-DD) denote that calendar
  date in the given timezone (local midnight when an instant is needed)
- Instant strings with an offset are parsed as absolute instants
- Instant strings without an offset are local wall-clock times in the zone
- Naive ``datetime`` objects are UTC (the storage convention)
"""

import re
from datetime import date, datetime, time, timezone as dt_timezone, tzinfo
from functools import lru_cache
from typing import Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil.parser import isoparse

from backend.src.services.exceptions import MalformedDateError, UnknownTimeZoneError

DateInput = Union[str, date, datetime]

UTC = dt_timezone.utc

DATE_ONLY_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@lru_cache(maxsize=256)
def resolve_timezone(name: str) -> tzinfo:
    """
    Resolve an IANA timezone name.

    Args:
        name: IANA zone identifier (e.g., "America/Vancouver")

    Returns:
        tzinfo for the zone

    Raises:
        UnknownTimeZoneError: If the name is empty or not a known zone
    """
    if not name or not isinstance(name, str):
        raise UnknownTimeZoneError(name)
    if name.upper() == "UTC":
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise UnknownTimeZoneError(name) from e


def parse_instant(value: DateInput, time_zone: str = "UTC") -> datetime:
    """
    Parse a date or instant into an aware UTC datetime.

    Args:
        value: Date, datetime or ISO-8601 string
        time_zone: Zone used for date-only and offset-less input

    Returns:
        Aware datetime in UTC

    Raises:
        MalformedDateError: If the string cannot be parsed
        UnknownTimeZoneError: If time_zone is not a known zone
    """
    tz = resolve_timezone(time_zone)

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    if isinstance(value, date):
        return datetime.combine(value, time.min).replace(tzinfo=tz).astimezone(UTC)

    if not isinstance(value, str) or not value.strip():
        raise MalformedDateError(value)

    text = value.strip()
    try:
        if DATE_ONLY_PATTERN.match(text):
            parsed_date = date.fromisoformat(text)
            return datetime.combine(parsed_date, time.min).replace(tzinfo=tz).astimezone(UTC)
        parsed = isoparse(text)
    except (ValueError, OverflowError) as e:
        raise MalformedDateError(value) from e

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed.astimezone(UTC)


def to_local(value: DateInput, time_zone: str) -> datetime:
    """Convert an instant to an aware datetime in the given zone."""
    return parse_instant(value, time_zone).astimezone(resolve_timezone(time_zone))


def local_date(value: DateInput, time_zone: str) -> date:
    """
    Get the local calendar date of a date or instant.

    Date-only input is returned unchanged; instants are decomposed in the
    zone, so 2026-03-12T03:00:00Z is 2026-03-11 in America/Vancouver.
    """
    if isinstance(value, date) and not isinstance(value, datetime):
        resolve_timezone(time_zone)
        return value
    return to_local(value, time_zone).date()


def format_in_timezone(value: DateInput, time_zone: str, pattern: str = "%Y-%m-%d") -> str:
    """
    Format an instant as local time in the given zone.

    Args:
        value: Date, datetime or ISO-8601 string
        time_zone: IANA zone identifier
        pattern: strftime pattern (default: ISO calendar date)

    Returns:
        Formatted string
    """
    return to_local(value, time_zone).strftime(pattern)


def same_local_day(first: DateInput, second: DateInput, time_zone: str) -> bool:
    """
    Check whether two instants fall on the same local calendar day.

    This is the equality test between a persisted event and a candidate
    occurrence; time-of-day differences are ignored.
    """
    return local_date(first, time_zone) == local_date(second, time_zone)


def local_datetime(day: date, wall_time: time, time_zone: str) -> datetime:
    """
    Build the absolute instant of a wall-clock time on a local date.

    The UTC offset is the one in force on that date, so 19:00 stays 19:00
    local on both sides of a DST transition.

    Returns:
        Aware datetime in UTC
    """
    tz = resolve_timezone(time_zone)
    naive = datetime.combine(day, wall_time.replace(tzinfo=None))
    return naive.replace(tzinfo=tz).astimezone(UTC)


def start_of_local_day(value: DateInput, time_zone: str) -> datetime:
    """Get local midnight of the instant's local day, as an aware UTC datetime."""
    return local_datetime(local_date(value, time_zone), time.min, time_zone)


def to_iso(value: datetime) -> str:
    """Render an instant as a UTC ISO-8601 string with a Z suffix."""
    return parse_instant(value).isoformat().replace("+00:00", "Z")
