"""
utils/time_utils.py

Purpose: Time and timezone helpers

- Local wall-clock time + calendar date -> absolute UTC instant (DST aware)
- HH:MM parsing and display formatting
- UTC "now" and local-date helpers
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utc_now() -> datetime:
    """
    Returns the current instant as a timezone-aware UTC datetime.
    """
    return datetime.now(timezone.utc)


def get_zone(tz_name: str) -> ZoneInfo:
    """
    Resolves an IANA zone name.

    Raises:
        ValueError: If the zone is unknown
    """
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError, TypeError) as e:
        raise ValueError(f"Unknown timezone: {tz_name!r}") from e


def parse_clock_time(value: str) -> time:
    """
    Parses "HH:MM" (or "HH:MM:SS") into a time.

    Raises:
        ValueError: If the value is not a valid 24h clock time
    """
    if not value or not isinstance(value, str):
        raise ValueError(f"Invalid clock time: {value!r}")

    parts = value.strip().split(":")
    if len(parts) not in (2, 3) or not all(p.isdigit() for p in parts):
        raise ValueError(f"Invalid clock time: {value!r}")

    hour, minute = int(parts[0]), int(parts[1])
    second = int(parts[2]) if len(parts) == 3 else 0
    if not (0 <= hour < 24 and 0 <= minute < 60 and 0 <= second < 60):
        raise ValueError(f"Invalid clock time: {value!r}")

    return time(hour, minute, second)


def parse_work_date(value: Union[str, date, datetime]) -> date:
    """
    Accepts an ISO date string, a date or a datetime and returns the calendar date.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError as e:
        raise ValueError(f"Invalid work date: {value!r}") from e


def local_to_utc(day: date, clock: Union[str, time], tz_name: str) -> datetime:
    """
    Converts a local wall-clock time on a calendar date to a UTC instant.

    Nonexistent local times (spring-forward gap) are pushed forward by the
    gap length; ambiguous ones (fall-back) resolve to the first occurrence.
    """
    zone = get_zone(tz_name)
    if isinstance(clock, str):
        clock = parse_clock_time(clock)

    local = datetime.combine(day, clock).replace(tzinfo=zone, fold=0)
    return local.astimezone(timezone.utc)


def to_local(instant: datetime, tz_name: str) -> datetime:
    """
    Converts an instant to the given zone. Naive values are treated as UTC.
    """
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(get_zone(tz_name))


def local_date(instant: datetime, tz_name: str) -> date:
    """
    Returns the calendar date of an instant in the given zone.
    """
    return to_local(instant, tz_name).date()


def reminder_instants(
    work_date: Union[str, date],
    start_time: str,
    night_before_time: str,
    day_of_time: str,
    tz_name: str
) -> Tuple[datetime, datetime, datetime]:
    """
    Computes the absolute instants that bound a placement's reminder windows.

    Returns:
        (night_before_at, day_of_at, shift_start) as UTC datetimes
    """
    day = parse_work_date(work_date)
    shift_start = local_to_utc(day, start_time, tz_name)
    night_before_at = local_to_utc(day - timedelta(days=1), night_before_time, tz_name)
    day_of_at = local_to_utc(day, day_of_time, tz_name)
    return night_before_at, day_of_at, shift_start


def format_clock_time(clock: Union[str, time]) -> str:
    """
    Formats a clock time for display, e.g. "09:00" -> "9:00 AM".
    """
    if isinstance(clock, str):
        clock = parse_clock_time(clock)
    period = "PM" if clock.hour >= 12 else "AM"
    display_hour = clock.hour % 12 or 12
    return f"{display_hour}:{clock.minute:02d} {period}"


def format_work_date(day: Union[str, date], format_str: str = "%a, %b %d") -> str:
    """
    Formats a work date for display, e.g. "Tue, Aug 05".
    """
    return parse_work_date(day).strftime(format_str)

