# File: utils/dt_utils.py
"""Calendar date utilities for the task scheduler.

Pure Python date/time functions used by every engine. Calendar arithmetic is
performed on local wall-clock time in the configured default timezone, so
"daily at 09:00" stays at 09:00 across DST transitions.

Uses standard library datetime/zoneinfo plus dateutil for calendar units.

Functions:
    - set_default_timezone / get_default_timezone: Process-wide local timezone
    - dt_now_utc / dt_now_local: Current time
    - as_utc / as_local: Timezone conversion (naive input is treated as local)
    - start_of_local_day / end_of_local_day: Day boundaries
    - dt_is_same_local_day: Calendar day comparison
    - dt_add_interval: Add calendar units (clamps month ends)
    - dt_set_time: Replace the local time of day
    - weekday_ordinal: Ordinal of the weekday within its month
    - dt_parse / dt_to_iso: Normalize and serialize datetimes
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
import logging
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta

from ..exceptions import CalendarError

if TYPE_CHECKING:
    from datetime import tzinfo

_LOGGER = logging.getLogger(__name__)

# ==============================================================================
# Constants
# ==============================================================================

DEFAULT_TIME_ZONE: ZoneInfo = ZoneInfo("UTC")

TIME_UNIT_SECONDS = "seconds"
TIME_UNIT_MINUTES = "minutes"
TIME_UNIT_HOURS = "hours"
TIME_UNIT_DAYS = "days"
TIME_UNIT_WEEKS = "weeks"
TIME_UNIT_MONTHS = "months"
TIME_UNIT_QUARTERS = "quarters"
TIME_UNIT_YEARS = "years"

ONE_DAY = timedelta(days=1)
ONE_SECOND = timedelta(seconds=1)


# ==============================================================================
# Timezone Configuration
# ==============================================================================


def set_default_timezone(tz: ZoneInfo) -> None:
    """Set the default timezone used for all calendar arithmetic.

    Args:
        tz: ZoneInfo object representing the local timezone
    """
    global DEFAULT_TIME_ZONE  # noqa: PLW0603
    DEFAULT_TIME_ZONE = tz
    _LOGGER.debug("dt_utils: Default timezone set to %s", tz)


def get_default_timezone() -> ZoneInfo:
    """Return the configured default timezone."""
    return DEFAULT_TIME_ZONE


# ==============================================================================
# Current Date/Time
# ==============================================================================


def dt_now_utc() -> datetime:
    """Return the current datetime in UTC (timezone-aware)."""
    return datetime.now(UTC)


def dt_now_local(tz: ZoneInfo | None = None) -> datetime:
    """Return the current datetime in the local timezone (timezone-aware).

    Args:
        tz: Optional timezone override. Uses DEFAULT_TIME_ZONE if not provided.
    """
    return datetime.now(tz or DEFAULT_TIME_ZONE)


# ==============================================================================
# Timezone Conversion
# ==============================================================================


def as_utc(dt_obj: datetime) -> datetime:
    """Convert a datetime to UTC.

    Naive datetimes are interpreted in the default timezone.
    """
    if dt_obj.tzinfo is None:
        dt_obj = dt_obj.replace(tzinfo=DEFAULT_TIME_ZONE)
    return dt_obj.astimezone(UTC)


def as_local(dt_obj: datetime, tz: ZoneInfo | None = None) -> datetime:
    """Convert a datetime to the local timezone.

    Args:
        dt_obj: Datetime object; naive values are interpreted as local time
        tz: Optional timezone override. Uses DEFAULT_TIME_ZONE if not provided.

    Returns:
        Datetime in local timezone
    """
    tz_info = tz or DEFAULT_TIME_ZONE
    if dt_obj.tzinfo is None:
        return dt_obj.replace(tzinfo=tz_info)
    return dt_obj.astimezone(tz_info)


# ==============================================================================
# Day Boundaries
# ==============================================================================


def start_of_local_day(dt_obj: datetime, tz: ZoneInfo | None = None) -> datetime:
    """Return local midnight (00:00:00) of the day containing dt_obj.

    Args:
        dt_obj: Datetime object (can be in any timezone)
        tz: Optional timezone override. Uses DEFAULT_TIME_ZONE if not provided.

    Returns:
        Datetime at 00:00:00 in local timezone (timezone-aware)
    """
    local_dt = as_local(dt_obj, tz)
    return local_dt.replace(hour=0, minute=0, second=0, microsecond=0)


def end_of_local_day(dt_obj: datetime, tz: ZoneInfo | None = None) -> datetime:
    """Return the last second of the local day containing dt_obj.

    Computed as start of day + 1 day - 1 second, so 23:59:59 local time.
    """
    return start_of_local_day(dt_obj, tz) + ONE_DAY - ONE_SECOND


def dt_is_same_local_day(
    first: datetime, second: datetime, tz: ZoneInfo | None = None
) -> bool:
    """Return True if both datetimes fall on the same local calendar day."""
    return as_local(first, tz).date() == as_local(second, tz).date()


# ==============================================================================
# Calendar Arithmetic
# ==============================================================================


def dt_add_interval(dt_obj: datetime, interval_unit: str, delta: int) -> datetime:
    """Add a number of calendar units to a datetime.

    Days and weeks preserve the local wall-clock time. Months, quarters and
    years clamp to the last day of the target month (Jan 31 + 1 month = Feb 28).

    Args:
        dt_obj: Base datetime (timezone-aware)
        interval_unit: One of the TIME_UNIT_* constants
        delta: Number of units to add (may be negative)

    Returns:
        The shifted datetime

    Raises:
        CalendarError: Unknown unit or result outside the representable range
    """
    try:
        if interval_unit == TIME_UNIT_SECONDS:
            return dt_obj + timedelta(seconds=delta)
        if interval_unit == TIME_UNIT_MINUTES:
            return dt_obj + timedelta(minutes=delta)
        if interval_unit == TIME_UNIT_HOURS:
            return dt_obj + timedelta(hours=delta)
        if interval_unit == TIME_UNIT_DAYS:
            return dt_obj + timedelta(days=delta)
        if interval_unit == TIME_UNIT_WEEKS:
            return dt_obj + timedelta(weeks=delta)
        if interval_unit == TIME_UNIT_MONTHS:
            return dt_obj + relativedelta(months=delta)
        if interval_unit == TIME_UNIT_QUARTERS:
            return dt_obj + relativedelta(months=delta * 3)
        if interval_unit == TIME_UNIT_YEARS:
            return dt_obj + relativedelta(years=delta)
    except (ValueError, OverflowError) as exc:
        _LOGGER.error(
            "dt_add_interval: Error adding %s %s: %s", delta, interval_unit, exc
        )
        raise CalendarError(
            f"Cannot add {delta} {interval_unit} to {dt_obj.isoformat()}"
        ) from exc

    raise CalendarError(f"Unknown interval unit: {interval_unit}")


def dt_set_time(
    dt_obj: datetime,
    hour: int,
    minute: int,
    second: int = 0,
    tz: ZoneInfo | None = None,
) -> datetime:
    """Return dt_obj's local calendar day at the given wall-clock time.

    Raises:
        CalendarError: If the time components are out of range
    """
    local_dt = as_local(dt_obj, tz)
    try:
        return local_dt.replace(hour=hour, minute=minute, second=second, microsecond=0)
    except ValueError as exc:
        raise CalendarError(
            f"Invalid time of day {hour:02d}:{minute:02d}:{second:02d}"
        ) from exc


def weekday_ordinal(dt_obj: datetime, tz: ZoneInfo | None = None) -> int:
    """Return the 1-based ordinal of the weekday within its month.

    Example:
        2024-08-13 is the 2nd Tuesday of August, so the result is 2.
    """
    return (as_local(dt_obj, tz).day - 1) // 7 + 1


# ==============================================================================
# Parsing and Formatting
# ==============================================================================


def dt_parse(
    dt_input: str | date | datetime | None,
    default_tzinfo: tzinfo | None = None,
) -> datetime | None:
    """Normalize string, date or datetime input to an aware datetime.

    Args:
        dt_input: ISO string, date or datetime to normalize, or None
        default_tzinfo: Timezone to apply if the input is naive
                        (defaults to DEFAULT_TIME_ZONE)

    Returns:
        Aware datetime, or None if the input is empty or cannot be parsed.

    Example:
        >>> dt_parse("2024-08-24T09:23:00+00:00")
        datetime.datetime(2024, 8, 24, 9, 23, tzinfo=datetime.timezone.utc)
    """
    if not dt_input:
        return None

    tz_info = default_tzinfo or DEFAULT_TIME_ZONE
    result: datetime

    if isinstance(dt_input, datetime):
        result = dt_input
    elif isinstance(dt_input, date):
        result = datetime.combine(dt_input, datetime.min.time())
    elif isinstance(dt_input, str):
        try:
            result = datetime.fromisoformat(dt_input)
        except ValueError:
            _LOGGER.debug("dt_parse: Unable to parse '%s'", dt_input)
            return None
    else:
        return None

    if result.tzinfo is None:
        result = result.replace(tzinfo=tz_info)
    return result


def dt_to_iso(dt_obj: datetime) -> str:
    """Serialize an aware datetime to an ISO 8601 string in UTC."""
    return as_utc(dt_obj).isoformat()
