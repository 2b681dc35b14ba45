"""Recurrence Engine - lazy recurrence rule evaluation.

Turns a RecurrenceRule (frequency, interval, by-constraints, end condition)
into a lazy, strictly increasing sequence of candidate dates anchored at a
start date:
- `dateutil.rrule` generates the candidates (count and until included)
- Month/year rules without explicit constraints clamp to the month end
  (Jan 31 monthly -> Feb 29/28), the same way relativedelta clamps

Sequences are generators. They are never materialized, so rules that never
end can be expanded safely as long as the caller truncates them.

ARCHITECTURE: Pure logic, no I/O. Rules are immutable frozen dataclasses.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import ClassVar

from dateutil.rrule import (
    DAILY,
    HOURLY,
    MONTHLY,
    WEEKLY,
    YEARLY,
    rrule,
    weekday as rrule_weekday,
)

from .. import const
from ..exceptions import CalendarError, ConfigurationError
from ..utils.dt_utils import as_local, as_utc

WEEKDAY_CODES = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")

# Half-open [lower, upper) bounds; either side may be open (None)
LimitRange = tuple[datetime | None, datetime | None]


def _validate_values(
    name: str, values: tuple[int, ...], low: int, high: int, allow_negative: bool
) -> None:
    """Raise ConfigurationError unless every value is inside the allowed range."""
    for value in values:
        if allow_negative and -high <= value <= -1:
            continue
        if low <= value <= high:
            continue
        raise ConfigurationError(f"Invalid {name} value: {value}")


@dataclass(frozen=True)
class WeekdayRule:
    """A weekday (0=Mon..6=Sun), optionally the nth one in the month or year.

    ``WeekdayRule(1, 2)`` is the second Tuesday, ``WeekdayRule(4, -1)`` the last
    Friday, and ``WeekdayRule(6)`` every Sunday.
    """

    weekday: int
    nth: int | None = None

    def __post_init__(self) -> None:
        if not 0 <= self.weekday <= 6:
            raise ConfigurationError(f"Invalid weekday: {self.weekday}")
        if self.nth is not None and not (1 <= abs(self.nth) <= 5):
            raise ConfigurationError(f"Invalid weekday ordinal: {self.nth}")

    def to_rrule(self) -> rrule_weekday:
        """Return the dateutil weekday instance."""
        return rrule_weekday(self.weekday, self.nth)

    def to_rrule_string(self) -> str:
        """Return the RFC 5545 BYDAY token (e.g. "MO", "2TU", "-1FR")."""
        prefix = "" if self.nth is None else str(self.nth)
        return f"{prefix}{WEEKDAY_CODES[self.weekday]}"


@dataclass(frozen=True)
class RecurrenceEnd:
    """End condition of a recurrence rule.

    Use the factories: never(), after_occurrences(n), after_date(date).
    The date bound is inclusive.
    """

    kind: str = const.RECURRENCE_END_NEVER
    count: int | None = None
    date: datetime | None = None

    def __post_init__(self) -> None:
        if self.kind not in const.RECURRENCE_END_OPTIONS:
            raise ConfigurationError(f"Unknown recurrence end: {self.kind}")
        if self.kind == const.RECURRENCE_END_AFTER_OCCURRENCES:
            if self.count is None or self.count < 1:
                raise ConfigurationError(
                    f"Occurrence count must be at least 1, got {self.count}"
                )
        if self.kind == const.RECURRENCE_END_AFTER_DATE:
            if self.date is None:
                raise ConfigurationError("End date is required for after_date")
            if self.date.tzinfo is None:
                object.__setattr__(self, "date", as_local(self.date))

    @classmethod
    def never(cls) -> RecurrenceEnd:
        return cls(const.RECURRENCE_END_NEVER)

    @classmethod
    def after_occurrences(cls, count: int) -> RecurrenceEnd:
        return cls(const.RECURRENCE_END_AFTER_OCCURRENCES, count=count)

    @classmethod
    def after_date(cls, date: datetime) -> RecurrenceEnd:
        return cls(const.RECURRENCE_END_AFTER_DATE, date=date)

    @property
    def is_never(self) -> bool:
        return self.kind == const.RECURRENCE_END_NEVER


@dataclass(frozen=True)
class RecurrenceRule:
    """Immutable recurrence rule.

    Attributes:
        frequency: One of const.FREQUENCY_* (hourly, daily, weekly, monthly, yearly)
        interval: Step between periods, at least 1
        end: End condition (never / after N occurrences / after date)
        by_weekday: Weekday constraints, optionally with an ordinal
        by_month_day: Days of the month (-31..-1, 1..31)
        by_month: Months (1..12)
        by_hour: Hours (0..23)
        by_minute: Minutes (0..59)
        by_set_position: Positions within each period's candidate set

    A rule with any by-constraint is a "custom" rule; custom rules are also
    exchanged as RFC 5545 text via to_rrule_string/from_rrule_string.

    Raises:
        ConfigurationError: On construction with an invalid value
    """

    FREQUENCY_TO_RRULE: ClassVar[dict[str, int]] = {
        const.FREQUENCY_HOURLY: HOURLY,
        const.FREQUENCY_DAILY: DAILY,
        const.FREQUENCY_WEEKLY: WEEKLY,
        const.FREQUENCY_MONTHLY: MONTHLY,
        const.FREQUENCY_YEARLY: YEARLY,
    }

    # Frequencies that clamp the anchor day to the month end when unconstrained
    CLAMPING_FREQUENCIES: ClassVar[set[str]] = {
        const.FREQUENCY_MONTHLY,
        const.FREQUENCY_YEARLY,
    }

    frequency: str
    interval: int = 1
    end: RecurrenceEnd = field(default_factory=RecurrenceEnd.never)
    by_weekday: tuple[WeekdayRule, ...] = ()
    by_month_day: tuple[int, ...] = ()
    by_month: tuple[int, ...] = ()
    by_hour: tuple[int, ...] = ()
    by_minute: tuple[int, ...] = ()
    by_set_position: tuple[int, ...] = ()

    def __post_init__(self) -> None:
        if self.frequency not in const.FREQUENCY_OPTIONS:
            raise ConfigurationError(f"Unknown frequency: {self.frequency}")
        if not isinstance(self.interval, int) or self.interval < 1:
            raise ConfigurationError(
                f"Interval must be a positive integer, got {self.interval}"
            )
        # Normalize list input so the rule stays hashable
        for name in (
            "by_weekday",
            "by_month_day",
            "by_month",
            "by_hour",
            "by_minute",
            "by_set_position",
        ):
            value = getattr(self, name)
            if not isinstance(value, tuple):
                object.__setattr__(self, name, tuple(value))

        _validate_values("month day", self.by_month_day, 1, 31, allow_negative=True)
        _validate_values("month", self.by_month, 1, 12, allow_negative=False)
        _validate_values("hour", self.by_hour, 0, 23, allow_negative=False)
        _validate_values("minute", self.by_minute, 0, 59, allow_negative=False)
        _validate_values(
            "set position", self.by_set_position, 1, 366, allow_negative=True
        )
        if self.by_set_position and not self.has_filter_constraints:
            raise ConfigurationError(
                "by_set_position requires at least one other by-constraint"
            )
        if any(rule.nth is not None for rule in self.by_weekday) and (
            self.frequency not in self.CLAMPING_FREQUENCIES
        ):
            raise ConfigurationError(
                "Weekday ordinals are only valid for monthly or yearly rules"
            )

    # =========================================================================
    # Convenience Constructors
    # =========================================================================

    @classmethod
    def hourly(
        cls, interval: int = 1, end: RecurrenceEnd | None = None
    ) -> RecurrenceRule:
        return cls(const.FREQUENCY_HOURLY, interval, end or RecurrenceEnd.never())

    @classmethod
    def daily(
        cls, interval: int = 1, end: RecurrenceEnd | None = None
    ) -> RecurrenceRule:
        return cls(const.FREQUENCY_DAILY, interval, end or RecurrenceEnd.never())

    @classmethod
    def weekly(
        cls,
        interval: int = 1,
        end: RecurrenceEnd | None = None,
        weekdays: list[int] | None = None,
    ) -> RecurrenceRule:
        """Weekly rule, on the given weekdays (0=Mon) or on the anchor's weekday."""
        return cls(
            const.FREQUENCY_WEEKLY,
            interval,
            end or RecurrenceEnd.never(),
            by_weekday=tuple(WeekdayRule(day) for day in weekdays or ()),
        )

    @classmethod
    def monthly(
        cls,
        interval: int = 1,
        end: RecurrenceEnd | None = None,
        days_of_month: list[int] | None = None,
    ) -> RecurrenceRule:
        return cls(
            const.FREQUENCY_MONTHLY,
            interval,
            end or RecurrenceEnd.never(),
            by_month_day=tuple(days_of_month or ()),
        )

    @classmethod
    def yearly(
        cls, interval: int = 1, end: RecurrenceEnd | None = None
    ) -> RecurrenceRule:
        return cls(const.FREQUENCY_YEARLY, interval, end or RecurrenceEnd.never())

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def has_filter_constraints(self) -> bool:
        return bool(
            self.by_weekday
            or self.by_month_day
            or self.by_month
            or self.by_hour
            or self.by_minute
        )

    @property
    def is_custom(self) -> bool:
        """True if the rule carries any by-constraint."""
        return self.has_filter_constraints or bool(self.by_set_position)

    @property
    def repeats_indefinitely(self) -> bool:
        return self.end.is_never

    # =========================================================================
    # Expansion
    # =========================================================================

    def recurrences(
        self, anchor: datetime, limit_range: LimitRange | None = None
    ) -> Iterator[datetime]:
        """Lazily yield recurrence dates anchored at ``anchor``.

        The end condition is always evaluated from the anchor: an
        after_occurrences(3) rule yields at most the first three dates of the
        rule even if ``limit_range`` starts after the first one.

        Args:
            anchor: Rule start (dtstart). Naive values are local time.
            limit_range: Optional half-open (lower, upper) filter. Either bound
                may be None.

        Yields:
            Aware local datetimes, strictly increasing, no duplicates.

        Raises:
            CalendarError: If the calendar cannot evaluate the rule for anchor.

        Examples:
            Daily at 12:35 from 2024-08-24, after 3 occurrences, limited to
            [2024-08-25 00:00, None) yields Aug 25 12:35 and Aug 26 12:35.
        """
        lower, upper = limit_range or (None, None)
        rule = self._build_rrule(anchor)

        try:
            candidates = (
                rule.xafter(as_local(lower), inc=True)
                if lower is not None
                else iter(rule)
            )
            upper_utc = as_utc(upper) if upper is not None else None
            last_utc: datetime | None = None
            for candidate in candidates:
                instant = as_utc(candidate)
                # A wall time skipped by a DST gap lands on the next real one
                if last_utc is not None and instant <= last_utc:
                    continue
                if upper_utc is not None and instant >= upper_utc:
                    return
                last_utc = instant
                yield as_local(instant)
        except (ValueError, OverflowError) as exc:
            const.LOGGER.warning(
                "RecurrenceEngine: Expansion of %s failed for anchor %s: %s",
                self.frequency,
                anchor,
                exc,
            )
            raise CalendarError(
                f"Cannot expand {self.frequency} rule anchored at {anchor}"
            ) from exc

    def first_recurrence(self, anchor: datetime) -> datetime | None:
        """Return the first recurrence at or after the anchor, if any."""
        return next(self.recurrences(anchor), None)

    def _build_rrule(self, anchor: datetime) -> rrule:
        """Build the dateutil rrule for an anchor.

        Raises:
            CalendarError: If dateutil rejects the anchor/constraint combination.
        """
        dtstart = as_local(anchor)
        kwargs: dict = {
            "dtstart": dtstart,
            "interval": self.interval,
            "cache": False,
        }
        if self.end.kind == const.RECURRENCE_END_AFTER_OCCURRENCES:
            kwargs["count"] = self.end.count
        elif self.end.kind == const.RECURRENCE_END_AFTER_DATE and self.end.date:
            kwargs["until"] = as_local(self.end.date)

        if self.by_weekday:
            kwargs["byweekday"] = [rule.to_rrule() for rule in self.by_weekday]
        if self.by_month_day:
            kwargs["bymonthday"] = list(self.by_month_day)
        if self.by_month:
            kwargs["bymonth"] = list(self.by_month)
        if self.by_hour:
            kwargs["byhour"] = list(self.by_hour)
        if self.by_minute:
            kwargs["byminute"] = list(self.by_minute)
        if self.by_set_position:
            kwargs["bysetpos"] = list(self.by_set_position)

        if self._needs_clamping(dtstart):
            # {anchor day, last day} in each period; the first one wins, so
            # the anchor day is used where it exists and the month end otherwise
            kwargs["bymonthday"] = [dtstart.day, -1]
            kwargs["bysetpos"] = [1]
            if self.frequency == const.FREQUENCY_YEARLY:
                kwargs["bymonth"] = [dtstart.month]

        try:
            return rrule(self.FREQUENCY_TO_RRULE[self.frequency], **kwargs)  # type: ignore[arg-type]
        except (ValueError, OverflowError) as exc:
            raise CalendarError(
                f"Invalid {self.frequency} rule for anchor {anchor}: {exc}"
            ) from exc

    def _needs_clamping(self, dtstart: datetime) -> bool:
        """Check if month-end clamping applies (unconstrained rule, day > 28)."""
        return (
            self.frequency in self.CLAMPING_FREQUENCIES
            and not self.is_custom
            and dtstart.day > 28
        )

    # =========================================================================
    # RFC 5545 Interchange
    # =========================================================================

    def to_rrule_string(self) -> str:
        """Generate an RFC 5545 RRULE value (without DTSTART).

        Returns:
            RRULE string, e.g. "FREQ=WEEKLY;INTERVAL=1;COUNT=3;BYDAY=SU"
        """
        parts = [f"FREQ={self.frequency.upper()}", f"INTERVAL={self.interval}"]
        if self.end.kind == const.RECURRENCE_END_AFTER_OCCURRENCES:
            parts.append(f"COUNT={self.end.count}")
        elif self.end.kind == const.RECURRENCE_END_AFTER_DATE and self.end.date:
            parts.append(f"UNTIL={as_utc(self.end.date).strftime('%Y%m%dT%H%M%SZ')}")
        if self.by_weekday:
            parts.append(
                "BYDAY=" + ",".join(rule.to_rrule_string() for rule in self.by_weekday)
            )
        for key, values in (
            ("BYMONTHDAY", self.by_month_day),
            ("BYMONTH", self.by_month),
            ("BYHOUR", self.by_hour),
            ("BYMINUTE", self.by_minute),
            ("BYSETPOS", self.by_set_position),
        ):
            if values:
                parts.append(f"{key}=" + ",".join(str(value) for value in values))
        return ";".join(parts)

    @classmethod
    def from_rrule_string(cls, text: str) -> RecurrenceRule:
        """Parse an RFC 5545 RRULE value produced by to_rrule_string.

        A leading "RRULE:" prefix is accepted.

        Raises:
            ConfigurationError: If the text is malformed or uses unsupported parts.
        """
        body = text.strip()
        if body.upper().startswith("RRULE:"):
            body = body[len("RRULE:") :]
        if not body:
            raise ConfigurationError("Empty RRULE")

        parts: dict[str, str] = {}
        for token in body.split(";"):
            key, sep, value = token.partition("=")
            if not sep or not value:
                raise ConfigurationError(f"Malformed RRULE part: '{token}'")
            parts[key.strip().upper()] = value.strip()

        frequency = parts.pop("FREQ", "").lower()
        try:
            interval = int(parts.pop("INTERVAL", "1"))
            end = RecurrenceEnd.never()
            if "COUNT" in parts and "UNTIL" in parts:
                raise ConfigurationError("RRULE cannot have both COUNT and UNTIL")
            if "COUNT" in parts:
                end = RecurrenceEnd.after_occurrences(int(parts.pop("COUNT")))
            elif "UNTIL" in parts:
                end = RecurrenceEnd.after_date(_parse_until(parts.pop("UNTIL")))

            weekdays = tuple(
                _parse_weekday(token)
                for token in _split(parts.pop("BYDAY", ""))
            )
            int_parts = {
                key: tuple(int(value) for value in _split(parts.pop(key, "")))
                for key in ("BYMONTHDAY", "BYMONTH", "BYHOUR", "BYMINUTE", "BYSETPOS")
            }
        except ValueError as exc:
            raise ConfigurationError(f"Malformed RRULE '{text}': {exc}") from exc

        if parts:
            raise ConfigurationError(
                f"Unsupported RRULE parts: {', '.join(sorted(parts))}"
            )

        return cls(
            frequency,
            interval,
            end,
            by_weekday=weekdays,
            by_month_day=int_parts["BYMONTHDAY"],
            by_month=int_parts["BYMONTH"],
            by_hour=int_parts["BYHOUR"],
            by_minute=int_parts["BYMINUTE"],
            by_set_position=int_parts["BYSETPOS"],
        )


def _split(value: str) -> list[str]:
    return [token.strip() for token in value.split(",") if token.strip()]


def _parse_weekday(token: str) -> WeekdayRule:
    """Parse a BYDAY token such as "SU", "2TU" or "-1FR"."""
    code = token[-2:].upper()
    if code not in WEEKDAY_CODES:
        raise ValueError(f"unknown weekday '{token}'")
    ordinal = token[:-2]
    return WeekdayRule(WEEKDAY_CODES.index(code), int(ordinal) if ordinal else None)


def _parse_until(value: str) -> datetime:
    """Parse an RFC 5545 UNTIL value (UTC "Z" form or local form)."""
    for fmt in ("%Y%m%dT%H%M%SZ", "%Y%m%dT%H%M%S", "%Y%m%d"):
        try:
            parsed = datetime.strptime(value, fmt)
        except ValueError:
            continue
        if fmt.endswith("Z"):
            return as_local(parsed.replace(tzinfo=UTC))
        return as_local(parsed)
    raise ValueError(f"invalid UNTIL '{value}'")
