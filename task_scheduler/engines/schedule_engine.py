"""Schedule Engine - occurrence lookup for a start date, duration and rule.

A Schedule is an immutable value:
- `start`: first date of the schedule (normalized to start of day when all-day)
- `duration`: how each occurrence's end is derived (all-day, till end of day,
  fixed length)
- `recurrence`: optional RecurrenceRule; without one the schedule has exactly
  one occurrence, at `start`

Only an occurrence's start is range-filtered; its end may lie past the end of
the queried range.

ARCHITECTURE: Pure logic, no I/O. Every query is a deterministic function of
the schedule's fields and the configured local timezone.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from itertools import islice

from .. import const
from ..exceptions import ConfigurationError
from ..utils.dt_utils import (
    ONE_SECOND,
    TIME_UNIT_DAYS,
    as_local,
    dt_add_interval,
    dt_set_time,
    end_of_local_day,
    start_of_local_day,
)
from .recurrence_engine import RecurrenceEnd, RecurrenceRule


@dataclass(frozen=True)
class Duration:
    """Occurrence duration policy.

    Use the factories: all_day(), till_end_of_day(), fixed(timedelta),
    seconds(n), minutes(n), hours(n).
    """

    kind: str = const.DURATION_TILL_END_OF_DAY
    length: timedelta | None = None

    def __post_init__(self) -> None:
        if self.kind not in const.DURATION_OPTIONS:
            raise ConfigurationError(f"Unknown duration policy: {self.kind}")
        if self.kind == const.DURATION_FIXED:
            if self.length is None or self.length < timedelta(0):
                raise ConfigurationError(
                    f"Fixed duration must be non-negative, got {self.length}"
                )
        elif self.length is not None:
            raise ConfigurationError(f"Duration '{self.kind}' takes no length")

    @classmethod
    def all_day(cls) -> Duration:
        return cls(const.DURATION_ALL_DAY)

    @classmethod
    def till_end_of_day(cls) -> Duration:
        return cls(const.DURATION_TILL_END_OF_DAY)

    @classmethod
    def fixed(cls, length: timedelta) -> Duration:
        return cls(const.DURATION_FIXED, length)

    @classmethod
    def seconds(cls, value: float) -> Duration:
        return cls.fixed(timedelta(seconds=value))

    @classmethod
    def minutes(cls, value: float) -> Duration:
        return cls.fixed(timedelta(minutes=value))

    @classmethod
    def hours(cls, value: float) -> Duration:
        return cls.fixed(timedelta(hours=value))

    @property
    def is_all_day(self) -> bool:
        return self.kind == const.DURATION_ALL_DAY


@dataclass(frozen=True, order=True)
class Occurrence:
    """A concrete instance of a schedule, ordered by start (then end).

    The schedule reference does not take part in equality or ordering.
    """

    start: datetime
    end: datetime
    schedule: Schedule = field(compare=False, repr=False)

    @classmethod
    def at(cls, start: datetime, schedule: Schedule) -> Occurrence:
        """Build the occurrence for a candidate start using the schedule's duration."""
        resolved_start, resolved_end = schedule.dates_for(start)
        return cls(resolved_start, resolved_end, schedule)

    @property
    def is_all_day(self) -> bool:
        return self.schedule.duration.is_all_day


@dataclass(frozen=True)
class Schedule:
    """Immutable schedule: start date, duration policy and optional recurrence.

    Examples:
        >>> Schedule.daily(12, 35, starting_at=aug_24_0923,
        ...                end=RecurrenceEnd.after_occurrences(3),
        ...                duration=Duration.minutes(30))
        Occurrences: Aug 24, 25 and 26 from 12:35 to 13:05.
    """

    start: datetime
    duration: Duration = field(default_factory=Duration.till_end_of_day)
    recurrence: RecurrenceRule | None = None

    def __post_init__(self) -> None:
        # Recurrence expansion works on whole seconds
        start = as_local(self.start).replace(microsecond=0)
        if self.duration.is_all_day:
            start = start_of_local_day(start)
        object.__setattr__(self, "start", start)

    # =========================================================================
    # Factories
    # =========================================================================

    @classmethod
    def once(
        cls, at: datetime, duration: Duration | None = None
    ) -> Schedule:
        """Schedule with a single occurrence."""
        return cls(at, duration or Duration.till_end_of_day(), None)

    @classmethod
    def daily(
        cls,
        hour: int,
        minute: int,
        second: int = 0,
        *,
        starting_at: datetime,
        interval: int = 1,
        end: RecurrenceEnd | None = None,
        duration: Duration | None = None,
    ) -> Schedule:
        """Daily schedule at a time of day, starting on starting_at's day.

        Raises:
            CalendarError: If the time of day is invalid
            ConfigurationError: If the interval or end condition is invalid
        """
        start = dt_set_time(starting_at, hour, minute, second)
        return cls(
            start,
            duration or Duration.till_end_of_day(),
            RecurrenceRule.daily(interval, end),
        )

    @classmethod
    def weekly(
        cls,
        hour: int,
        minute: int,
        second: int = 0,
        *,
        weekday: int | None = None,
        starting_at: datetime,
        interval: int = 1,
        end: RecurrenceEnd | None = None,
        duration: Duration | None = None,
    ) -> Schedule:
        """Weekly schedule at a time of day.

        Args:
            weekday: 0=Mon..6=Sun; defaults to the weekday of starting_at
        """
        start = dt_set_time(starting_at, hour, minute, second)
        return cls(
            start,
            duration or Duration.till_end_of_day(),
            RecurrenceRule.weekly(
                interval, end, [weekday] if weekday is not None else None
            ),
        )

    def with_start(self, start: datetime) -> Schedule:
        """Return a copy with a new start (normalized again if all-day)."""
        return Schedule(start, self.duration, self.recurrence)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def repeats_indefinitely(self) -> bool:
        return self.recurrence is not None and self.recurrence.repeats_indefinitely

    # =========================================================================
    # Occurrence Queries
    # =========================================================================

    def dates_for(self, candidate: datetime) -> tuple[datetime, datetime]:
        """Resolve (start, end) of the occurrence starting at a candidate date."""
        if self.duration.kind == const.DURATION_ALL_DAY:
            start = start_of_local_day(candidate)
            return start, end_of_local_day(start)
        if self.duration.kind == const.DURATION_TILL_END_OF_DAY:
            return candidate, end_of_local_day(candidate)
        assert self.duration.length is not None
        return candidate, candidate + self.duration.length

    def occurrences(
        self, start: datetime | None = None, end: datetime | None = None
    ) -> Iterator[Occurrence]:
        """Lazily yield occurrences whose start lies in [start, end).

        Either bound may be None. Occurrence counting always starts at the
        schedule's own start, not at the range's lower bound.

        Raises:
            CalendarError: If the recurrence cannot be evaluated
        """
        if self.recurrence is None:
            if (start is None or self.start >= start) and (
                end is None or self.start < end
            ):
                yield Occurrence.at(self.start, self)
            return

        for candidate in self.recurrence.recurrences(self.start, (start, end)):
            yield Occurrence.at(candidate, self)

    def occurrences_in_day(self, day: datetime) -> list[Occurrence]:
        """All occurrences starting on the local calendar day of ``day``."""
        day_start = start_of_local_day(day)
        return list(
            self.occurrences(day_start, dt_add_interval(day_start, TIME_UNIT_DAYS, 1))
        )

    def occurrence_for_start(self, start: datetime) -> Occurrence | None:
        """Return the occurrence that starts exactly at ``start``, if any."""
        for occurrence in self.occurrences(start, start + ONE_SECOND):
            if occurrence.start == start:
                return occurrence
        return None

    def next_occurrence(self, from_date: datetime) -> Occurrence | None:
        """Return the first occurrence starting at or after ``from_date``."""
        return next(self.occurrences(from_date), None)

    def next_occurrences(self, from_date: datetime, count: int) -> list[Occurrence]:
        """Return up to ``count`` occurrences starting at or after ``from_date``."""
        return list(islice(self.occurrences(from_date), max(count, 0)))

    def last_occurrence(
        self, start: datetime | None = None, end: datetime | None = None
    ) -> Occurrence | None:
        """Return the last occurrence in [start, end).

        Raises:
            ConfigurationError: If ``end`` is None and the schedule never ends
        """
        if end is None and self.repeats_indefinitely:
            raise ConfigurationError(
                "Cannot find the last occurrence of an indefinite schedule "
                "without an upper bound"
            )
        last: Occurrence | None = None
        for occurrence in self.occurrences(start, end):
            last = occurrence
        return last
