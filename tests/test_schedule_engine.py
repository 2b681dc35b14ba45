"""Unit tests for schedule_engine.py Schedule, Duration and Occurrence.

Test Categories:
- Duration policies (all-day, till end of day, fixed)
- Occurrence ranges and the anchor-based occurrence count
- Single-occurrence schedules
- next/last occurrence lookups
"""

from __future__ import annotations

from datetime import timedelta

from helpers import daily_schedule, make_dt
import pytest

from task_scheduler.engines.recurrence_engine import RecurrenceEnd, RecurrenceRule
from task_scheduler.engines.schedule_engine import Duration, Occurrence, Schedule
from task_scheduler.exceptions import CalendarError, ConfigurationError

# =============================================================================
# Duration
# =============================================================================


class TestDuration:
    """Duration policy construction."""

    def test_factories(self) -> None:
        """Fixed factories all produce a fixed duration."""
        assert Duration.minutes(30) == Duration.fixed(timedelta(minutes=30))
        assert Duration.hours(2) == Duration.seconds(7200)
        assert Duration.all_day().is_all_day
        assert not Duration.till_end_of_day().is_all_day

    def test_negative_duration_rejected(self) -> None:
        """Durations cannot be negative."""
        with pytest.raises(ConfigurationError):
            Duration.minutes(-1)

    def test_length_only_for_fixed(self) -> None:
        """All-day durations do not take a length."""
        with pytest.raises(ConfigurationError):
            Duration("all_day", timedelta(hours=1))

    def test_unknown_kind(self) -> None:
        """Unknown policies are rejected."""
        with pytest.raises(ConfigurationError):
            Duration("forever")


# =============================================================================
# Recurring Schedules
# =============================================================================


class TestRecurringSchedule:
    """Occurrences of a recurring schedule."""

    def test_three_day_schedule(self, three_day_schedule: Schedule) -> None:
        """Daily 12:35 after 3 occurrences with 30 minutes each."""
        result = list(three_day_schedule.occurrences())

        assert [(item.start, item.end) for item in result] == [
            (make_dt(2024, 8, 24, 12, 35), make_dt(2024, 8, 24, 13, 5)),
            (make_dt(2024, 8, 25, 12, 35), make_dt(2024, 8, 25, 13, 5)),
            (make_dt(2024, 8, 26, 12, 35), make_dt(2024, 8, 26, 13, 5)),
        ]

    def test_subrange_counts_from_schedule_start(
        self, three_day_schedule: Schedule
    ) -> None:
        """A range starting Aug 25 returns the last two of the three occurrences."""
        result = list(three_day_schedule.occurrences(make_dt(2024, 8, 25)))

        assert [item.start.day for item in result] == [25, 26]

    def test_only_start_is_range_filtered(self, three_day_schedule: Schedule) -> None:
        """An occurrence ending after the range end is still included."""
        result = list(
            three_day_schedule.occurrences(
                make_dt(2024, 8, 24), make_dt(2024, 8, 24, 12, 40)
            )
        )

        assert len(result) == 1
        assert result[0].end > make_dt(2024, 8, 24, 12, 40)

    def test_weekly_on_sunday(self) -> None:
        """Weekly Sunday schedule starting on a Saturday."""
        schedule = Schedule.weekly(
            12,
            35,
            weekday=6,
            starting_at=make_dt(2024, 8, 24, 9, 23),
            end=RecurrenceEnd.after_occurrences(3),
        )

        result = [item.start.date().isoformat() for item in schedule.occurrences()]

        assert result == ["2024-08-25", "2024-09-01", "2024-09-08"]

    def test_till_end_of_day(self) -> None:
        """Default duration ends at 23:59:59 of the start day."""
        occurrence = next(daily_schedule().occurrences())

        assert occurrence.end == make_dt(2024, 8, 24, 23, 59, 59)

    def test_all_day_normalizes_start(self) -> None:
        """All-day schedules start at local midnight."""
        schedule = daily_schedule(duration=Duration.all_day())

        occurrence = next(schedule.occurrences())

        assert schedule.start == make_dt(2024, 8, 24)
        assert occurrence.start == make_dt(2024, 8, 24)
        assert occurrence.end == make_dt(2024, 8, 24, 23, 59, 59)
        assert occurrence.is_all_day

    def test_start_is_truncated_to_seconds(self) -> None:
        """Microseconds are dropped from the schedule start."""
        schedule = Schedule.once(make_dt(2024, 8, 24, 9, 23, 25).replace(microsecond=7))

        assert schedule.start.microsecond == 0

    def test_occurrences_in_day(self) -> None:
        """Only occurrences starting on that local day are returned."""
        schedule = Schedule(
            make_dt(2024, 8, 24, 8),
            Duration.hours(1),
            RecurrenceRule.hourly(interval=6),
        )

        result = schedule.occurrences_in_day(make_dt(2024, 8, 25, 15))

        assert [item.start.hour for item in result] == [2, 8, 14, 20]

    def test_occurrence_for_start(self, three_day_schedule: Schedule) -> None:
        """Exact start lookup."""
        assert three_day_schedule.occurrence_for_start(make_dt(2024, 8, 25, 12, 35))
        assert (
            three_day_schedule.occurrence_for_start(make_dt(2024, 8, 25, 12, 36))
            is None
        )

    def test_next_occurrences(self, three_day_schedule: Schedule) -> None:
        """next_occurrences stops at the rule end."""
        result = three_day_schedule.next_occurrences(make_dt(2024, 8, 24, 13), 5)

        assert [item.start.day for item in result] == [25, 26]

    def test_last_occurrence_of_finite_schedule(
        self, three_day_schedule: Schedule
    ) -> None:
        """Finite schedules have a last occurrence without an upper bound."""
        last = three_day_schedule.last_occurrence()

        assert last is not None
        assert last.start == make_dt(2024, 8, 26, 12, 35)

    def test_last_occurrence_of_indefinite_schedule_needs_bound(self) -> None:
        """Unbounded search over an indefinite schedule is refused."""
        schedule = daily_schedule()

        with pytest.raises(ConfigurationError):
            schedule.last_occurrence()

        last = schedule.last_occurrence(end=make_dt(2024, 9, 1))
        assert last is not None
        assert last.start == make_dt(2024, 8, 31, 12, 35)

    def test_invalid_time_of_day(self) -> None:
        """Factories reject impossible times of day."""
        with pytest.raises(CalendarError):
            daily_schedule(hour=24)


# =============================================================================
# Single Occurrence
# =============================================================================


class TestSingleOccurrence:
    """Schedules without a recurrence rule."""

    def test_once_with_fixed_duration(self) -> None:
        """Once at 09:23:25 for two hours."""
        schedule = Schedule.once(make_dt(2024, 8, 24, 9, 23, 25), Duration.hours(2))

        result = list(schedule.occurrences())

        assert result == [
            Occurrence(
                make_dt(2024, 8, 24, 9, 23, 25),
                make_dt(2024, 8, 24, 11, 23, 25),
                schedule,
            )
        ]
        assert not schedule.repeats_indefinitely

    def test_next_occurrence_after_start_is_none(self) -> None:
        """Looking from 09:25 finds nothing, the only occurrence started earlier."""
        schedule = Schedule.once(make_dt(2024, 8, 24, 9, 23, 25), Duration.hours(2))

        assert schedule.next_occurrence(make_dt(2024, 8, 24, 9, 25)) is None
        assert schedule.next_occurrence(make_dt(2024, 8, 24, 9, 0)) is not None

    def test_range_filter(self) -> None:
        """The single occurrence honors the half-open range."""
        at = make_dt(2024, 8, 24, 9, 23, 25)
        schedule = Schedule.once(at)

        assert list(schedule.occurrences(at, at + timedelta(seconds=1)))
        assert not list(schedule.occurrences(None, at))

    def test_with_start(self) -> None:
        """with_start returns a shifted copy."""
        schedule = Schedule.once(make_dt(2024, 8, 24, 9), Duration.all_day())

        moved = schedule.with_start(make_dt(2024, 8, 30, 15))

        assert moved.start == make_dt(2024, 8, 30)
        assert schedule.start == make_dt(2024, 8, 24)


# =============================================================================
# Occurrence ordering
# =============================================================================


class TestOccurrenceOrdering:
    """Occurrences order by start then end and ignore the schedule."""

    def test_ordering(self) -> None:
        """Sorting uses (start, end)."""
        first = Schedule.once(make_dt(2024, 8, 24, 9), Duration.hours(1))
        second = Schedule.once(make_dt(2024, 8, 24, 9), Duration.hours(3))
        third = Schedule.once(make_dt(2024, 8, 24, 8), Duration.hours(5))

        items = [next(s.occurrences()) for s in (second, first, third)]

        assert [item.end.hour for item in sorted(items)] == [13, 10, 12]
