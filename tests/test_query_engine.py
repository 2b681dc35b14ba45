"""Unit tests for query_engine.py - version stitching and outcome matching.

Scenario used throughout (UTC, day0 = 2024-09-01):
- v0: daily at 09:00 from day0
- v1: daily at 17:00, effective from day5 (2024-09-06 00:00)
"""

from __future__ import annotations

from datetime import datetime

from helpers import daily_schedule, make_dt, make_task, outcome_for
import pytest

from task_scheduler.engines.outcome_engine import Event, Outcome
from task_scheduler.engines.query_engine import QueryEngine, QueryResult
from task_scheduler.engines.schedule_engine import Schedule
from task_scheduler.engines.task_engine import TaskChain, TaskEngine
from task_scheduler.exceptions import CalendarError, DecodingError

DAY0 = make_dt(2024, 9, 1)


def day(offset: int, hour: int = 0) -> datetime:
    return make_dt(2024, 9, 1 + offset, hour)


def build_chain(
    task_id: str = "task-1", v1_effective_from: datetime | None = None
) -> TaskChain:
    """Two-version chain: 09:00 daily, then 17:00 daily."""
    v0 = make_task(
        task_id, schedule=daily_schedule(9, 0, starting_at=DAY0), effective_from=DAY0
    )
    v1, _ = TaskEngine.create_updated_version(
        TaskChain(task_id, [v0]),
        v0,
        [],
        effective_from=v1_effective_from or day(5),
        schedule=daily_schedule(17, 0, starting_at=day(5)),
    )
    return TaskChain(task_id, [v0, v1])


def starts(result: QueryResult) -> list[tuple[str, int, int]]:
    return [
        (event.task.id, event.occurrence.start.day, event.occurrence.start.hour)
        for event in result
    ]


# =============================================================================
# Version Stitching
# =============================================================================


class TestVersionStitching:
    """Each version serves its own slice of the range."""

    def test_range_across_versions(self) -> None:
        """[day3, day7) has two 09:00 events (v0) then two 17:00 events (v1)."""
        chain = build_chain()

        result = QueryEngine.assemble_events(day(3), day(7), [chain])

        assert starts(result) == [
            ("task-1", 4, 9),
            ("task-1", 5, 9),
            ("task-1", 6, 17),
            ("task-1", 7, 17),
        ]
        assert [event.task.version for event in result] == [0, 0, 1, 1]
        assert not result.is_partial

    def test_boundary_start_belongs_to_new_version(self) -> None:
        """An occurrence starting exactly at effective_from is not produced by v0."""
        chain = build_chain(v1_effective_from=day(5, 9))

        result = QueryEngine.assemble_events(day(5), day(6), [chain])

        assert starts(result) == [("task-1", 6, 17)]

    def test_first_version_serves_dates_before_its_effective_from(self) -> None:
        """Occurrences of v0 before its effective date are still returned."""
        v0 = make_task(
            schedule=daily_schedule(9, 0, starting_at=DAY0),
            effective_from=day(10),
        )

        result = QueryEngine.assemble_events(day(0), day(2), [TaskChain(v0.id, [v0])])

        assert len(result) == 2

    def test_version_windows(self) -> None:
        """Windows are clipped to the query range."""
        chain = build_chain()

        windows = QueryEngine.version_windows(chain, day(3), day(7))

        assert [(task.version, lower, upper) for task, lower, upper in windows] == [
            (0, day(3), day(5)),
            (1, day(5), day(7)),
        ]

    def test_range_inside_one_version(self) -> None:
        """Versions whose window misses the range are skipped."""
        chain = build_chain()

        assert QueryEngine.version_windows(chain, day(1), day(3))[0][0].version == 0
        assert len(QueryEngine.version_windows(chain, day(1), day(3))) == 1
        assert [task.version for task in QueryEngine.tasks_in_range(day(6), day(8), [chain])] == [1]

    def test_empty_range(self) -> None:
        """end <= start yields nothing."""
        result = QueryEngine.assemble_events(day(5), day(5), [build_chain()])

        assert len(result) == 0


# =============================================================================
# Outcome Matching
# =============================================================================


class TestOutcomeMatching:
    """Outcomes are joined by (chain id, occurrence start)."""

    def test_outcome_completes_event(self) -> None:
        """An outcome of v0 completes the matching v0 event."""
        chain = build_chain()
        first = QueryEngine.assemble_events(day(3), day(4), [chain]).events[0]
        outcome = outcome_for(first, day(3, 10))

        result = QueryEngine.assemble_events(day(3), day(7), [chain], [outcome])

        assert result.events[0].is_completed
        assert result.events[0].outcome is outcome
        assert not any(event.is_completed for event in result.events[1:])

    def test_outcome_matches_across_versions(self) -> None:
        """Matching ignores which version recorded the outcome."""
        chain = build_chain()
        outcome = Outcome(chain.latest, day(3, 9), day(3, 10))

        result = QueryEngine.assemble_events(day(3), day(4), [chain], [outcome])

        assert result.events[0].task.version == 0
        assert result.events[0].outcome is outcome

    def test_outcome_of_other_chain_is_ignored(self) -> None:
        """Chain ids must match."""
        chain = build_chain()
        other = build_chain("task-2")
        outcome = Outcome(other.first, day(3, 9), day(3, 10))

        result = QueryEngine.assemble_events(day(3), day(4), [chain], [outcome])

        assert not result.events[0].is_completed


# =============================================================================
# Sorting and Error Handling
# =============================================================================


class TestSortingAndErrors:
    """Sorting and strict vs lenient mode."""

    def test_sorted_by_start_then_task_id(self) -> None:
        """Same start times order by task id."""
        chains = [build_chain("task-b"), build_chain("task-a")]

        result = QueryEngine.assemble_events(day(3), day(5), chains)

        assert starts(result) == [
            ("task-a", 4, 9),
            ("task-b", 4, 9),
            ("task-a", 5, 9),
            ("task-b", 5, 9),
        ]

    def test_unsorted(self) -> None:
        """sort=False keeps chain order."""
        chains = [build_chain("task-b"), build_chain("task-a")]

        result = QueryEngine.assemble_events(day(3), day(5), chains, sort=False)

        assert [event.task.id for event in result] == [
            "task-b",
            "task-b",
            "task-a",
            "task-a",
        ]

    @pytest.fixture
    def broken_schedule(self, monkeypatch: pytest.MonkeyPatch) -> datetime:
        """Make expansion fail for schedules starting at day0 17:00."""
        broken_start = day(0, 17)
        original = Schedule.occurrences

        def _occurrences(self: Schedule, start=None, end=None):
            if self.start == broken_start:
                raise CalendarError("cannot expand")
            return original(self, start, end)

        monkeypatch.setattr(Schedule, "occurrences", _occurrences)
        return broken_start

    def test_lenient_mode_collects_errors(self, broken_schedule: datetime) -> None:
        """A failing chain is reported while other chains still produce events."""
        broken = make_task(
            "broken",
            schedule=daily_schedule(17, 0, starting_at=broken_schedule),
            effective_from=DAY0,
        )
        chains = [TaskChain("broken", [broken]), build_chain()]

        result = QueryEngine.assemble_events(day(3), day(5), chains, strict=False)

        assert result.is_partial
        assert isinstance(result.errors[0], CalendarError)
        assert len(result) == 2

    def test_strict_mode_raises(self, broken_schedule: datetime) -> None:
        """Strict mode re-raises the first failure."""
        broken = make_task(
            "broken",
            schedule=daily_schedule(17, 0, starting_at=broken_schedule),
            effective_from=DAY0,
        )

        with pytest.raises(CalendarError):
            QueryEngine.assemble_events(
                day(3), day(5), [TaskChain("broken", [broken])], strict=True
            )

    def test_preexisting_errors(self) -> None:
        """Decoding failures found at load time follow the same mode."""
        error = DecodingError("bad schedule", task_id="corrupt")

        lenient = QueryEngine.assemble_events(
            day(3), day(5), [build_chain()], errors=[error]
        )
        assert lenient.errors == [error]
        assert len(lenient) == 2

        with pytest.raises(DecodingError):
            QueryEngine.assemble_events(
                day(3), day(5), [build_chain()], errors=[error], strict=True
            )

    def test_has_event_occurrence(self) -> None:
        """Existence check without building events."""
        chain = build_chain()
        once = make_task("once", schedule=Schedule.once(day(2, 8)), effective_from=DAY0)

        assert QueryEngine.has_event_occurrence(day(3), day(4), [chain])
        assert not QueryEngine.has_event_occurrence(
            day(3), day(4), [TaskChain("once", [once])]
        )

    def test_events_are_read_models(self) -> None:
        """Events hold the producing version."""
        chain = build_chain()

        result = QueryEngine.assemble_events(day(6), day(7), [chain])

        assert result.events == [Event(chain.latest, result.events[0].occurrence)]
