"""Query Engine - version stitching and outcome reconciliation.

Computes the Events of a date range for a set of task chains:
1. Split the range at every effective_from boundary of a chain. Version v
   serves [v.effective_from, next.effective_from); the first version also
   serves everything before its own effective_from. A start strictly before a
   boundary belongs to the previous version, a start at or after it to the
   next one.
2. Expand each version's schedule over its slice of the range.
3. Match recorded outcomes by (chain id, occurrence start). This works across
   versions: an outcome recorded by an older version still completes the
   occurrence it was recorded for.
4. Sort by (occurrence start, task id) unless the caller opts out.

A chain that fails to expand (CalendarError, DecodingError) is either
collected into QueryResult.errors (lenient) or re-raised (strict).

ARCHITECTURE: Pure logic, no I/O. The Scheduler passes in a store snapshot.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime

from .. import const
from ..exceptions import CalendarError, DecodingError, SchedulerError
from .outcome_engine import Event, Outcome, OutcomeEngine
from .task_engine import Task, TaskChain

# Per-task failures that never abort unrelated tasks in lenient mode
COLLECTABLE_ERRORS = (CalendarError, DecodingError)


@dataclass
class QueryResult:
    """Events of a query plus the per-task errors collected in lenient mode."""

    events: list[Event] = field(default_factory=list)
    errors: list[SchedulerError] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.errors)

    def __iter__(self) -> Iterator[Event]:
        return iter(self.events)

    def __len__(self) -> int:
        return len(self.events)


class QueryEngine:
    """Pure logic for assembling events from task chains and outcomes.

    All methods are static - no instance state.
    """

    @staticmethod
    def version_windows(
        chain: TaskChain, start: datetime, end: datetime
    ) -> list[tuple[Task, datetime, datetime]]:
        """Split [start, end) into the slices served by each version.

        Returns:
            (version, slice_start, slice_end) triples in chronological order;
            versions whose window does not intersect the range are omitted.
        """
        windows: list[tuple[Task, datetime, datetime]] = []
        for task in chain.versions:
            lower = start if task.version == 0 else max(start, task.effective_from)
            until = chain.effective_until(task)
            upper = end if until is None else min(end, until)
            if lower < upper:
                windows.append((task, lower, upper))
        return windows

    @staticmethod
    def chain_events(
        chain: TaskChain,
        start: datetime,
        end: datetime,
        outcome_index: dict[tuple[str, datetime], Outcome],
    ) -> list[Event]:
        """Build the events of one chain in [start, end).

        Raises:
            CalendarError: If a version's schedule cannot be expanded
        """
        events: list[Event] = []
        for task, lower, upper in QueryEngine.version_windows(chain, start, end):
            for occurrence in task.schedule.occurrences(lower, upper):
                outcome = outcome_index.get((chain.id, occurrence.start))
                events.append(Event(task, occurrence, outcome))
        return events

    @staticmethod
    def assemble_events(
        start: datetime,
        end: datetime,
        chains: Iterable[TaskChain],
        outcomes: Iterable[Outcome] = (),
        *,
        strict: bool = const.DEFAULT_STRICT_QUERIES,
        errors: Iterable[SchedulerError] = (),
        sort: bool = True,
    ) -> QueryResult:
        """Compute the events of every chain in [start, end).

        Args:
            start: Inclusive lower bound for occurrence starts
            end: Exclusive upper bound for occurrence starts
            chains: Task chains to expand
            outcomes: Recorded outcomes of those chains
            strict: Re-raise the first per-task failure instead of collecting it
            errors: Failures found before expansion (e.g. undecodable chains)
            sort: Sort by (occurrence start, task id)

        Returns:
            QueryResult with events and collected errors

        Raises:
            CalendarError, DecodingError: In strict mode only
        """
        result = QueryResult()
        for error in errors:
            if strict:
                raise error
            const.LOGGER.warning("QueryEngine: Skipping task: %s", error)
            result.errors.append(error)

        if end <= start:
            return result

        outcome_index = OutcomeEngine.index_outcomes(outcomes)
        for chain in chains:
            try:
                result.events.extend(
                    QueryEngine.chain_events(chain, start, end, outcome_index)
                )
            except COLLECTABLE_ERRORS as exc:
                if strict:
                    raise
                const.LOGGER.warning(
                    "QueryEngine: Failed to expand task %s: %s", chain.id, exc
                )
                if isinstance(exc, DecodingError) and exc.task_id is None:
                    exc = DecodingError(str(exc), task_id=chain.id)
                result.errors.append(exc)

        if sort:
            result.events.sort(
                key=lambda event: (event.occurrence.start, event.task.id)
            )

        const.LOGGER.debug(
            "QueryEngine: %d event(s) in [%s, %s), %d error(s)",
            len(result.events),
            start.isoformat(),
            end.isoformat(),
            len(result.errors),
        )
        return result

    @staticmethod
    def has_event_occurrence(
        start: datetime, end: datetime, chains: Iterable[TaskChain]
    ) -> bool:
        """Return True if any chain has at least one occurrence in [start, end)."""
        for chain in chains:
            for task, lower, upper in QueryEngine.version_windows(chain, start, end):
                if next(task.schedule.occurrences(lower, upper), None) is not None:
                    return True
        return False

    @staticmethod
    def tasks_in_range(
        start: datetime, end: datetime, chains: Iterable[TaskChain]
    ) -> list[Task]:
        """Return the versions whose effective window intersects [start, end)."""
        return [
            task
            for chain in chains
            for task, _lower, _upper in QueryEngine.version_windows(chain, start, end)
        ]
