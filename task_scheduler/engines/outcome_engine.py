"""Outcome Engine - completion records and the Event read model.

- Outcome: immutable completion record for one occurrence of one task version,
  keyed by (chain id, occurrence start) rather than an index so it survives
  schedule edits
- Event: ephemeral join of task version, occurrence and optional outcome,
  rebuilt by every query and never persisted
- OutcomeEngine.complete(): validates duplicates and the completion policy and
  returns a new Outcome

Completing an occurrence that already has an outcome is rejected with
AlreadyCompletedError, whichever version recorded the outcome. There is at most
one outcome per (chain id, occurrence start).

ARCHITECTURE: Pure logic, no I/O. Saving the outcome is the Scheduler's job.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
import uuid

from .. import const
from ..exceptions import AlreadyCompletedError, CompletionPolicyError
from ..user_info import UserInfoStorage
from ..utils.dt_utils import as_local, dt_now_local
from .schedule_engine import Occurrence
from .task_engine import Task

OutcomeKey = tuple[str, datetime]
OutcomeInitializer = Callable[[UserInfoStorage], None]


@dataclass(frozen=True)
class EventId:
    """Identity of an event: chain id plus occurrence start."""

    task_id: str
    occurrence_start: datetime


@dataclass(frozen=True)
class Outcome:
    """Completion record for one occurrence.

    Attributes:
        task: Task version that produced the occurrence (not necessarily latest)
        occurrence_start: Start of the completed occurrence
        completion_date: When the occurrence was completed
        id: Unique outcome id
        user_info: Outcome property bag, filled by the initializer and
            read-only afterwards
    """

    task: Task
    occurrence_start: datetime
    completion_date: datetime
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    user_info: UserInfoStorage = field(default_factory=UserInfoStorage, hash=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "occurrence_start", as_local(self.occurrence_start))
        object.__setattr__(self, "completion_date", as_local(self.completion_date))
        object.__setattr__(self, "user_info", self.user_info.freeze())

    @property
    def task_id(self) -> str:
        return self.task.id

    @property
    def key(self) -> OutcomeKey:
        return (self.task.id, self.occurrence_start)

    @property
    def occurrence(self) -> Occurrence:
        """Rehydrate the occurrence through the owning version's schedule."""
        return Occurrence.at(self.occurrence_start, self.task.schedule)


@dataclass(frozen=True)
class Event:
    """Read-only join of task version, occurrence and optional outcome."""

    task: Task
    occurrence: Occurrence
    outcome: Outcome | None = None

    @property
    def is_completed(self) -> bool:
        return self.outcome is not None

    @property
    def id(self) -> EventId:
        return EventId(self.task.id, self.occurrence.start)


class OutcomeEngine:
    """Pure logic for recording and matching outcomes.

    All methods are static - no instance state.
    """

    @staticmethod
    def index_outcomes(outcomes: Iterable[Outcome]) -> dict[OutcomeKey, Outcome]:
        """Index outcomes by (chain id, occurrence start).

        If stored data ever holds two outcomes for one key, the earliest
        completion wins and the duplicate is logged.
        """
        index: dict[OutcomeKey, Outcome] = {}
        for outcome in outcomes:
            existing = index.get(outcome.key)
            if existing is not None:
                const.LOGGER.warning(
                    "OutcomeEngine: Duplicate outcomes %s and %s for task %s at %s",
                    existing.id,
                    outcome.id,
                    outcome.task_id,
                    outcome.occurrence_start.isoformat(),
                )
                if existing.completion_date <= outcome.completion_date:
                    continue
            index[outcome.key] = outcome
        return index

    @staticmethod
    def find_outcome(
        outcomes: Iterable[Outcome], task_id: str, occurrence_start: datetime
    ) -> Outcome | None:
        """Return the outcome recorded for an occurrence of a chain, if any."""
        for outcome in outcomes:
            if (
                outcome.task_id == task_id
                and outcome.occurrence_start == occurrence_start
            ):
                return outcome
        return None

    @staticmethod
    def complete(
        event: Event,
        existing_outcomes: Iterable[Outcome] = (),
        *,
        now: datetime | None = None,
        initializer: OutcomeInitializer | None = None,
        ignore_completion_policy: bool = False,
    ) -> Outcome:
        """Create the outcome completing an event.

        Args:
            event: Event to complete
            existing_outcomes: Recorded outcomes of the event's chain
            now: Completion timestamp (default: current time)
            initializer: Callback filling the outcome property bag
            ignore_completion_policy: Skip the task's completion policy check

        Returns:
            New Outcome attached to the event's task version

        Raises:
            AlreadyCompletedError: If the occurrence already has an outcome
            CompletionPolicyError: If the completion policy forbids it at ``now``
        """
        now = now or dt_now_local()
        start = event.occurrence.start

        if event.outcome is not None or OutcomeEngine.find_outcome(
            existing_outcomes, event.task.id, start
        ):
            raise AlreadyCompletedError(event.task.id, start)

        policy = event.task.completion_policy
        if not ignore_completion_policy and not policy.is_allowed_to_complete(
            event.occurrence, now
        ):
            raise CompletionPolicyError(event.task.id, start, policy.kind)

        user_info = UserInfoStorage()
        if initializer is not None:
            initializer(user_info)

        outcome = Outcome(
            task=event.task,
            occurrence_start=start,
            completion_date=now,
            user_info=user_info,
        )
        const.LOGGER.debug(
            "OutcomeEngine: Completed task %s v%s occurrence %s (outcome %s)",
            event.task.id,
            event.task.version,
            start.isoformat(),
            outcome.id,
        )
        return outcome
