"""Task Engine - task versions, version chains and the update transition.

A task identity is a chain of immutable versions stored as an arena:
records keyed by the stable chain id plus a 0-based version number. The
latest version is the one with the highest number; previous/next versions
are index lookups, not object pointers.

This engine provides stateless functions for:
- Creating the first version of a task
- Deciding whether an update needs a new version (field-by-field equality)
- Validating the update (latest-version check, effective date ordering,
  shadowed-outcome check) and building the new version
- Completion policy evaluation

ARCHITECTURE: Pure logic, no I/O. Persisting a new version is the
Scheduler manager's job; TaskChain.append() is the compare-and-set primitive
the store uses.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import TYPE_CHECKING, Any

from .. import const
from ..exceptions import (
    ConfigurationError,
    NextVersionAlreadyPresentError,
    ShadowedOutcomeError,
)
from ..user_info import UserInfoStorage
from ..utils.dt_utils import (
    ONE_DAY,
    as_local,
    dt_is_same_local_day,
    dt_now_local,
    start_of_local_day,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .outcome_engine import Outcome
    from .schedule_engine import Occurrence, Schedule


# =============================================================================
# Value Types
# =============================================================================


@dataclass(frozen=True)
class Category:
    """Task category. Presets: questionnaire, measurement, medication."""

    name: str

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigurationError("Category name must not be empty")

    @classmethod
    def questionnaire(cls) -> Category:
        return cls(const.CATEGORY_QUESTIONNAIRE)

    @classmethod
    def measurement(cls) -> Category:
        return cls(const.CATEGORY_MEASUREMENT)

    @classmethod
    def medication(cls) -> Category:
        return cls(const.CATEGORY_MEDICATION)

    @classmethod
    def custom(cls, name: str) -> Category:
        return cls(name)


@dataclass(frozen=True)
class NotificationThread:
    """How reminders of a task are grouped: global, per task, custom id or none."""

    kind: str = const.NOTIFICATION_THREAD_GLOBAL
    identifier: str | None = None

    def __post_init__(self) -> None:
        if self.kind not in const.NOTIFICATION_THREAD_OPTIONS:
            raise ConfigurationError(f"Unknown notification thread: {self.kind}")
        if self.kind == const.NOTIFICATION_THREAD_CUSTOM and not self.identifier:
            raise ConfigurationError(
                "Custom notification thread requires an identifier"
            )

    @classmethod
    def global_thread(cls) -> NotificationThread:
        return cls(const.NOTIFICATION_THREAD_GLOBAL)

    @classmethod
    def task(cls) -> NotificationThread:
        return cls(const.NOTIFICATION_THREAD_TASK)

    @classmethod
    def custom(cls, identifier: str) -> NotificationThread:
        return cls(const.NOTIFICATION_THREAD_CUSTOM, identifier)

    @classmethod
    def none(cls) -> NotificationThread:
        return cls(const.NOTIFICATION_THREAD_NONE)


@dataclass(frozen=True)
class AllowedCompletionPolicy:
    """When an occurrence may be completed.

    - same_day: on the local calendar day of the occurrence start
    - after_start: any time at or after the occurrence start
    - same_day_after_start: after the start, on the same local day
    - during_event: while the occurrence is running, start <= now < end
    """

    kind: str = const.DEFAULT_COMPLETION_POLICY

    def __post_init__(self) -> None:
        if self.kind not in const.COMPLETION_POLICY_OPTIONS:
            raise ConfigurationError(f"Unknown completion policy: {self.kind}")

    @classmethod
    def same_day(cls) -> AllowedCompletionPolicy:
        return cls(const.COMPLETION_POLICY_SAME_DAY)

    @classmethod
    def after_start(cls) -> AllowedCompletionPolicy:
        return cls(const.COMPLETION_POLICY_AFTER_START)

    @classmethod
    def same_day_after_start(cls) -> AllowedCompletionPolicy:
        return cls(const.COMPLETION_POLICY_SAME_DAY_AFTER_START)

    @classmethod
    def during_event(cls) -> AllowedCompletionPolicy:
        return cls(const.COMPLETION_POLICY_DURING_EVENT)

    def is_allowed_to_complete(
        self, occurrence: Occurrence, now: datetime | None = None
    ) -> bool:
        """Check whether the occurrence may be completed at ``now``."""
        now = now or dt_now_local()
        if self.kind == const.COMPLETION_POLICY_SAME_DAY:
            return dt_is_same_local_day(now, occurrence.start)
        if self.kind == const.COMPLETION_POLICY_AFTER_START:
            return now >= occurrence.start
        if self.kind == const.COMPLETION_POLICY_SAME_DAY_AFTER_START:
            return dt_is_same_local_day(now, occurrence.start) and (
                now >= occurrence.start
            )
        return occurrence.start <= now < occurrence.end

    def date_once_completion_is_allowed(
        self, occurrence: Occurrence, now: datetime | None = None
    ) -> datetime | None:
        """Return when completion becomes allowed, if that is still in the future."""
        now = now or dt_now_local()
        if self.kind == const.COMPLETION_POLICY_SAME_DAY:
            allowed_from = start_of_local_day(occurrence.start)
        else:
            allowed_from = occurrence.start
        return allowed_from if now < allowed_from else None

    def date_once_completion_becomes_disallowed(
        self, occurrence: Occurrence, now: datetime | None = None
    ) -> datetime | None:
        """Return when completion stops being allowed, if that is in the future.

        after_start never expires, so it returns None.
        """
        now = now or dt_now_local()
        if self.kind == const.COMPLETION_POLICY_AFTER_START:
            return None
        if self.kind == const.COMPLETION_POLICY_DURING_EVENT:
            disallowed_from = occurrence.end
        else:
            disallowed_from = start_of_local_day(occurrence.start) + ONE_DAY
        return disallowed_from if now < disallowed_from else None


# =============================================================================
# Task Version and Chain
# =============================================================================


@dataclass(frozen=True)
class Task:
    """One immutable version of a task.

    Attributes:
        id: Stable chain id shared by every version
        version: 0-based sequence number within the chain
        effective_from: Date from which this version generates occurrences
        user_info: Task property bag (read-only; copy() it to change a property)
    """

    id: str
    title: str
    instructions: str
    schedule: Schedule
    effective_from: datetime
    version: int = 0
    category: Category | None = None
    completion_policy: AllowedCompletionPolicy = field(
        default_factory=AllowedCompletionPolicy
    )
    schedule_notifications: bool = False
    notification_thread: NotificationThread = field(default_factory=NotificationThread)
    tags: tuple[str, ...] = ()
    user_info: UserInfoStorage = field(default_factory=UserInfoStorage, hash=False)

    def __post_init__(self) -> None:
        if not self.id:
            raise ConfigurationError("Task id must not be empty")
        if self.version < 0:
            raise ConfigurationError(f"Invalid task version: {self.version}")
        if not isinstance(self.tags, tuple):
            object.__setattr__(self, "tags", tuple(self.tags))
        object.__setattr__(self, "effective_from", as_local(self.effective_from))
        object.__setattr__(self, "user_info", self.user_info.freeze())


class TaskChain:
    """Arena view over every stored version of one task identity."""

    def __init__(self, task_id: str, versions: Iterable[Task]) -> None:
        """Initialize the chain.

        Raises:
            ConfigurationError: If the versions are empty, belong to another
                chain, or are not numbered 0..n-1
        """
        self.id = task_id
        self._versions: tuple[Task, ...] = tuple(
            sorted(versions, key=lambda task: task.version)
        )
        if not self._versions:
            raise ConfigurationError(f"Task chain {task_id} has no versions")
        for index, task in enumerate(self._versions):
            if task.id != task_id:
                raise ConfigurationError(
                    f"Task {task.id} does not belong to chain {task_id}"
                )
            if task.version != index:
                raise ConfigurationError(
                    f"Task chain {task_id} has a gap at version {index}"
                )

    @property
    def versions(self) -> tuple[Task, ...]:
        return self._versions

    @property
    def latest(self) -> Task:
        return self._versions[-1]

    @property
    def first(self) -> Task:
        return self._versions[0]

    def is_latest(self, task: Task) -> bool:
        return task.id == self.id and task.version == self.latest.version

    def previous_version(self, task: Task) -> Task | None:
        if task.version == 0:
            return None
        return self._versions[task.version - 1]

    def next_version(self, task: Task) -> Task | None:
        if task.version + 1 >= len(self._versions):
            return None
        return self._versions[task.version + 1]

    def effective_until(self, task: Task) -> datetime | None:
        """Return the next version's effective date (exclusive end), if any."""
        successor = self.next_version(task)
        return successor.effective_from if successor else None

    def version_effective_at(self, date: datetime) -> Task:
        """Return the version that serves occurrences starting at ``date``.

        Dates before the first version's effective date belong to the first
        version.
        """
        current = self.first
        for task in self._versions[1:]:
            if date < task.effective_from:
                break
            current = task
        return current

    def append(self, task: Task) -> TaskChain:
        """Return a new chain with ``task`` appended as the latest version.

        Raises:
            NextVersionAlreadyPresentError: Unless task.version == latest + 1
        """
        if task.id != self.id or task.version != self.latest.version + 1:
            raise NextVersionAlreadyPresentError(self.id, task.version - 1)
        return TaskChain(self.id, (*self._versions, task))

    def __len__(self) -> int:
        return len(self._versions)

    def __repr__(self) -> str:
        return f"TaskChain({self.id!r}, versions={len(self._versions)})"


# =============================================================================
# Task Engine
# =============================================================================


class TaskEngine:
    """Pure logic for creating and updating task versions.

    All methods are static - no instance state.
    """

    # Fields compared by create_updated_version, in declaration order
    UPDATABLE_FIELDS: tuple[str, ...] = (
        "title",
        "instructions",
        "category",
        "schedule",
        "completion_policy",
        "schedule_notifications",
        "notification_thread",
        "tags",
        "user_info",
    )

    @staticmethod
    def create_task(
        task_id: str,
        *,
        title: str,
        instructions: str,
        schedule: Schedule,
        category: Category | None = None,
        completion_policy: AllowedCompletionPolicy | None = None,
        schedule_notifications: bool = False,
        notification_thread: NotificationThread | None = None,
        tags: Iterable[str] = (),
        effective_from: datetime | None = None,
        user_info: UserInfoStorage | None = None,
    ) -> Task:
        """Build version 0 of a task. effective_from defaults to now."""
        return Task(
            id=task_id,
            title=title,
            instructions=instructions,
            schedule=schedule,
            effective_from=effective_from or dt_now_local(),
            version=0,
            category=category,
            completion_policy=completion_policy or AllowedCompletionPolicy(),
            schedule_notifications=schedule_notifications,
            notification_thread=notification_thread or NotificationThread(),
            tags=tuple(tags),
            user_info=user_info.copy() if user_info else UserInfoStorage(),
        )

    @staticmethod
    def changed_fields(task: Task, changes: dict[str, Any]) -> list[str]:
        """Return the fields whose proposed value is set and differs.

        A value of None means "keep the current value".
        """
        unknown = set(changes) - set(TaskEngine.UPDATABLE_FIELDS)
        if unknown:
            raise ConfigurationError(
                f"Unknown task field(s): {', '.join(sorted(unknown))}"
            )
        changed: list[str] = []
        for name in TaskEngine.UPDATABLE_FIELDS:
            value = changes.get(name)
            if value is None:
                continue
            if name == "tags":
                value = tuple(value)
            if value != getattr(task, name):
                changed.append(name)
        return changed

    @staticmethod
    def shadowed_outcome_starts(
        outcomes: Iterable[Outcome], effective_from: datetime
    ) -> list[datetime]:
        """Return occurrence starts of outcomes at or after effective_from."""
        return sorted(
            outcome.occurrence_start
            for outcome in outcomes
            if not outcome.occurrence_start < effective_from
        )

    @staticmethod
    def create_updated_version(
        chain: TaskChain,
        task: Task,
        outcomes: Iterable[Outcome],
        *,
        effective_from: datetime | None = None,
        **changes: Any,
    ) -> tuple[Task, bool]:
        """Create the next version of a task if any field actually changes.

        Args:
            chain: Current chain of the task identity
            task: Version the caller is updating (must be the chain's latest)
            outcomes: Every recorded outcome of the chain
            effective_from: First date served by the new version (default now)
            **changes: New field values; None keeps the current value

        Returns:
            (task, did_change). When nothing differs the latest version is
            returned unchanged with did_change False.

        Raises:
            NextVersionAlreadyPresentError: If ``task`` already has a successor
            ConfigurationError: If effective_from precedes the current version's
            ShadowedOutcomeError: If an outcome starts at or after effective_from

        Examples:
            An outcome exists at 2024-08-25 12:35. Updating with effective_from
            2024-08-25 12:35 fails; 2024-08-25 12:36 succeeds.
        """
        if not TaskEngine.changed_fields(task, changes):
            const.LOGGER.debug(
                "TaskEngine: Update of task %s v%s is a no-op", task.id, task.version
            )
            return task, False

        if not chain.is_latest(task):
            raise NextVersionAlreadyPresentError(task.id, task.version)

        new_effective_from = as_local(effective_from or dt_now_local())
        if new_effective_from < task.effective_from:
            raise ConfigurationError(
                f"Task {task.id}: effective_from {new_effective_from.isoformat()} "
                f"precedes current version's {task.effective_from.isoformat()}"
            )

        shadowed = TaskEngine.shadowed_outcome_starts(outcomes, new_effective_from)
        if shadowed:
            raise ShadowedOutcomeError(task.id, new_effective_from, shadowed)

        updates = {
            name: (tuple(value) if name == "tags" else value)
            for name, value in changes.items()
            if value is not None
        }
        user_info = updates.get("user_info")
        if user_info is None:
            user_info = task.user_info
        updates["user_info"] = user_info.copy()

        new_version = replace(
            task,
            version=task.version + 1,
            effective_from=new_effective_from,
            **updates,
        )
        const.LOGGER.debug(
            "TaskEngine: Task %s v%s -> v%s effective from %s",
            task.id,
            task.version,
            new_version.version,
            new_effective_from.isoformat(),
        )
        return new_version, True
