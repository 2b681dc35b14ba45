# File: exceptions.py
"""Error taxonomy for the task scheduler.

Core logic errors derive from SchedulerError. Persistence failures raise
StorageError, which is intentionally outside that hierarchy so callers can
retry I/O without re-running business validation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime


class SchedulerError(Exception):
    """Base class for all core scheduler errors."""


class ConfigurationError(SchedulerError):
    """Raised when a rule, schedule or option is constructed with invalid values."""


class CalendarError(SchedulerError):
    """Raised when date arithmetic is impossible for the given inputs."""


class DecodingError(SchedulerError):
    """Raised when a persisted schedule, task or property bag cannot be decoded.

    Attributes:
        task_id: Chain id of the task that failed, when known
    """

    def __init__(self, message: str, task_id: str | None = None) -> None:
        """Initialize DecodingError.

        Args:
            message: Human readable failure description
            task_id: Chain id of the failing task, if known
        """
        self.task_id = task_id
        if task_id is not None:
            message = f"Task {task_id}: {message}"
        super().__init__(message)


class TaskNotFoundError(SchedulerError):
    """Raised when an operation references an unknown task chain."""

    def __init__(self, task_id: str) -> None:
        """Initialize TaskNotFoundError."""
        self.task_id = task_id
        super().__init__(f"Task {task_id} does not exist")


class ShadowedOutcomeError(SchedulerError):
    """Raised when a new task version would reinterpret recorded outcomes.

    Attributes:
        task_id: Chain id of the task being updated
        effective_from: Proposed effective date of the new version
        shadowed_starts: Occurrence starts of outcomes at or after effective_from
    """

    def __init__(
        self,
        task_id: str,
        effective_from: datetime,
        shadowed_starts: list[datetime],
    ) -> None:
        """Initialize ShadowedOutcomeError.

        Args:
            task_id: Chain id of the task being updated
            effective_from: Proposed effective date of the new version
            shadowed_starts: Occurrence starts that would be shadowed
        """
        self.task_id = task_id
        self.effective_from = effective_from
        self.shadowed_starts = shadowed_starts
        super().__init__(
            f"Updating task {task_id} effective from {effective_from.isoformat()} "
            f"would shadow {len(shadowed_starts)} recorded outcome(s)"
        )


class NextVersionAlreadyPresentError(SchedulerError):
    """Raised when a version update targets a task that is not the latest version.

    Also raised by compare-and-set writes when another writer appended first.
    """

    def __init__(self, task_id: str, version: int) -> None:
        """Initialize NextVersionAlreadyPresentError."""
        self.task_id = task_id
        self.version = version
        super().__init__(
            f"Task {task_id} version {version} already has a successor version"
        )


class AlreadyCompletedError(SchedulerError):
    """Raised when an occurrence already has a recorded outcome."""

    def __init__(self, task_id: str, occurrence_start: datetime) -> None:
        """Initialize AlreadyCompletedError."""
        self.task_id = task_id
        self.occurrence_start = occurrence_start
        super().__init__(
            f"Occurrence {occurrence_start.isoformat()} of task {task_id} "
            "is already completed"
        )


class CompletionPolicyError(SchedulerError):
    """Raised when the task's completion policy forbids completing an event now."""

    def __init__(self, task_id: str, occurrence_start: datetime, policy: str) -> None:
        """Initialize CompletionPolicyError."""
        self.task_id = task_id
        self.occurrence_start = occurrence_start
        self.policy = policy
        super().__init__(
            f"Completion policy '{policy}' of task {task_id} prevents completing "
            f"occurrence {occurrence_start.isoformat()}"
        )


class StorageError(Exception):
    """Raised when the persistence collaborator fails (I/O, timeout, serialization)."""
