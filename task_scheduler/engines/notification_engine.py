"""Notification Engine - decides which occurrences need reminders.

The scheduler does not deliver notifications. This engine turns events into
ReminderRequest records that an external notifier schedules:
- Only notification-enabled tasks and uncompleted events are considered
- All-day occurrences fire at a configured time of day, others at their start
- At most `limit` requests are planned; the first event that did not fit
  tells the caller when to plan again (next_refresh)

ARCHITECTURE: Pure logic, no I/O.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from .. import const
from ..exceptions import ConfigurationError
from ..utils.dt_utils import dt_set_time, dt_to_iso

if TYPE_CHECKING:
    from .outcome_engine import Event
    from .schedule_engine import Occurrence
    from .task_engine import Category, Task


@dataclass(frozen=True)
class NotificationTime:
    """Wall-clock time of day used for all-day reminders."""

    hour: int
    minute: int = 0
    second: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.hour <= 23:
            raise ConfigurationError(f"hour must be between 0 and 23, got {self.hour}")
        if not 0 <= self.minute <= 59:
            raise ConfigurationError(
                f"minute must be between 0 and 59, got {self.minute}"
            )
        if not 0 <= self.second <= 59:
            raise ConfigurationError(
                f"second must be between 0 and 59, got {self.second}"
            )

    @classmethod
    def default(cls) -> NotificationTime:
        return cls(
            const.DEFAULT_ALL_DAY_NOTIFICATION_HOUR,
            const.DEFAULT_ALL_DAY_NOTIFICATION_MINUTE,
        )


@dataclass(frozen=True)
class ReminderRequest:
    """One reminder for the external notifier to schedule."""

    identifier: str
    task_id: str
    occurrence_start: datetime
    fire_at: datetime
    title: str
    body: str
    thread_identifier: str | None
    category: str | None
    time_sensitive: bool


@dataclass(frozen=True)
class ReminderPlan:
    """Reminders to schedule now, and when to plan again.

    Attributes:
        requests: Requests in fire order, at most the configured limit
        next_refresh: Start of the first event that did not fit, if any
    """

    requests: tuple[ReminderRequest, ...]
    next_refresh: datetime | None = None


class NotificationEngine:
    """Pure logic for reminder planning.

    All methods are static - no instance state.
    """

    @staticmethod
    def notification_id_for_event(event: Event) -> str:
        return (
            f"{const.NOTIFICATION_ID_PREFIX}.event.{event.task.id}."
            f"{dt_to_iso(event.occurrence.start)}"
        )

    @staticmethod
    def notification_id_for_task(task: Task) -> str:
        return f"{const.NOTIFICATION_ID_PREFIX}.task.{task.id}"

    @staticmethod
    def thread_identifier(task: Task) -> str | None:
        """Thread used to group a task's reminders (None lets the platform decide)."""
        thread = task.notification_thread
        if thread.kind == const.NOTIFICATION_THREAD_GLOBAL:
            return const.NOTIFICATION_THREAD_GLOBAL_ID
        if thread.kind == const.NOTIFICATION_THREAD_TASK:
            return f"{const.NOTIFICATION_ID_PREFIX}.thread.{task.id}"
        if thread.kind == const.NOTIFICATION_THREAD_CUSTOM:
            return thread.identifier
        return None

    @staticmethod
    def category_identifier(category: Category | None) -> str | None:
        if category is None:
            return None
        return f"{const.NOTIFICATION_ID_PREFIX}.category.{category.name}"

    @staticmethod
    def notification_time(
        occurrence: Occurrence, all_day_time: NotificationTime
    ) -> datetime:
        """Return when the reminder for an occurrence fires."""
        if occurrence.is_all_day:
            return dt_set_time(
                occurrence.start,
                all_day_time.hour,
                all_day_time.minute,
                all_day_time.second,
            )
        return occurrence.start

    @staticmethod
    def needs_reminder(event: Event) -> bool:
        return event.task.schedule_notifications and not event.is_completed

    @staticmethod
    def occurrences_needing_reminder(events: Iterable[Event]) -> list[Occurrence]:
        """Occurrences of uncompleted, notification-enabled events, in input order."""
        return [
            event.occurrence
            for event in events
            if NotificationEngine.needs_reminder(event)
        ]

    @staticmethod
    def build_request(event: Event, all_day_time: NotificationTime) -> ReminderRequest:
        task = event.task
        return ReminderRequest(
            identifier=NotificationEngine.notification_id_for_event(event),
            task_id=task.id,
            occurrence_start=event.occurrence.start,
            fire_at=NotificationEngine.notification_time(
                event.occurrence, all_day_time
            ),
            title=task.title,
            body=task.instructions,
            thread_identifier=NotificationEngine.thread_identifier(task),
            category=NotificationEngine.category_identifier(task.category),
            time_sensitive=not event.occurrence.is_all_day,
        )

    @staticmethod
    def plan_reminders(
        events: Iterable[Event],
        now: datetime,
        limit: int = const.DEFAULT_NOTIFICATION_LIMIT,
        all_day_time: NotificationTime | None = None,
    ) -> ReminderPlan:
        """Plan reminders for future, uncompleted, notification-enabled events.

        Args:
            events: Candidate events (any order)
            now: Reminders firing before this instant are skipped
            limit: Maximum number of requests (1..MAX_PENDING_NOTIFICATIONS)
            all_day_time: Fire time for all-day occurrences (default 09:00)

        Returns:
            ReminderPlan with at most ``limit`` requests sorted by fire time

        Raises:
            ConfigurationError: If ``limit`` is out of range
        """
        if not 1 <= limit <= const.MAX_PENDING_NOTIFICATIONS:
            raise ConfigurationError(
                f"Notification limit must be between 1 and "
                f"{const.MAX_PENDING_NOTIFICATIONS}, got {limit}"
            )
        all_day_time = all_day_time or NotificationTime.default()

        candidates = sorted(
            (
                NotificationEngine.build_request(event, all_day_time)
                for event in events
                if NotificationEngine.needs_reminder(event)
            ),
            key=lambda request: (request.fire_at, request.task_id),
        )
        candidates = [request for request in candidates if request.fire_at >= now]

        # One extra candidate tells us when the next planning pass is due
        next_refresh = (
            candidates[limit].occurrence_start if len(candidates) > limit else None
        )
        plan = ReminderPlan(tuple(candidates[:limit]), next_refresh)
        const.LOGGER.debug(
            "NotificationEngine: Planned %d reminder(s), next refresh %s",
            len(plan.requests),
            next_refresh,
        )
        return plan
