"""Scheduler Manager - stateful task, outcome and query orchestration.

This manager is the single writer for task chains and outcomes:
- Creating and updating task versions (TaskEngine does the validation)
- Completing events (OutcomeEngine does the validation)
- Querying events and tasks over a store snapshot (QueryEngine)
- Planning reminders for the external notifier (NotificationEngine)
- Race condition protection via one asyncio.Lock per task chain, so two
  concurrent updates cannot both pass the shadowed-outcome check
- Explicit listener notification after every successful write

ARCHITECTURE:
- Scheduler = "The Job" (STATEFUL orchestration, persistence, locking)
- *Engine = Pure logic (STATELESS)
- SchedulerStorage = Persistence collaborator; every call is bounded by the
  configured storage timeout and failures surface as StorageError
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

import voluptuous as vol

from .. import const
from ..engines.notification_engine import NotificationEngine, NotificationTime
from ..engines.outcome_engine import OutcomeEngine
from ..engines.query_engine import QueryEngine, QueryResult
from ..engines.task_engine import TaskEngine
from ..exceptions import ConfigurationError, StorageError, TaskNotFoundError
from ..utils.dt_utils import dt_now_local

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from ..engines.notification_engine import ReminderPlan
    from ..engines.outcome_engine import Event, Outcome, OutcomeInitializer
    from ..engines.schedule_engine import Occurrence, Schedule
    from ..engines.task_engine import (
        AllowedCompletionPolicy,
        Category,
        NotificationThread,
        Task,
        TaskChain,
    )
    from ..store import SchedulerStorage, StoreSnapshot, TaskPredicate
    from ..type_defs import ListenerPayload, SchedulerOptions
    from ..user_info import UserInfoStorage

__all__ = ["Scheduler"]

SCHEDULER_OPTIONS_SCHEMA = vol.Schema(
    {
        vol.Optional(
            const.CONF_STRICT_QUERIES, default=const.DEFAULT_STRICT_QUERIES
        ): bool,
        vol.Optional(
            const.CONF_STORAGE_TIMEOUT, default=const.DEFAULT_STORAGE_TIMEOUT
        ): vol.All(vol.Coerce(float), vol.Range(min=0, min_included=False)),
        vol.Optional(
            const.CONF_NOTIFICATION_LIMIT, default=const.DEFAULT_NOTIFICATION_LIMIT
        ): vol.All(int, vol.Range(min=1, max=const.MAX_PENDING_NOTIFICATIONS)),
        vol.Optional(
            const.CONF_SCHEDULING_INTERVAL_DAYS,
            default=const.DEFAULT_SCHEDULING_INTERVAL_DAYS,
        ): vol.All(int, vol.Range(min=const.MIN_SCHEDULING_INTERVAL_DAYS)),
        vol.Optional(const.CONF_ALL_DAY_NOTIFICATION_TIME): NotificationTime,
    }
)


class Scheduler:
    """Manager for task versions, completions and queries.

    Responsibilities:
    - Serialize writes per task chain (asyncio locks)
    - Persist new versions and outcomes through the storage collaborator
    - Notify listeners after successful writes

    NOT responsible for:
    - Validation rules (delegated to the engines)
    - Notification delivery (ReminderPlan is handed to an external notifier)
    """

    # =========================================================================
    # §0 LIFECYCLE & INITIALIZATION
    # =========================================================================

    def __init__(
        self,
        store: SchedulerStorage,
        options: SchedulerOptions | None = None,
    ) -> None:
        """Initialize the Scheduler.

        Args:
            store: Persistence collaborator
            options: In-process configuration; missing keys use const.DEFAULT_*

        Raises:
            ConfigurationError: If an option is unknown or out of range
        """
        try:
            options = SCHEDULER_OPTIONS_SCHEMA(dict(options or {}))
        except vol.Invalid as err:
            raise ConfigurationError(f"Invalid scheduler options: {err}") from err

        self._store = store
        self._strict: bool = options[const.CONF_STRICT_QUERIES]
        self._storage_timeout: float = options[const.CONF_STORAGE_TIMEOUT]
        self._notification_limit: int = options[const.CONF_NOTIFICATION_LIMIT]
        self._scheduling_interval_days: int = options[
            const.CONF_SCHEDULING_INTERVAL_DAYS
        ]
        self._all_day_time: NotificationTime = options.get(
            const.CONF_ALL_DAY_NOTIFICATION_TIME, NotificationTime.default()
        )

        # Locks for race condition protection (keyed by task chain id)
        self._task_locks: dict[str, asyncio.Lock] = {}
        self._listeners: list[Callable[[str, ListenerPayload], None]] = []

    @property
    def strict_queries(self) -> bool:
        return self._strict

    def _get_lock(self, task_id: str) -> asyncio.Lock:
        """Get or create the write lock for a task chain.

        Args:
            task_id: The task chain id

        Returns:
            asyncio.Lock for this chain
        """
        if task_id not in self._task_locks:
            self._task_locks[task_id] = asyncio.Lock()
        return self._task_locks[task_id]

    async def _async_store_call(self, call: Awaitable[Any]) -> Any:
        """Await a store call, bounded by the storage timeout.

        Raises:
            StorageError: If the call times out
        """
        try:
            async with asyncio.timeout(self._storage_timeout):
                return await call
        except TimeoutError as exc:
            const.LOGGER.error(
                "Scheduler: Storage call timed out after %ss", self._storage_timeout
            )
            raise StorageError(
                f"Storage call timed out after {self._storage_timeout}s"
            ) from exc

    # =========================================================================
    # §1 LISTENERS
    # =========================================================================

    def add_listener(
        self, callback: Callable[[str, ListenerPayload], None]
    ) -> Callable[[], None]:
        """Register a callback invoked as callback(signal, payload) after writes.

        Returns:
            Function that removes the listener again
        """
        self._listeners.append(callback)

        def _remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _remove

    def emit(self, signal: str, **payload: Any) -> None:
        """Notify listeners of a completed write.

        Example:
            self.emit(const.SIGNAL_TASK_UPDATED, task_id="task-1", version=2)
        """
        const.LOGGER.debug(
            "Scheduler: Emitting '%s' with payload keys: %s",
            signal,
            list(payload.keys()),
        )
        for callback in list(self._listeners):
            callback(signal, payload)

    # =========================================================================
    # §2 TASK VERSIONS
    # =========================================================================

    async def _async_fetch_chain(self, task_id: str) -> TaskChain | None:
        return await self._async_store_call(self._store.async_fetch_chain(task_id))

    async def async_create_or_update_task(
        self,
        task_id: str,
        *,
        title: str,
        instructions: str,
        schedule: Schedule,
        category: Category | None = None,
        completion_policy: AllowedCompletionPolicy | None = None,
        schedule_notifications: bool | None = None,
        notification_thread: NotificationThread | None = None,
        tags: Iterable[str] | None = None,
        effective_from: datetime | None = None,
        user_info: UserInfoStorage | None = None,
    ) -> tuple[Task, bool]:
        """Create version 0 of a task, or update its latest version.

        Args:
            task_id: Stable chain id
            effective_from: First date served by the created/updated version

        Returns:
            (task, did_change). did_change is False if the task existed and no
            field differs.

        Raises:
            ShadowedOutcomeError: If the update would shadow recorded outcomes
            ConfigurationError: If effective_from precedes the latest version's
            DecodingError: If the stored chain cannot be decoded
            StorageError: If persisting fails
        """
        async with self._get_lock(task_id):
            chain = await self._async_fetch_chain(task_id)
            if chain is None:
                task = TaskEngine.create_task(
                    task_id,
                    title=title,
                    instructions=instructions,
                    schedule=schedule,
                    category=category,
                    completion_policy=completion_policy,
                    schedule_notifications=bool(schedule_notifications),
                    notification_thread=notification_thread,
                    tags=tags or (),
                    effective_from=effective_from,
                    user_info=user_info,
                )
                await self._async_store_call(self._store.async_save_task(task))
                const.LOGGER.info("Scheduler: Created task %s", task_id)
                self.emit(const.SIGNAL_TASK_UPDATED, task_id=task_id, version=0)
                return task, True

            return await self._async_update_locked(
                chain,
                chain.latest,
                effective_from=effective_from,
                title=title,
                instructions=instructions,
                schedule=schedule,
                category=category,
                completion_policy=completion_policy,
                schedule_notifications=schedule_notifications,
                notification_thread=notification_thread,
                tags=tags,
                user_info=user_info,
            )

    async def async_update_task(
        self,
        task: Task,
        *,
        effective_from: datetime | None = None,
        **changes: Any,
    ) -> tuple[Task, bool]:
        """Create a new version of ``task`` with the given field changes.

        Raises:
            TaskNotFoundError: If the task chain does not exist
            NextVersionAlreadyPresentError: If ``task`` is not the latest version
            ShadowedOutcomeError: If the update would shadow recorded outcomes
            StorageError: If persisting fails
        """
        async with self._get_lock(task.id):
            chain = await self._async_fetch_chain(task.id)
            if chain is None:
                raise TaskNotFoundError(task.id)
            return await self._async_update_locked(
                chain, task, effective_from=effective_from, **changes
            )

    async def _async_update_locked(
        self,
        chain: TaskChain,
        task: Task,
        *,
        effective_from: datetime | None,
        **changes: Any,
    ) -> tuple[Task, bool]:
        """Internal update logic executed under the chain lock."""
        outcomes = await self._async_store_call(
            self._store.async_fetch_outcomes(chain.id)
        )
        updated, did_change = TaskEngine.create_updated_version(
            chain, task, outcomes, effective_from=effective_from, **changes
        )
        if not did_change:
            return updated, False

        await self._async_store_call(self._store.async_save_task(updated))
        const.LOGGER.info(
            "Scheduler: Task %s updated to v%s effective from %s",
            updated.id,
            updated.version,
            updated.effective_from.isoformat(),
        )
        self.emit(
            const.SIGNAL_TASK_UPDATED, task_id=updated.id, version=updated.version
        )
        return updated, True

    async def async_delete_tasks(self, *task_ids: str) -> None:
        """Delete task chains and, by cascade, their outcomes.

        Raises:
            TaskNotFoundError: If a task id is unknown
            StorageError: If persisting fails
        """
        for task_id in task_ids:
            async with self._get_lock(task_id):
                await self._async_store_call(self._store.async_delete_task(task_id))
            const.LOGGER.info("Scheduler: Deleted task %s", task_id)
            self.emit(const.SIGNAL_TASK_DELETED, task_id=task_id)

    # =========================================================================
    # §3 COMPLETION
    # =========================================================================

    async def async_complete_event(
        self,
        event: Event,
        *,
        initializer: OutcomeInitializer | None = None,
        ignore_completion_policy: bool = False,
        now: datetime | None = None,
    ) -> Outcome:
        """Record the outcome completing an event.

        The event itself is not modified; re-query to observe the completion.

        Raises:
            AlreadyCompletedError: If the occurrence already has an outcome
            CompletionPolicyError: If the task's policy forbids completing now
            StorageError: If persisting fails
        """
        async with self._get_lock(event.task.id):
            outcomes = await self._async_store_call(
                self._store.async_fetch_outcomes(event.task.id)
            )
            outcome = OutcomeEngine.complete(
                event,
                outcomes,
                now=now,
                initializer=initializer,
                ignore_completion_policy=ignore_completion_policy,
            )
            await self._async_store_call(self._store.async_save_outcome(outcome))

        const.LOGGER.info(
            "Scheduler: Task %s occurrence %s completed",
            event.task.id,
            event.occurrence.start.isoformat(),
        )
        self.emit(
            const.SIGNAL_OUTCOME_ADDED,
            task_id=event.task.id,
            outcome_id=str(outcome.id),
            occurrence_start=outcome.occurrence_start.isoformat(),
        )
        return outcome

    # =========================================================================
    # §4 QUERIES
    # =========================================================================

    async def _async_snapshot(self) -> StoreSnapshot:
        return await self._async_store_call(self._store.async_snapshot())

    async def async_query_events(
        self,
        start: datetime,
        end: datetime,
        predicate: TaskPredicate | None = None,
        *,
        sort: bool = True,
    ) -> QueryResult:
        """Return the events of [start, end) over a consistent snapshot.

        Args:
            predicate: Filter applied to each chain's latest version

        Raises:
            CalendarError, DecodingError: Only with strict_queries enabled
        """
        snapshot = await self._async_snapshot()
        chains = [
            chain
            for chain in snapshot.chains.values()
            if predicate is None or predicate(chain.latest)
        ]
        return QueryEngine.assemble_events(
            start,
            end,
            chains,
            snapshot.all_outcomes(),
            strict=self._strict,
            errors=snapshot.errors,
            sort=sort,
        )

    async def async_query_tasks(
        self,
        start: datetime,
        end: datetime,
        predicate: TaskPredicate | None = None,
    ) -> list[Task]:
        """Return the task versions effective somewhere in [start, end)."""
        snapshot = await self._async_snapshot()
        chains = [
            chain
            for chain in snapshot.chains.values()
            if predicate is None or predicate(chain.latest)
        ]
        return QueryEngine.tasks_in_range(start, end, chains)

    # =========================================================================
    # §5 REMINDERS
    # =========================================================================

    async def async_occurrences_needing_reminder(
        self, start: datetime, end: datetime
    ) -> list[Occurrence]:
        """Uncompleted occurrences of notification-enabled tasks, chronologically."""
        result = await self.async_query_events(start, end)
        return NotificationEngine.occurrences_needing_reminder(result.events)

    async def async_plan_reminders(self, now: datetime | None = None) -> ReminderPlan:
        """Plan reminders for [now, now + scheduling interval)."""
        now = now or dt_now_local()
        end = now + timedelta(days=self._scheduling_interval_days)
        result = await self.async_query_events(now, end)
        return NotificationEngine.plan_reminders(
            result.events, now, self._notification_limit, self._all_day_time
        )
