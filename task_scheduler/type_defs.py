"""Type definitions for task scheduler data structures.

TypedDicts describe the persisted JSON records (fixed keys known at design
time) and the scheduler options. Runtime objects (Task, Schedule, Outcome)
are dataclasses in the engines; data_builders.py converts between the two.

IMPORTANT: This file must NOT import from the engines or the manager at
runtime to avoid circular dependencies. Only const-free typing machinery here.

NOTE: TypedDict is STATIC ANALYSIS ONLY. Decoders in data_builders.py still
validate every field and raise DecodingError on malformed records.
"""

from typing import TYPE_CHECKING, Any, NotRequired, TypedDict

if TYPE_CHECKING:
    from .engines.notification_engine import NotificationTime

# =============================================================================
# Type Aliases (for readability)
# =============================================================================

TaskId = str  # Stable chain id, shared by every version of a task
OutcomeId = str  # UUID string
ISODatetime = str  # ISO 8601 datetime string "2024-08-24T09:23:00+00:00"
UserInfoData = dict[str, str]  # identifier -> base64 encoded value bytes


# =============================================================================
# Recurrence and Schedule Records
# =============================================================================


class WeekdayRuleData(TypedDict):
    """Weekday constraint (0=Mon..6=Sun) with an optional month/year ordinal."""

    weekday: int
    nth: int | None


class RecurrenceRuleData(TypedDict):
    """Persisted RecurrenceRule."""

    frequency: str  # FREQUENCY_* constant
    interval: int
    end: str  # RECURRENCE_END_* constant
    end_count: NotRequired[int]
    end_date: NotRequired[ISODatetime]
    by_weekday: NotRequired[list[WeekdayRuleData]]
    by_month_day: NotRequired[list[int]]
    by_month: NotRequired[list[int]]
    by_hour: NotRequired[list[int]]
    by_minute: NotRequired[list[int]]
    by_set_position: NotRequired[list[int]]


class ScheduleData(TypedDict):
    """Persisted Schedule."""

    start: ISODatetime
    duration: str  # DURATION_* constant
    duration_seconds: NotRequired[float]
    recurrence: RecurrenceRuleData | None


# =============================================================================
# Task and Outcome Records
# =============================================================================


class TaskData(TypedDict):
    """Persisted task version."""

    id: TaskId
    version: int
    title: str
    instructions: str
    category: str | None
    schedule: ScheduleData
    completion_policy: str  # COMPLETION_POLICY_* constant
    schedule_notifications: bool
    notification_thread: str  # NOTIFICATION_THREAD_* constant
    notification_thread_id: NotRequired[str]
    tags: list[str]
    effective_from: ISODatetime
    user_info: UserInfoData


class OutcomeData(TypedDict):
    """Persisted outcome."""

    id: OutcomeId
    task_id: TaskId
    task_version: int
    completion_date: ISODatetime
    occurrence_start: ISODatetime
    user_info: UserInfoData


class StorageMeta(TypedDict, total=False):
    """Storage metadata block."""

    schema_version: int
    last_saved: ISODatetime


class StorageData(TypedDict):
    """Root document written by SchedulerStore."""

    meta: StorageMeta
    tasks: dict[TaskId, list[TaskData]]
    outcomes: dict[TaskId, list[OutcomeData]]


# =============================================================================
# Configuration
# =============================================================================


class SchedulerOptions(TypedDict, total=False):
    """In-process configuration for the Scheduler manager.

    All fields are optional (total=False); missing keys use const.DEFAULT_*.
    """

    strict_queries: bool
    storage_timeout: float
    notification_limit: int
    scheduling_interval_days: int
    all_day_notification_time: "NotificationTime"


# Listener payloads are plain mappings (task id, version, outcome id, ...)
ListenerPayload = dict[str, Any]
