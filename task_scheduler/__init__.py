# File: __init__.py
"""Task scheduler: recurring task occurrences with versioned tasks and outcomes.

Public entry points:
- Schedule / RecurrenceRule / Duration: when a task occurs
- Task / TaskChain: immutable task versions of one task identity
- Outcome / Event: completion records and the per-query read model
- Scheduler: stateful manager (locking, persistence, listeners)
- SchedulerStore: JSON-file backed storage
"""

from .engines import (
    AllowedCompletionPolicy,
    Category,
    Duration,
    Event,
    EventId,
    NotificationEngine,
    NotificationThread,
    NotificationTime,
    Occurrence,
    Outcome,
    OutcomeEngine,
    QueryEngine,
    QueryResult,
    RecurrenceEnd,
    RecurrenceRule,
    ReminderPlan,
    ReminderRequest,
    Schedule,
    Task,
    TaskChain,
    TaskEngine,
    WeekdayRule,
)
from .exceptions import (
    AlreadyCompletedError,
    CalendarError,
    CompletionPolicyError,
    ConfigurationError,
    DecodingError,
    NextVersionAlreadyPresentError,
    SchedulerError,
    ShadowedOutcomeError,
    StorageError,
    TaskNotFoundError,
)
from .managers import Scheduler
from .store import SchedulerStorage, SchedulerStore, StoreSnapshot
from .user_info import (
    JSON_CODING,
    PROPERTY_LIST_CODING,
    FrozenUserInfoStorage,
    UserInfoKey,
    UserInfoStorage,
    UserStorageCoding,
)

__all__ = [
    "JSON_CODING",
    "PROPERTY_LIST_CODING",
    "AllowedCompletionPolicy",
    "AlreadyCompletedError",
    "CalendarError",
    "Category",
    "CompletionPolicyError",
    "ConfigurationError",
    "DecodingError",
    "Duration",
    "Event",
    "EventId",
    "FrozenUserInfoStorage",
    "NextVersionAlreadyPresentError",
    "NotificationEngine",
    "NotificationThread",
    "NotificationTime",
    "Occurrence",
    "Outcome",
    "OutcomeEngine",
    "QueryEngine",
    "QueryResult",
    "RecurrenceEnd",
    "RecurrenceRule",
    "ReminderPlan",
    "ReminderRequest",
    "Schedule",
    "Scheduler",
    "SchedulerError",
    "SchedulerStorage",
    "SchedulerStore",
    "ShadowedOutcomeError",
    "StorageError",
    "StoreSnapshot",
    "Task",
    "TaskChain",
    "TaskEngine",
    "TaskNotFoundError",
    "UserInfoKey",
    "UserInfoStorage",
    "UserStorageCoding",
    "WeekdayRule",
]
