"""Engine modules for the task scheduler.

Contains the pure computation engines:
- recurrence_engine: Recurrence rules and lazy date expansion
- schedule_engine: Schedules, duration policies and occurrences
- task_engine: Task versions, version chains and completion policies
- outcome_engine: Outcomes, events and completion
- query_engine: Version stitching and outcome reconciliation
- notification_engine: Reminder planning
"""

# Use relative imports within package to avoid mypy module resolution issues
from .notification_engine import (
    NotificationEngine,
    NotificationTime,
    ReminderPlan,
    ReminderRequest,
)
from .outcome_engine import Event, EventId, Outcome, OutcomeEngine
from .query_engine import QueryEngine, QueryResult
from .recurrence_engine import RecurrenceEnd, RecurrenceRule, WeekdayRule
from .schedule_engine import Duration, Occurrence, Schedule
from .task_engine import (
    AllowedCompletionPolicy,
    Category,
    NotificationThread,
    Task,
    TaskChain,
    TaskEngine,
)

__all__ = [
    "AllowedCompletionPolicy",
    "Category",
    "Duration",
    "Event",
    "EventId",
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
    "Task",
    "TaskChain",
    "TaskEngine",
    "WeekdayRule",
]
