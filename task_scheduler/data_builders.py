"""Record encode/decode helpers.

This module is the SINGLE SOURCE OF TRUTH for the persisted shape of:
- Recurrence rules and schedules
- Task versions and task chains
- Outcomes
- Property bags (identifier -> base64 of the encoded value bytes)

### Build Functions
Each record type has a `build_<record>_data()` function that turns a runtime
object into a JSON-ready TypedDict (see type_defs.py).

### Parse Functions
Each record type has a `parse_<record>()` function that rebuilds the runtime
object. Any missing key, wrong type or invalid value raises DecodingError;
nothing is ever replaced by a default (an undecodable schedule never becomes
an empty one).

Consumers:
- store.py (load/save of the storage document)
"""

from __future__ import annotations

import base64
import binascii
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from typing import Any, TypeVar
import uuid

from . import const
from .engines.outcome_engine import Outcome
from .engines.recurrence_engine import RecurrenceEnd, RecurrenceRule, WeekdayRule
from .engines.schedule_engine import Duration, Schedule
from .engines.task_engine import (
    AllowedCompletionPolicy,
    Category,
    NotificationThread,
    Task,
    TaskChain,
)
from .exceptions import CalendarError, ConfigurationError, DecodingError
from .type_defs import (
    OutcomeData,
    RecurrenceRuleData,
    ScheduleData,
    TaskData,
    UserInfoData,
    WeekdayRuleData,
)
from .user_info import UserInfoStorage
from .utils.dt_utils import dt_parse, dt_to_iso

_T = TypeVar("_T")

# Errors that indicate a malformed record rather than a programming error
_RECORD_ERRORS = (
    KeyError,
    TypeError,
    ValueError,
    AttributeError,
    binascii.Error,
    ConfigurationError,
    CalendarError,
)


def _decode(
    what: str, parser: Callable[[], _T], task_id: str | None = None
) -> _T:
    """Run a parser and convert record errors into DecodingError."""
    try:
        return parser()
    except DecodingError:
        raise
    except _RECORD_ERRORS as exc:
        const.LOGGER.warning(
            "DataBuilders: Failed to decode %s%s: %r",
            what,
            f" of task {task_id}" if task_id else "",
            exc,
        )
        raise DecodingError(f"Invalid {what}: {exc!r}", task_id=task_id) from exc


def _parse_datetime(value: Any) -> datetime:
    if not isinstance(value, str):
        raise TypeError(f"expected ISO datetime string, got {type(value).__name__}")
    parsed = dt_parse(value)
    if parsed is None:
        raise ValueError(f"invalid ISO datetime '{value}'")
    return parsed


def _int_tuple(values: Iterable[Any]) -> tuple[int, ...]:
    result = tuple(values)
    if not all(
        isinstance(value, int) and not isinstance(value, bool) for value in result
    ):
        raise TypeError(f"expected integers, got {result!r}")
    return result


# ==============================================================================
# Recurrence Rules and Schedules
# ==============================================================================


def build_recurrence_data(rule: RecurrenceRule) -> RecurrenceRuleData:
    """Encode a recurrence rule; empty constraints are omitted."""
    data: RecurrenceRuleData = {
        const.DATA_RECURRENCE_FREQUENCY: rule.frequency,
        const.DATA_RECURRENCE_INTERVAL: rule.interval,
        const.DATA_RECURRENCE_END: rule.end.kind,
    }
    if rule.end.kind == const.RECURRENCE_END_AFTER_OCCURRENCES and rule.end.count:
        data[const.DATA_RECURRENCE_END_COUNT] = rule.end.count
    if rule.end.kind == const.RECURRENCE_END_AFTER_DATE and rule.end.date:
        data[const.DATA_RECURRENCE_END_DATE] = dt_to_iso(rule.end.date)
    if rule.by_weekday:
        data[const.DATA_RECURRENCE_BY_WEEKDAY] = [
            WeekdayRuleData(weekday=item.weekday, nth=item.nth)
            for item in rule.by_weekday
        ]
    if rule.by_month_day:
        data[const.DATA_RECURRENCE_BY_MONTH_DAY] = list(rule.by_month_day)
    if rule.by_month:
        data[const.DATA_RECURRENCE_BY_MONTH] = list(rule.by_month)
    if rule.by_hour:
        data[const.DATA_RECURRENCE_BY_HOUR] = list(rule.by_hour)
    if rule.by_minute:
        data[const.DATA_RECURRENCE_BY_MINUTE] = list(rule.by_minute)
    if rule.by_set_position:
        data[const.DATA_RECURRENCE_BY_SET_POSITION] = list(rule.by_set_position)
    return data


def _parse_recurrence_end(data: RecurrenceRuleData) -> RecurrenceEnd:
    kind = data[const.DATA_RECURRENCE_END]
    if kind == const.RECURRENCE_END_AFTER_OCCURRENCES:
        return RecurrenceEnd.after_occurrences(data[const.DATA_RECURRENCE_END_COUNT])
    if kind == const.RECURRENCE_END_AFTER_DATE:
        end_date = _parse_datetime(data[const.DATA_RECURRENCE_END_DATE])
        return RecurrenceEnd.after_date(end_date)
    return RecurrenceEnd(kind)


def parse_recurrence(
    data: RecurrenceRuleData, task_id: str | None = None
) -> RecurrenceRule:
    """Decode a recurrence rule.

    Raises:
        DecodingError: If the record is malformed or violates rule constraints
    """

    def _parse() -> RecurrenceRule:
        return RecurrenceRule(
            frequency=data[const.DATA_RECURRENCE_FREQUENCY],
            interval=data[const.DATA_RECURRENCE_INTERVAL],
            end=_parse_recurrence_end(data),
            by_weekday=tuple(
                WeekdayRule(item["weekday"], item.get("nth"))
                for item in data.get(const.DATA_RECURRENCE_BY_WEEKDAY, [])
            ),
            by_month_day=_int_tuple(data.get(const.DATA_RECURRENCE_BY_MONTH_DAY, [])),
            by_month=_int_tuple(data.get(const.DATA_RECURRENCE_BY_MONTH, [])),
            by_hour=_int_tuple(data.get(const.DATA_RECURRENCE_BY_HOUR, [])),
            by_minute=_int_tuple(data.get(const.DATA_RECURRENCE_BY_MINUTE, [])),
            by_set_position=_int_tuple(
                data.get(const.DATA_RECURRENCE_BY_SET_POSITION, [])
            ),
        )

    return _decode("recurrence rule", _parse, task_id)


def build_schedule_data(schedule: Schedule) -> ScheduleData:
    """Encode a schedule."""
    data: ScheduleData = {
        const.DATA_SCHEDULE_START: dt_to_iso(schedule.start),
        const.DATA_SCHEDULE_DURATION: schedule.duration.kind,
        const.DATA_SCHEDULE_RECURRENCE: (
            build_recurrence_data(schedule.recurrence) if schedule.recurrence else None
        ),
    }
    if schedule.duration.length is not None:
        length = schedule.duration.length.total_seconds()
        data[const.DATA_SCHEDULE_DURATION_SECONDS] = length
    return data


def parse_schedule(data: ScheduleData, task_id: str | None = None) -> Schedule:
    """Decode a schedule.

    Raises:
        DecodingError: If the schedule or its recurrence rule is malformed
    """

    def _parse() -> Schedule:
        kind = data[const.DATA_SCHEDULE_DURATION]
        if kind == const.DURATION_FIXED:
            seconds = data[const.DATA_SCHEDULE_DURATION_SECONDS]
            duration = Duration.fixed(timedelta(seconds=seconds))
        else:
            duration = Duration(kind)
        recurrence_data = data[const.DATA_SCHEDULE_RECURRENCE]
        recurrence = (
            parse_recurrence(recurrence_data, task_id)
            if recurrence_data is not None
            else None
        )
        start = _parse_datetime(data[const.DATA_SCHEDULE_START])
        return Schedule(start, duration, recurrence)

    return _decode("schedule", _parse, task_id)


# ==============================================================================
# Property Bags
# ==============================================================================


def build_user_info_data(storage: UserInfoStorage) -> UserInfoData:
    """Encode a property bag as identifier -> base64 string."""
    return {
        identifier: base64.b64encode(raw).decode("ascii")
        for identifier, raw in sorted(storage.entries().items())
    }


def parse_user_info(data: UserInfoData, task_id: str | None = None) -> UserInfoStorage:
    """Decode a property bag. Values stay encoded until a key reads them."""

    def _parse() -> UserInfoStorage:
        if not isinstance(data, dict):
            raise TypeError(f"expected mapping, got {type(data).__name__}")
        return UserInfoStorage(
            {
                identifier: base64.b64decode(value.encode("ascii"), validate=True)
                for identifier, value in data.items()
            }
        )

    return _decode("property bag", _parse, task_id)


# ==============================================================================
# Tasks
# ==============================================================================


def build_task_data(task: Task) -> TaskData:
    """Encode one task version."""
    data: TaskData = {
        const.DATA_TASK_ID: task.id,
        const.DATA_TASK_VERSION: task.version,
        const.DATA_TASK_TITLE: task.title,
        const.DATA_TASK_INSTRUCTIONS: task.instructions,
        const.DATA_TASK_CATEGORY: task.category.name if task.category else None,
        const.DATA_TASK_SCHEDULE: build_schedule_data(task.schedule),
        const.DATA_TASK_COMPLETION_POLICY: task.completion_policy.kind,
        const.DATA_TASK_SCHEDULE_NOTIFICATIONS: task.schedule_notifications,
        const.DATA_TASK_NOTIFICATION_THREAD: task.notification_thread.kind,
        const.DATA_TASK_TAGS: list(task.tags),
        const.DATA_TASK_EFFECTIVE_FROM: dt_to_iso(task.effective_from),
        const.DATA_TASK_USER_INFO: build_user_info_data(task.user_info),
    }
    if task.notification_thread.identifier:
        data[const.DATA_TASK_NOTIFICATION_THREAD_ID] = (
            task.notification_thread.identifier
        )
    return data


def parse_task(data: TaskData) -> Task:
    """Decode one task version.

    Raises:
        DecodingError: If any field is missing or invalid
    """
    task_id = data.get(const.DATA_TASK_ID) if isinstance(data, dict) else None

    def _parse() -> Task:
        category = data[const.DATA_TASK_CATEGORY]
        tags = data[const.DATA_TASK_TAGS]
        if not isinstance(tags, list):
            raise TypeError("tags must be a list")
        return Task(
            id=data[const.DATA_TASK_ID],
            version=data[const.DATA_TASK_VERSION],
            title=data[const.DATA_TASK_TITLE],
            instructions=data[const.DATA_TASK_INSTRUCTIONS],
            category=Category(category) if category is not None else None,
            schedule=parse_schedule(data[const.DATA_TASK_SCHEDULE], task_id),
            completion_policy=AllowedCompletionPolicy(
                data[const.DATA_TASK_COMPLETION_POLICY]
            ),
            schedule_notifications=bool(data[const.DATA_TASK_SCHEDULE_NOTIFICATIONS]),
            notification_thread=NotificationThread(
                data[const.DATA_TASK_NOTIFICATION_THREAD],
                data.get(const.DATA_TASK_NOTIFICATION_THREAD_ID),
            ),
            tags=tuple(tags),
            effective_from=_parse_datetime(data[const.DATA_TASK_EFFECTIVE_FROM]),
            user_info=parse_user_info(data[const.DATA_TASK_USER_INFO], task_id),
        )

    return _decode("task", _parse, task_id)


def parse_chain(task_id: str, records: list[TaskData]) -> TaskChain:
    """Decode every version of a task chain.

    Raises:
        DecodingError: If any version is malformed or the chain is inconsistent
    """
    tasks = [parse_task(record) for record in records]
    return _decode("task chain", lambda: TaskChain(task_id, tasks), task_id)


# ==============================================================================
# Outcomes
# ==============================================================================


def build_outcome_data(outcome: Outcome) -> OutcomeData:
    """Encode an outcome; the owning version is stored as (task id, version)."""
    return {
        const.DATA_OUTCOME_ID: str(outcome.id),
        const.DATA_OUTCOME_TASK_ID: outcome.task.id,
        const.DATA_OUTCOME_TASK_VERSION: outcome.task.version,
        const.DATA_OUTCOME_COMPLETION_DATE: dt_to_iso(outcome.completion_date),
        const.DATA_OUTCOME_OCCURRENCE_START: dt_to_iso(outcome.occurrence_start),
        const.DATA_OUTCOME_USER_INFO: build_user_info_data(outcome.user_info),
    }


def parse_outcome(data: OutcomeData, chain: TaskChain) -> Outcome:
    """Decode an outcome and reattach it to its task version in ``chain``.

    Raises:
        DecodingError: If the record is malformed or references a missing version
    """

    def _parse() -> Outcome:
        owner = data[const.DATA_OUTCOME_TASK_ID]
        if owner != chain.id:
            raise ValueError(f"outcome belongs to task {owner}")
        version = data[const.DATA_OUTCOME_TASK_VERSION]
        if not isinstance(version, int) or not 0 <= version < len(chain):
            raise ValueError(f"unknown task version {version}")
        return Outcome(
            task=chain.versions[version],
            occurrence_start=_parse_datetime(
                data[const.DATA_OUTCOME_OCCURRENCE_START]
            ),
            completion_date=_parse_datetime(data[const.DATA_OUTCOME_COMPLETION_DATE]),
            id=uuid.UUID(data[const.DATA_OUTCOME_ID]),
            user_info=parse_user_info(data[const.DATA_OUTCOME_USER_INFO], chain.id),
        )

    return _decode("outcome", _parse, chain.id)
