"""Unit tests for data_builders.py record encoding and decoding.

Decoding never substitutes defaults: every malformed record raises
DecodingError carrying the task id when it is known.
"""

from __future__ import annotations

import copy
from typing import Any

from helpers import daily_schedule, make_dt, make_task
import pytest

from task_scheduler import const
from task_scheduler.data_builders import (
    build_outcome_data,
    build_recurrence_data,
    build_schedule_data,
    build_task_data,
    parse_chain,
    parse_outcome,
    parse_recurrence,
    parse_schedule,
    parse_task,
)
from task_scheduler.engines.outcome_engine import Outcome
from task_scheduler.engines.recurrence_engine import (
    RecurrenceEnd,
    RecurrenceRule,
    WeekdayRule,
)
from task_scheduler.engines.schedule_engine import Duration, Schedule
from task_scheduler.engines.task_engine import (
    AllowedCompletionPolicy,
    Category,
    NotificationThread,
    TaskChain,
    TaskEngine,
)
from task_scheduler.exceptions import DecodingError
from task_scheduler.user_info import UserInfoKey, UserInfoStorage

DEVICE = UserInfoKey("device", str)


@pytest.fixture
def task_data() -> dict[str, Any]:
    """Encoded task with every optional field populated."""
    bag = UserInfoStorage()
    bag.set(DEVICE, "cuff-2")
    task = make_task(
        schedule=daily_schedule(
            end=RecurrenceEnd.after_date(make_dt(2024, 12, 31)),
            duration=Duration.minutes(30),
        ),
        category=Category.measurement(),
        completion_policy=AllowedCompletionPolicy.after_start(),
        schedule_notifications=True,
        notification_thread=NotificationThread.custom("vitals"),
        tags=["vitals", "morning"],
        user_info=bag,
    )
    return build_task_data(task)


# =============================================================================
# Encoding
# =============================================================================


class TestEncoding:
    """Shape of the persisted records."""

    def test_recurrence_omits_empty_constraints(self) -> None:
        """Only set constraints are written."""
        data = build_recurrence_data(
            RecurrenceRule.weekly(
                end=RecurrenceEnd.after_occurrences(3), weekdays=[6]
            )
        )

        assert data == {
            const.DATA_RECURRENCE_FREQUENCY: const.FREQUENCY_WEEKLY,
            const.DATA_RECURRENCE_INTERVAL: 1,
            const.DATA_RECURRENCE_END: const.RECURRENCE_END_AFTER_OCCURRENCES,
            const.DATA_RECURRENCE_END_COUNT: 3,
            const.DATA_RECURRENCE_BY_WEEKDAY: [{"weekday": 6, "nth": None}],
        }

    def test_schedule_record(self) -> None:
        """Fixed durations store their length in seconds; start is UTC ISO."""
        data = build_schedule_data(
            Schedule.once(make_dt(2024, 8, 24, 9, 23, 25), Duration.hours(2))
        )

        assert data[const.DATA_SCHEDULE_START] == "2024-08-24T09:23:25+00:00"
        assert data[const.DATA_SCHEDULE_DURATION_SECONDS] == 7200
        assert data[const.DATA_SCHEDULE_RECURRENCE] is None

    def test_task_record(self, task_data: dict[str, Any]) -> None:
        """Property bags are base64 encoded."""
        assert task_data[const.DATA_TASK_NOTIFICATION_THREAD_ID] == "vitals"
        assert task_data[const.DATA_TASK_TAGS] == ["vitals", "morning"]
        assert set(task_data[const.DATA_TASK_USER_INFO]) == {"device"}


# =============================================================================
# Decoding
# =============================================================================


class TestDecoding:
    """Parsing records back into runtime objects."""

    def test_task_round_trip(self, task_data: dict[str, Any]) -> None:
        """A full task survives encode and decode."""
        task = parse_task(task_data)

        assert build_task_data(task) == task_data
        assert task.user_info.get(DEVICE) == "cuff-2"
        assert task.schedule.recurrence is not None
        assert task.schedule.recurrence.end.date == make_dt(2024, 12, 31)

    def test_custom_recurrence(self) -> None:
        """Ordinal weekdays and set positions are decoded."""
        rule = RecurrenceRule(
            const.FREQUENCY_MONTHLY,
            by_weekday=(WeekdayRule(4, -1),),
            by_set_position=(1,),
        )

        assert parse_recurrence(build_recurrence_data(rule)) == rule

    def test_chain_and_outcome(self) -> None:
        """Outcomes reattach to the version that recorded them."""
        v0 = make_task()
        v1, _ = TaskEngine.create_updated_version(
            TaskChain(v0.id, [v0]), v0, [], effective_from=make_dt(2024, 9, 1), title="B"
        )
        chain = parse_chain(v0.id, [build_task_data(v1), build_task_data(v0)])
        outcome = Outcome(v0, make_dt(2024, 8, 25, 12, 35), make_dt(2024, 8, 25, 13))

        parsed = parse_outcome(build_outcome_data(outcome), chain)

        assert parsed.task.version == 0
        assert parsed.id == outcome.id
        assert parsed.key == outcome.key


# =============================================================================
# Decoding Failures
# =============================================================================


class TestDecodingFailures:
    """Malformed records raise DecodingError."""

    @pytest.mark.parametrize(
        ("path", "value"),
        [
            ((const.DATA_TASK_TITLE,), None),
            ((const.DATA_TASK_SCHEDULE, const.DATA_SCHEDULE_START), "yesterday"),
            ((const.DATA_TASK_SCHEDULE, const.DATA_SCHEDULE_DURATION), "forever"),
            (
                (
                    const.DATA_TASK_SCHEDULE,
                    const.DATA_SCHEDULE_RECURRENCE,
                    const.DATA_RECURRENCE_INTERVAL,
                ),
                0,
            ),
            (
                (
                    const.DATA_TASK_SCHEDULE,
                    const.DATA_SCHEDULE_RECURRENCE,
                    const.DATA_RECURRENCE_FREQUENCY,
                ),
                "fortnightly",
            ),
            ((const.DATA_TASK_COMPLETION_POLICY,), "whenever"),
            ((const.DATA_TASK_TAGS,), "vitals"),
            ((const.DATA_TASK_USER_INFO, "device"), "***not base64***"),
        ],
    )
    def test_invalid_field(
        self, task_data: dict[str, Any], path: tuple[str, ...], value: Any
    ) -> None:
        """Each invalid value is reported with the task id."""
        data = copy.deepcopy(task_data)
        target = data
        for key in path[:-1]:
            target = target[key]
        if value is None:
            del target[path[-1]]
        else:
            target[path[-1]] = value

        with pytest.raises(DecodingError) as exc_info:
            parse_task(data)

        assert exc_info.value.task_id == "task-1"

    def test_missing_fixed_duration_length(self) -> None:
        """A fixed duration without its length is rejected."""
        data = build_schedule_data(daily_schedule(duration=Duration.minutes(5)))
        del data[const.DATA_SCHEDULE_DURATION_SECONDS]

        with pytest.raises(DecodingError):
            parse_schedule(data)

    def test_chain_with_gap(self, task_data: dict[str, Any]) -> None:
        """Chains must be numbered without gaps."""
        data = copy.deepcopy(task_data)
        data[const.DATA_TASK_VERSION] = 1

        with pytest.raises(DecodingError) as exc_info:
            parse_chain("task-1", [data])

        assert exc_info.value.task_id == "task-1"

    def test_outcome_with_unknown_version(self) -> None:
        """Outcomes must reference an existing version."""
        task = make_task()
        chain = TaskChain(task.id, [task])
        data = build_outcome_data(
            Outcome(task, make_dt(2024, 8, 24, 12, 35), make_dt(2024, 8, 24, 13))
        )
        data[const.DATA_OUTCOME_TASK_VERSION] = 3

        with pytest.raises(DecodingError):
            parse_outcome(data, chain)

    def test_outcome_with_bad_id(self) -> None:
        """Outcome ids must be UUIDs."""
        task = make_task()
        data = build_outcome_data(
            Outcome(task, make_dt(2024, 8, 24, 12, 35), make_dt(2024, 8, 24, 13))
        )
        data[const.DATA_OUTCOME_ID] = "not-a-uuid"

        with pytest.raises(DecodingError):
            parse_outcome(data, TaskChain(task.id, [task]))
