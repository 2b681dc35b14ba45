"""Builders shared by the task scheduler tests."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

from task_scheduler.engines.outcome_engine import Event, Outcome
from task_scheduler.engines.schedule_engine import Schedule
from task_scheduler.engines.task_engine import Task, TaskEngine

UTC = ZoneInfo("UTC")


def make_dt(
    year: int,
    month: int,
    day: int,
    hour: int = 0,
    minute: int = 0,
    second: int = 0,
    tz: ZoneInfo = UTC,
) -> datetime:
    """Create an aware datetime for testing."""
    return datetime(year, month, day, hour, minute, second, tzinfo=tz)


def daily_schedule(
    hour: int = 12,
    minute: int = 35,
    starting_at: datetime | None = None,
    **kwargs: Any,
) -> Schedule:
    """Daily schedule starting 2024-08-24 unless told otherwise."""
    return Schedule.daily(
        hour,
        minute,
        starting_at=starting_at or make_dt(2024, 8, 24, 9, 23),
        **kwargs,
    )


def make_task(
    task_id: str = "task-1",
    schedule: Schedule | None = None,
    effective_from: datetime | None = None,
    **kwargs: Any,
) -> Task:
    """Create version 0 of a task with sensible defaults."""
    return TaskEngine.create_task(
        task_id,
        title=kwargs.pop("title", "Take blood pressure"),
        instructions=kwargs.pop("instructions", "Sit down and relax first"),
        schedule=schedule or daily_schedule(),
        effective_from=effective_from or make_dt(2024, 8, 24),
        **kwargs,
    )


def outcome_for(event: Event, completed_at: datetime) -> Outcome:
    """Build an outcome for an event without any policy checks."""
    return Outcome(
        task=event.task,
        occurrence_start=event.occurrence.start,
        completion_date=completed_at,
    )
