"""Shared fixtures for task scheduler tests.

Builders live in helpers.py; this module only holds fixtures.
"""

from __future__ import annotations

from collections.abc import Iterator
from zoneinfo import ZoneInfo

from helpers import UTC, daily_schedule
import pytest

from task_scheduler.engines.recurrence_engine import RecurrenceEnd
from task_scheduler.engines.schedule_engine import Duration, Schedule
from task_scheduler.store import SchedulerStore
from task_scheduler.utils import dt_utils

# ============================================================================
# Timezone Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def reset_default_timezone() -> Iterator[None]:
    """Every test starts (and ends) with UTC as the local timezone."""
    dt_utils.set_default_timezone(UTC)
    yield
    dt_utils.set_default_timezone(UTC)


@pytest.fixture
def berlin_tz() -> ZoneInfo:
    """Switch the local timezone to Europe/Berlin (DST transitions)."""
    tz = ZoneInfo("Europe/Berlin")
    dt_utils.set_default_timezone(tz)
    return tz


# ============================================================================
# Domain Fixtures
# ============================================================================


@pytest.fixture
def three_day_schedule() -> Schedule:
    """Daily 12:35 for three occurrences from 2024-08-24, 30 minutes each."""
    return daily_schedule(
        end=RecurrenceEnd.after_occurrences(3),
        duration=Duration.minutes(30),
    )


@pytest.fixture
def memory_store() -> SchedulerStore:
    """In-memory store (no file)."""
    return SchedulerStore()
