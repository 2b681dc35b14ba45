"""Tests for SchedulerStore - persistence, compare-and-set and snapshots.

Tests verify:
- Version append is compare-and-set
- Outcome uniqueness and cascading deletes
- Snapshots are isolated from later writes
- JSON document load/save, including undecodable chains kept verbatim
- I/O failures surface as StorageError and leave state untouched
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from helpers import make_dt, make_task
import pytest

from task_scheduler import const
from task_scheduler.data_builders import build_task_data
from task_scheduler.engines.outcome_engine import Outcome
from task_scheduler.engines.task_engine import Task, TaskChain, TaskEngine
from task_scheduler.exceptions import (
    AlreadyCompletedError,
    DecodingError,
    NextVersionAlreadyPresentError,
    StorageError,
    TaskNotFoundError,
)
from task_scheduler.store import SchedulerStore


def next_version(task: Task, title: str = "Updated") -> Task:
    updated, _ = TaskEngine.create_updated_version(
        TaskChain(task.id, [task]), task, [], effective_from=make_dt(2024, 9, 1), title=title
    )
    return updated


def make_outcome(task: Task, day: int = 25) -> Outcome:
    return Outcome(task, make_dt(2024, 8, day, 12, 35), make_dt(2024, 8, day, 13))


def write_document(path: Path, data: dict[str, Any], version: int = 1) -> None:
    path.write_text(
        json.dumps({"version": version, "key": const.STORAGE_KEY, "data": data}),
        encoding="utf-8",
    )


# ============================================================================
# Writes
# ============================================================================


class TestWrites:
    """Compare-and-set and uniqueness rules."""

    @pytest.mark.asyncio
    async def test_save_and_fetch(self, memory_store: SchedulerStore) -> None:
        """Saved versions are visible through fetch_tasks and fetch_chain."""
        task = make_task()
        await memory_store.async_save_task(task)
        await memory_store.async_save_task(next_version(task))

        chains = await memory_store.async_fetch_tasks()
        chain = await memory_store.async_fetch_chain(task.id)

        assert [c.id for c in chains] == [task.id]
        assert chain is not None
        assert chain.latest.version == 1

    @pytest.mark.asyncio
    async def test_fetch_with_predicate(self, memory_store: SchedulerStore) -> None:
        """The predicate is applied to the latest version."""
        await memory_store.async_save_task(make_task("a", tags=["vitals"]))
        await memory_store.async_save_task(make_task("b"))

        chains = await memory_store.async_fetch_tasks(lambda t: "vitals" in t.tags)

        assert [c.id for c in chains] == ["a"]

    @pytest.mark.asyncio
    async def test_append_is_compare_and_set(
        self, memory_store: SchedulerStore
    ) -> None:
        """A second writer with the same next version loses."""
        task = make_task()
        await memory_store.async_save_task(task)
        await memory_store.async_save_task(next_version(task, "First"))

        with pytest.raises(NextVersionAlreadyPresentError):
            await memory_store.async_save_task(next_version(task, "Second"))

        chain = await memory_store.async_fetch_chain(task.id)
        assert chain is not None
        assert chain.latest.title == "First"

    @pytest.mark.asyncio
    async def test_new_chain_must_start_at_zero(
        self, memory_store: SchedulerStore
    ) -> None:
        """Version 1 cannot create a chain."""
        with pytest.raises(NextVersionAlreadyPresentError):
            await memory_store.async_save_task(next_version(make_task()))

    @pytest.mark.asyncio
    async def test_outcome_rules(self, memory_store: SchedulerStore) -> None:
        """Outcomes need a known chain and are unique per occurrence."""
        task = make_task()
        with pytest.raises(TaskNotFoundError):
            await memory_store.async_save_outcome(make_outcome(task))

        await memory_store.async_save_task(task)
        await memory_store.async_save_outcome(make_outcome(task))
        with pytest.raises(AlreadyCompletedError):
            await memory_store.async_save_outcome(make_outcome(task))

        assert len(await memory_store.async_fetch_outcomes(task.id)) == 1

    @pytest.mark.asyncio
    async def test_delete_cascades(self, memory_store: SchedulerStore) -> None:
        """Deleting a task removes its outcomes."""
        task = make_task()
        await memory_store.async_save_task(task)
        await memory_store.async_save_outcome(make_outcome(task))

        await memory_store.async_delete_task(task.id)

        assert await memory_store.async_fetch_chain(task.id) is None
        assert await memory_store.async_fetch_outcomes(task.id) == []
        with pytest.raises(TaskNotFoundError):
            await memory_store.async_delete_task(task.id)

    @pytest.mark.asyncio
    async def test_snapshot_is_isolated(self, memory_store: SchedulerStore) -> None:
        """Writes after a snapshot do not change it."""
        task = make_task()
        await memory_store.async_save_task(task)
        snapshot = await memory_store.async_snapshot()

        await memory_store.async_save_outcome(make_outcome(task))
        await memory_store.async_save_task(make_task("other"))

        assert list(snapshot.chains) == [task.id]
        assert snapshot.all_outcomes() == []

    @pytest.mark.asyncio
    async def test_clear_data(self, memory_store: SchedulerStore) -> None:
        """clear_data empties the store."""
        await memory_store.async_save_task(make_task())

        await memory_store.async_clear_data()

        assert await memory_store.async_fetch_tasks() == []


# ============================================================================
# Persistence
# ============================================================================


class TestPersistence:
    """Loading and saving the JSON document."""

    @pytest.mark.asyncio
    async def test_missing_file_starts_empty(self, tmp_path: Path) -> None:
        """No file means the default structure."""
        store = SchedulerStore(tmp_path / "scheduler.json")

        await store.async_initialize()

        assert (await store.async_snapshot()).chains == {}

    @pytest.mark.asyncio
    async def test_data_survives_reload(self, tmp_path: Path) -> None:
        """Tasks and outcomes are written and read back."""
        path = tmp_path / "scheduler.json"
        store = SchedulerStore(path)
        await store.async_initialize()
        task = make_task()
        await store.async_save_task(task)
        await store.async_save_task(next_version(task))
        outcome = make_outcome(task)
        await store.async_save_outcome(outcome)

        reloaded = SchedulerStore(path)
        await reloaded.async_initialize()

        chain = await reloaded.async_fetch_chain(task.id)
        outcomes = await reloaded.async_fetch_outcomes(task.id)
        assert chain is not None
        assert [t.version for t in chain.versions] == [0, 1]
        assert chain.first == task
        assert [o.id for o in outcomes] == [outcome.id]
        assert outcomes[0].task.version == 0

        document = json.loads(path.read_text(encoding="utf-8"))
        assert document["version"] == const.STORAGE_VERSION
        assert const.DATA_META_LAST_SAVED in document["data"][const.DATA_META]

    @pytest.mark.asyncio
    async def test_invalid_json(self, tmp_path: Path) -> None:
        """A file that is not JSON is a storage error."""
        path = tmp_path / "scheduler.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(StorageError):
            await SchedulerStore(path).async_initialize()

    @pytest.mark.asyncio
    async def test_newer_document_version(self, tmp_path: Path) -> None:
        """Documents written by a newer schema are refused."""
        path = tmp_path / "scheduler.json"
        write_document(path, SchedulerStore.get_default_structure(), version=99)

        with pytest.raises(StorageError):
            await SchedulerStore(path).async_initialize()

    @pytest.mark.asyncio
    async def test_undecodable_chain_is_kept(self, tmp_path: Path) -> None:
        """A corrupt chain is reported, blocks writes, and is written back verbatim."""
        path = tmp_path / "scheduler.json"
        bad = build_task_data(make_task("bad"))
        bad[const.DATA_TASK_SCHEDULE][const.DATA_SCHEDULE_DURATION] = "forever"
        data = SchedulerStore.get_default_structure()
        data[const.DATA_TASKS] = {
            "good": [build_task_data(make_task("good"))],
            "bad": [bad],
        }
        write_document(path, data)

        store = SchedulerStore(path)
        await store.async_initialize()

        snapshot = await store.async_snapshot()
        assert list(snapshot.chains) == ["good"]
        assert [error.task_id for error in snapshot.errors] == ["bad"]
        with pytest.raises(DecodingError):
            await store.async_fetch_chain("bad")
        with pytest.raises(DecodingError):
            await store.async_save_task(make_task("bad"))

        await store.async_save_task(make_task("new"))
        document = json.loads(path.read_text(encoding="utf-8"))
        assert document["data"][const.DATA_TASKS]["bad"] == [bad]

    @pytest.mark.asyncio
    async def test_write_failure_keeps_state(self, tmp_path: Path) -> None:
        """If the file cannot be written, the in-memory state is unchanged."""
        store = SchedulerStore(tmp_path)  # a directory cannot be replaced by a file

        with pytest.raises(StorageError):
            await store.async_save_task(make_task())

        assert await store.async_fetch_tasks() == []
