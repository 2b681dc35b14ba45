# File: store.py
"""Persistent storage for task chains and outcomes.

SchedulerStore keeps the decoded state in memory and optionally mirrors it to
a versioned JSON document on disk. State is replaced copy-on-write on every
write, so a snapshot taken by a query is a consistent point-in-time view even
while writes continue. Each write is atomic: the new state is persisted first
and only committed in memory once the file write succeeded.

Chains that fail to decode on load are kept as raw records (and written back
unchanged) and reported as DecodingError in every snapshot.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
import json
import os
from pathlib import Path
from typing import Any, Protocol

from . import const
from .data_builders import (
    build_outcome_data,
    build_task_data,
    parse_chain,
    parse_outcome,
)
from .engines.outcome_engine import Outcome
from .engines.task_engine import Task, TaskChain
from .exceptions import (
    AlreadyCompletedError,
    DecodingError,
    NextVersionAlreadyPresentError,
    StorageError,
    TaskNotFoundError,
)
from .utils.dt_utils import dt_now_utc, dt_to_iso

TaskPredicate = Callable[[Task], bool]


@dataclass(frozen=True)
class StoreSnapshot:
    """Point-in-time view of every chain, outcome and decoding failure."""

    chains: Mapping[str, TaskChain] = field(default_factory=dict)
    outcomes: Mapping[str, tuple[Outcome, ...]] = field(default_factory=dict)
    errors: tuple[DecodingError, ...] = ()

    def all_outcomes(self) -> list[Outcome]:
        return [outcome for items in self.outcomes.values() for outcome in items]


class SchedulerStorage(Protocol):
    """Narrow persistence interface used by the Scheduler."""

    async def async_save_task(self, task: Task) -> None: ...

    async def async_save_outcome(self, outcome: Outcome) -> None: ...

    async def async_fetch_tasks(
        self, predicate: TaskPredicate | None = None
    ) -> list[TaskChain]: ...

    async def async_fetch_chain(self, task_id: str) -> TaskChain | None: ...

    async def async_fetch_outcomes(self, task_id: str) -> list[Outcome]: ...

    async def async_snapshot(self) -> StoreSnapshot: ...

    async def async_delete_task(self, task_id: str) -> None: ...


class SchedulerStore:
    """JSON-file backed implementation of SchedulerStorage.

    Without a path the store is purely in memory.
    """

    def __init__(
        self,
        path: str | Path | None = None,
        storage_key: str = const.STORAGE_KEY,
    ) -> None:
        """Initialize the store.

        Args:
            path: JSON file to load from and save to (None keeps data in memory)
            storage_key: Key written into the document envelope
        """
        self._path = Path(path) if path is not None else None
        self._storage_key = storage_key
        self._chains: dict[str, TaskChain] = {}
        self._outcomes: dict[str, tuple[Outcome, ...]] = {}
        # Undecodable chains: raw task and outcome records, kept verbatim
        self._corrupt: dict[str, dict[str, list[Any]]] = {}
        self._errors: dict[str, DecodingError] = {}
        # Serializes read-modify-commit cycles across all chains
        self._write_lock = asyncio.Lock()

    @staticmethod
    def get_default_structure() -> dict[str, Any]:
        """Return the canonical empty storage document data."""
        return {
            const.DATA_META: {
                const.DATA_META_SCHEMA_VERSION: const.STORAGE_VERSION,
            },
            const.DATA_TASKS: {},
            const.DATA_OUTCOMES: {},
        }

    @property
    def path(self) -> Path | None:
        return self._path

    # =========================================================================
    # Loading
    # =========================================================================

    async def async_initialize(self) -> None:
        """Load data from disk; missing files start with the default structure.

        Raises:
            StorageError: If the file cannot be read or is not a valid document
        """
        const.LOGGER.debug("DEBUG: SchedulerStore: Loading data from %s", self._path)
        if self._path is None:
            self._load_data(self.get_default_structure())
            return

        document = await asyncio.to_thread(self._read_document, self._path)
        if document is None:
            const.LOGGER.info("INFO: No existing storage found. Initializing new data")
            self._load_data(self.get_default_structure())
            return

        version = document.get("version")
        if not isinstance(version, int) or version > const.STORAGE_VERSION:
            raise StorageError(
                f"Unsupported storage version {version!r} in {self._path}"
            )
        data = document.get("data")
        if not isinstance(data, dict):
            raise StorageError(f"Storage document {self._path} has no data block")
        self._load_data(data)

    @staticmethod
    def _read_document(path: Path) -> dict[str, Any] | None:
        try:
            with path.open(encoding="utf-8") as file:
                document = json.load(file)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            const.LOGGER.error("ERROR: Failed to read storage %s: %s", path, exc)
            raise StorageError(f"Cannot read storage file {path}: {exc}") from exc
        if not isinstance(document, dict):
            raise StorageError(f"Storage file {path} is not a JSON object")
        return document

    def _load_data(self, data: dict[str, Any]) -> None:
        """Decode the data block; undecodable chains are kept raw."""
        chains: dict[str, TaskChain] = {}
        outcomes: dict[str, tuple[Outcome, ...]] = {}
        corrupt: dict[str, dict[str, list[Any]]] = {}
        errors: dict[str, DecodingError] = {}

        raw_tasks = data.get(const.DATA_TASKS, {})
        raw_outcomes = data.get(const.DATA_OUTCOMES, {})
        if not isinstance(raw_tasks, dict) or not isinstance(raw_outcomes, dict):
            raise StorageError("Storage data has malformed tasks or outcomes buckets")

        for task_id, records in raw_tasks.items():
            outcome_records = raw_outcomes.get(task_id, [])
            try:
                if not isinstance(records, list) or not isinstance(
                    outcome_records, list
                ):
                    raise DecodingError("records are not lists", task_id=task_id)
                chain = parse_chain(task_id, records)
                outcomes[task_id] = tuple(
                    parse_outcome(record, chain) for record in outcome_records
                )
                chains[task_id] = chain
            except DecodingError as exc:
                const.LOGGER.warning(
                    "WARNING: SchedulerStore: Keeping undecodable task %s: %s",
                    task_id,
                    exc,
                )
                outcomes.pop(task_id, None)
                corrupt[task_id] = {
                    const.DATA_TASKS: records,
                    const.DATA_OUTCOMES: outcome_records,
                }
                errors[task_id] = (
                    exc if exc.task_id else DecodingError(str(exc), task_id=task_id)
                )

        orphaned = set(raw_outcomes) - set(raw_tasks)
        if orphaned:
            const.LOGGER.warning(
                "WARNING: SchedulerStore: Ignoring outcomes of unknown tasks: %s",
                sorted(orphaned),
            )

        self._chains, self._outcomes = chains, outcomes
        self._corrupt, self._errors = corrupt, errors
        const.LOGGER.debug(
            "DEBUG: SchedulerStore: Loaded %s",
            {
                "tasks": len(chains),
                "outcomes": sum(len(items) for items in outcomes.values()),
                "undecodable": len(corrupt),
            },
        )

    # =========================================================================
    # Reads
    # =========================================================================

    async def async_snapshot(self) -> StoreSnapshot:
        """Return a consistent view of the current state."""
        return StoreSnapshot(
            chains=self._chains,
            outcomes=self._outcomes,
            errors=tuple(self._errors.values()),
        )

    async def async_fetch_tasks(
        self, predicate: TaskPredicate | None = None
    ) -> list[TaskChain]:
        """Return chains whose latest version matches ``predicate``."""
        chains = self._chains
        return [
            chain
            for chain in chains.values()
            if predicate is None or predicate(chain.latest)
        ]

    async def async_fetch_chain(self, task_id: str) -> TaskChain | None:
        """Return one chain, or None if unknown.

        Raises:
            DecodingError: If the chain exists but could not be decoded
        """
        if task_id in self._errors:
            raise self._errors[task_id]
        return self._chains.get(task_id)

    async def async_fetch_outcomes(self, task_id: str) -> list[Outcome]:
        return list(self._outcomes.get(task_id, ()))

    # =========================================================================
    # Writes
    # =========================================================================

    async def async_save_task(self, task: Task) -> None:
        """Append a task version (compare-and-set on the latest version).

        Raises:
            NextVersionAlreadyPresentError: If the chain already moved on
            DecodingError: If the chain exists only as undecodable records
            StorageError: If persisting fails
        """
        async with self._write_lock:
            await self._async_save_task_locked(task)

    async def _async_save_task_locked(self, task: Task) -> None:
        if task.id in self._errors:
            raise self._errors[task.id]
        existing = self._chains.get(task.id)
        if existing is None:
            if task.version != 0:
                raise NextVersionAlreadyPresentError(task.id, task.version - 1)
            chain = TaskChain(task.id, [task])
        else:
            chain = existing.append(task)

        chains = {**self._chains, task.id: chain}
        outcomes = self._outcomes if task.id in self._outcomes else {
            **self._outcomes,
            task.id: (),
        }
        await self._async_commit(chains, outcomes, self._corrupt, self._errors)
        const.LOGGER.debug(
            "DEBUG: SchedulerStore: Saved task %s v%s", task.id, task.version
        )

    async def async_save_outcome(self, outcome: Outcome) -> None:
        """Record an outcome; at most one per (task id, occurrence start).

        Raises:
            TaskNotFoundError: If the outcome's task chain is unknown
            AlreadyCompletedError: If the occurrence already has an outcome
            StorageError: If persisting fails
        """
        async with self._write_lock:
            await self._async_save_outcome_locked(outcome)

    async def _async_save_outcome_locked(self, outcome: Outcome) -> None:
        chain = self._chains.get(outcome.task_id)
        if chain is None or outcome.task.version >= len(chain):
            raise TaskNotFoundError(outcome.task_id)

        existing = self._outcomes.get(outcome.task_id, ())
        if any(item.key == outcome.key for item in existing):
            raise AlreadyCompletedError(outcome.task_id, outcome.occurrence_start)

        outcomes = {**self._outcomes, outcome.task_id: (*existing, outcome)}
        await self._async_commit(self._chains, outcomes, self._corrupt, self._errors)
        const.LOGGER.debug(
            "DEBUG: SchedulerStore: Saved outcome %s for task %s",
            outcome.id,
            outcome.task_id,
        )

    async def async_delete_task(self, task_id: str) -> None:
        """Delete a chain and, by cascade, all of its outcomes.

        Raises:
            TaskNotFoundError: If no chain (decoded or not) has this id
            StorageError: If persisting fails
        """
        async with self._write_lock:
            await self._async_delete_task_locked(task_id)

    async def _async_delete_task_locked(self, task_id: str) -> None:
        if task_id not in self._chains and task_id not in self._corrupt:
            raise TaskNotFoundError(task_id)
        chains = {key: value for key, value in self._chains.items() if key != task_id}
        outcomes = {
            key: value for key, value in self._outcomes.items() if key != task_id
        }
        corrupt = {key: value for key, value in self._corrupt.items() if key != task_id}
        errors = {key: value for key, value in self._errors.items() if key != task_id}
        await self._async_commit(chains, outcomes, corrupt, errors)
        const.LOGGER.debug("DEBUG: SchedulerStore: Deleted task %s", task_id)

    async def async_clear_data(self) -> None:
        """Reset the store to the default (empty) structure."""
        const.LOGGER.info("INFO: Clearing all scheduler data")
        async with self._write_lock:
            await self._async_commit({}, {}, {}, {})

    async def _async_commit(
        self,
        chains: dict[str, TaskChain],
        outcomes: dict[str, tuple[Outcome, ...]],
        corrupt: dict[str, dict[str, list[Any]]],
        errors: dict[str, DecodingError],
    ) -> None:
        """Persist the new state, then swap it in."""
        if self._path is not None:
            document = {
                "version": const.STORAGE_VERSION,
                "key": self._storage_key,
                "data": self._build_data(chains, outcomes, corrupt),
            }
            await asyncio.to_thread(self._write_document, self._path, document)
        self._chains, self._outcomes = chains, outcomes
        self._corrupt, self._errors = corrupt, errors

    @staticmethod
    def _build_data(
        chains: dict[str, TaskChain],
        outcomes: dict[str, tuple[Outcome, ...]],
        corrupt: dict[str, dict[str, list[Any]]],
    ) -> dict[str, Any]:
        data = SchedulerStore.get_default_structure()
        data[const.DATA_META][const.DATA_META_LAST_SAVED] = dt_to_iso(dt_now_utc())
        for task_id, chain in chains.items():
            data[const.DATA_TASKS][task_id] = [
                build_task_data(task) for task in chain.versions
            ]
            data[const.DATA_OUTCOMES][task_id] = [
                build_outcome_data(outcome) for outcome in outcomes.get(task_id, ())
            ]
        for task_id, records in corrupt.items():
            data[const.DATA_TASKS][task_id] = records[const.DATA_TASKS]
            data[const.DATA_OUTCOMES][task_id] = records[const.DATA_OUTCOMES]
        return data

    @staticmethod
    def _write_document(path: Path, document: dict[str, Any]) -> None:
        """Write the document atomically (temp file + rename)."""
        tmp_path = path.with_name(f"{path.name}.tmp")
        try:
            payload = json.dumps(document, indent=2, sort_keys=True)
            path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as file:
                file.write(payload)
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as exc:
            const.LOGGER.error("ERROR: Failed to write storage %s: %s", path, exc)
            raise StorageError(f"Cannot write storage file {path}: {exc}") from exc
