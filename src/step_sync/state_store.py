"""Local persistence for SyncState.

Two implementations share one interface:

- ``JsonFileSyncStateStore`` - the production store.  Writes go to a
  temporary file in the same directory and are moved into place with
  ``os.replace`` so a crash mid-write never leaves a torn record.
- ``InMemorySyncStateStore`` - for tests and ephemeral runners.

All operations are serialized through an ``asyncio.Lock``, so concurrent
coroutines in one process never observe a half-applied update.  A missing
record is a valid initial state and reads as defaults.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable

from src.step_sync.base import SyncState

logger = logging.getLogger("stepper.sync.state")


class SyncStateStore(ABC):
    """Atomic read / write access to the single SyncState record."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()

    async def read(self) -> SyncState:
        """Return the persisted state, or defaults if none exists yet."""
        async with self._lock:
            return await self._load()

    async def write(self, state: SyncState) -> None:
        """Replace the persisted state."""
        async with self._lock:
            await self._save(state)

    async def update(self, mutator: Callable[[SyncState], bool]) -> SyncState:
        """Atomically read, mutate, and write the state.

        ``mutator`` receives a fresh copy, modifies it in place, and returns
        True to persist the change or False to leave the record untouched.

        Returns:
            The state as seen by the mutator (persisted if it returned True).
        """
        async with self._lock:
            current = await self._load()
            if mutator(current):
                await self._save(current)
            return current

    async def clear(self) -> None:
        """Reset to defaults (tracking disabled)."""
        async with self._lock:
            await self._save(SyncState())
        logger.info("Sync state cleared")

    @abstractmethod
    async def _load(self) -> SyncState:
        """Read without locking. Must not raise on a missing record."""

    @abstractmethod
    async def _save(self, state: SyncState) -> None:
        """Write without locking."""


class InMemorySyncStateStore(SyncStateStore):
    """Process-local store.  Holds the JSON form so callers never share objects."""

    def __init__(self, initial: SyncState | None = None) -> None:
        super().__init__()
        self._data: dict | None = initial.to_json() if initial else None

    async def _load(self) -> SyncState:
        if self._data is None:
            return SyncState()
        return SyncState.from_json(self._data)

    async def _save(self, state: SyncState) -> None:
        self._data = state.to_json()


class JsonFileSyncStateStore(SyncStateStore):
    """File-backed store.

    Args:
        path: Location of the JSON state file.  Parent directories are
              created on first write.
    """

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    async def _load(self) -> SyncState:
        return await asyncio.to_thread(self._read_file)

    async def _save(self, state: SyncState) -> None:
        await asyncio.to_thread(self._write_file, state.to_json())

    def _read_file(self) -> SyncState:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return SyncState()
        except OSError as exc:
            logger.warning("Could not read sync state from %s: %s", self._path, exc)
            return SyncState()

        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            logger.warning("Corrupt sync state in %s (%s); starting fresh", self._path, exc)
            return SyncState()
        if not isinstance(data, dict):
            logger.warning("Unexpected sync state shape in %s; starting fresh", self._path)
            return SyncState()
        try:
            return SyncState.from_json(data)
        except (TypeError, ValueError) as exc:
            logger.warning("Invalid sync state in %s (%s); starting fresh", self._path, exc)
            return SyncState()

    def _write_file(self, data: dict) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, sort_keys=True)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self._path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
