"""Prefixed offline snapshot storage.

Stores arbitrary JSON-serializable values under ``offline_<key>`` together
with the time they were written, so screens can show the last known data
while the device is offline. Failures are logged and reported as empty
results; callers treat the storage as best effort.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import orjson

from skillsync.shared.constants import QueueStorage
from skillsync.shared.errors import ErrorCode, SkillSyncError, create_persistence_error
from skillsync.shared.logging import log_operation_error
from skillsync.shared.scheduling import Clock, SystemClock
from skillsync.storage.kv_store import EnumerableKeyValueStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorageInfo:
    """Keys held by OfflineStorage and their total encoded size in bytes."""

    keys: list[str]
    total_size: int


class OfflineStorage:
    """Best-effort snapshot store layered over an enumerable KeyValueStore.

    Args:
        store: Backing store (must support ``keys()``)
        prefix: Key prefix separating snapshots from other stored values
        clock: Clock stamping each snapshot
    """

    def __init__(
        self,
        store: EnumerableKeyValueStore,
        prefix: str = QueueStorage.OFFLINE_PREFIX,
        clock: Clock | None = None,
    ) -> None:
        self.backend = store
        self.prefix = prefix
        self.clock: Clock = clock or SystemClock()

    def _storage_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def _report(self, operation: str, key: str, error: Exception) -> None:
        failure = (
            error
            if isinstance(error, SkillSyncError)
            else create_persistence_error(
                f"Offline storage {operation} failed for '{key}': {error}",
                storage_key=key,
                operation=operation,
                code=ErrorCode.PERSISTENCE_WRITE_FAILED
                if operation == "offline_store"
                else ErrorCode.PERSISTENCE_READ_FAILED,
                original_error=error,
            )
        )
        log_operation_error(logger, failure, operation=operation, level=logging.WARNING)

    async def store(self, key: str, data: Any) -> bool:
        """Persist ``data`` with the current timestamp.

        Returns:
            True if the snapshot was written.
        """
        storage_key = self._storage_key(key)
        try:
            encoded = orjson.dumps({"data": data, "timestamp": self.clock.now()})
            await self.backend.set(storage_key, encoded)
        except (TypeError, orjson.JSONEncodeError, SkillSyncError, OSError) as e:
            self._report("offline_store", storage_key, e)
            return False
        return True

    async def retrieve(self, key: str, max_age: float | None = None) -> Any | None:
        """Return the stored data, or None when missing, unreadable or older than ``max_age``."""
        storage_key = self._storage_key(key)
        try:
            raw = await self.backend.get(storage_key)
            if raw is None:
                return None
            snapshot = orjson.loads(raw)
        except (orjson.JSONDecodeError, SkillSyncError, OSError) as e:
            self._report("offline_retrieve", storage_key, e)
            return None

        if not isinstance(snapshot, dict) or "data" not in snapshot:
            return None
        if max_age is not None:
            written = snapshot.get("timestamp")
            if not isinstance(written, (int, float)) or self.clock.now() - written > max_age:
                return None
        return snapshot["data"]

    async def remove(self, key: str) -> None:
        await self.backend.remove(self._storage_key(key))

    async def clear(self) -> int:
        """Remove every prefixed snapshot; returns how many were removed."""
        keys = [key for key in await self.backend.keys() if key.startswith(self.prefix)]
        for key in keys:
            await self.backend.remove(key)
        return len(keys)

    async def storage_info(self) -> StorageInfo:
        """List snapshot keys (without prefix) and their total encoded size."""
        keys: list[str] = []
        total_size = 0
        for key in await self.backend.keys():
            if not key.startswith(self.prefix):
                continue
            raw = await self.backend.get(key)
            if raw is not None:
                total_size += len(raw)
            keys.append(key[len(self.prefix) :])
        return StorageInfo(keys=keys, total_size=total_size)
