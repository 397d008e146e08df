"""Key-value persistence primitives.

The offline queue only needs ``get``/``set``/``remove`` by string key. This
module defines that protocol and ships two implementations: an in-memory
store for tests and ephemeral sessions, and a file-backed store that
writes each key atomically (write to a temporary file, then rename over the
target) so a process killed mid-write never leaves a truncated value.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Protocol, runtime_checkable
from urllib.parse import quote, unquote

from skillsync.shared.constants import QueueStorage
from skillsync.shared.errors import ErrorCode, create_persistence_error

logger = logging.getLogger(__name__)


@runtime_checkable
class KeyValueStore(Protocol):
    """Asynchronous get/set/remove by string key."""

    async def get(self, key: str) -> bytes | None:
        """Return the stored bytes or None when the key is absent."""

    async def set(self, key: str, value: bytes) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""

    async def remove(self, key: str) -> None:
        """Delete ``key``; removing a missing key is not an error."""


@runtime_checkable
class EnumerableKeyValueStore(KeyValueStore, Protocol):
    """KeyValueStore that can also list its keys."""

    async def keys(self) -> list[str]:
        """Return every stored key."""


class MemoryKeyValueStore:
    """Dictionary-backed store; contents live as long as the instance."""

    def __init__(self, initial: dict[str, bytes] | None = None) -> None:
        self._data: dict[str, bytes] = dict(initial or {})

    async def get(self, key: str) -> bytes | None:
        return self._data.get(key)

    async def set(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self) -> list[str]:
        return list(self._data)

    def __len__(self) -> int:
        return len(self._data)


class FileKeyValueStore:
    """One file per key under ``root``, replaced atomically on every write.

    Blocking file I/O runs in a worker thread via ``asyncio.to_thread``.

    Args:
        root: Directory holding the value files (created on first write)
        fsync: Flush file contents to disk before the rename
    """

    def __init__(self, root: Path | str, *, fsync: bool = True) -> None:
        self.root = Path(root)
        self.fsync = fsync

    def path_for(self, key: str) -> Path:
        """File path for ``key``; keys are percent-encoded into file names."""
        return self.root / f"{quote(key, safe='')}{QueueStorage.FILE_SUFFIX}"

    async def get(self, key: str) -> bytes | None:
        path = self.path_for(key)
        try:
            return await asyncio.to_thread(self._read, path)
        except OSError as e:
            raise create_persistence_error(
                f"Failed to read '{key}' from {path}: {e}",
                storage_key=key,
                operation="kv_get",
                code=ErrorCode.PERSISTENCE_READ_FAILED,
                original_error=e,
            ) from e

    async def set(self, key: str, value: bytes) -> None:
        path = self.path_for(key)
        try:
            await asyncio.to_thread(self._write_atomic, path, bytes(value))
        except OSError as e:
            raise create_persistence_error(
                f"Failed to write '{key}' to {path}: {e}",
                storage_key=key,
                operation="kv_set",
                code=ErrorCode.PERSISTENCE_WRITE_FAILED,
                original_error=e,
            ) from e

    async def remove(self, key: str) -> None:
        path = self.path_for(key)
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as e:
            raise create_persistence_error(
                f"Failed to remove '{key}' at {path}: {e}",
                storage_key=key,
                operation="kv_remove",
                code=ErrorCode.PERSISTENCE_REMOVE_FAILED,
                original_error=e,
            ) from e

    async def keys(self) -> list[str]:
        if not self.root.exists():
            return []
        suffix = QueueStorage.FILE_SUFFIX
        return sorted(
            unquote(path.name[: -len(suffix)])
            for path in self.root.iterdir()
            if path.is_file() and path.name.endswith(suffix)
        )

    @staticmethod
    def _read(path: Path) -> bytes | None:
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def _write_atomic(self, path: Path, value: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_name(path.name + QueueStorage.TEMP_SUFFIX)
        try:
            with open(temp_path, "wb") as f:
                f.write(value)
                if self.fsync:
                    f.flush()
                    os.fsync(f.fileno())
            # Atomic rename
            temp_path.replace(path)
        except OSError:
            temp_path.unlink(missing_ok=True)
            raise
        logger.debug("Wrote %d bytes to %s", len(value), path)
