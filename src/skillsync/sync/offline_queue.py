"""Durable FIFO queue of mutations attempted while offline.

Every change to the pending list is persisted as a whole through the
injected :class:`~skillsync.storage.kv_store.KeyValueStore` under a single
well-known key. The persisted value is a versioned envelope::

    {"schema_version": 1, "actions": [{"id": ..., "action_type": ..., ...}]}

A bare JSON array of ``{id, action, payload, timestamp}`` records (the
format written before the envelope existed, with millisecond timestamps) is
still accepted on load.

Persistence is best effort: any exception raised by the store is logged and
recorded in :attr:`OfflineQueue.last_persist_error`, and the action stays
queued in memory so nothing is dropped.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from typing import Any, Iterable

import orjson
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from skillsync.shared.constants import QueueStorage
from skillsync.shared.errors import (
    ErrorCode,
    ErrorContext,
    InfrastructureError,
    SkillSyncError,
    create_persistence_error,
    create_validation_error,
)
from skillsync.shared.logging import log_operation_error, log_operation_success
from skillsync.shared.scheduling import Clock, SystemClock
from skillsync.storage.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

_sequence = itertools.count()

# Legacy records carry ``timestamp`` in milliseconds.
_LEGACY_TIMESTAMP_SCALE = 1000.0


class OfflineAction(BaseModel):
    """A queued mutation.

    Attributes:
        id: Unique id; sorts in enqueue order
        action_type: Handler name, e.g. ``sendMessage``
        payload: JSON-serializable handler argument
        enqueued_at: Wall-clock time (seconds) the action was queued
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., min_length=1, description="Unique, monotonically orderable id")
    action_type: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("action_type", "actionType", "action"),
        description="Key into the handler map",
    )
    payload: Any = Field(default=None, description="JSON-serializable handler argument")
    enqueued_at: float = Field(
        ...,
        validation_alias=AliasChoices("enqueued_at", "enqueuedAt"),
        description="Seconds since the epoch when the action was queued",
    )

    @property
    def sort_key(self) -> tuple[float, str]:
        return (self.enqueued_at, self.id)


class QueueEnvelope(BaseModel):
    """Persisted form of the whole queue."""

    schema_version: int = Field(default=QueueStorage.SCHEMA_VERSION, ge=1)
    actions: list[OfflineAction] = Field(default_factory=list)


def make_action_id(now: float) -> str:
    """Zero-padded nanosecond timestamp plus a process-wide sequence number."""
    return f"{int(now * 1_000_000_000):020d}-{next(_sequence):08d}"


def _ensure_serializable(payload: Any, action_type: str) -> None:
    try:
        orjson.dumps(payload)
    except TypeError as e:
        raise create_validation_error(
            f"Payload for '{action_type}' is not JSON-serializable: {e}",
            field="payload",
            operation="queue_enqueue",
            code=ErrorCode.PAYLOAD_NOT_SERIALIZABLE,
            original_error=e,
        ) from e


class OfflineQueue:
    """Ordered, durable list of pending :class:`OfflineAction` objects.

    Use :meth:`create` to build a queue that has already merged the
    persisted list. A queue constructed directly merges the persisted list
    on :meth:`load_from_storage` or, at the latest, before its first write,
    so an early ``enqueue`` never overwrites actions from a previous process.

    Args:
        store: Backing key-value store
        storage_key: Key the envelope is stored under
        clock: Wall clock stamping ``enqueued_at``
    """

    def __init__(
        self,
        store: KeyValueStore,
        storage_key: str = QueueStorage.STORAGE_KEY,
        clock: Clock | None = None,
    ) -> None:
        self.store = store
        self.storage_key = storage_key
        self.clock: Clock = clock or SystemClock()
        self._actions: list[OfflineAction] = []
        self._persist_lock = asyncio.Lock()
        self._loaded = False
        self.last_persist_error: SkillSyncError | None = None

    @classmethod
    async def create(
        cls,
        store: KeyValueStore,
        storage_key: str = QueueStorage.STORAGE_KEY,
        clock: Clock | None = None,
    ) -> OfflineQueue:
        """Build a queue and load the persisted actions into it."""
        queue = cls(store, storage_key=storage_key, clock=clock)
        await queue.load_from_storage()
        return queue

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def is_durable(self) -> bool:
        """False while the in-memory list differs from what was last persisted."""
        return self.last_persist_error is None

    @property
    def pending_count(self) -> int:
        return len(self._actions)

    def __len__(self) -> int:
        return len(self._actions)

    def list_pending(self) -> list[OfflineAction]:
        """Pending actions in FIFO order (a copy)."""
        return list(self._actions)

    async def enqueue(self, action_type: str, payload: Any = None) -> str:
        """Append an action and persist the full list.

        Returns:
            The new action id.

        Raises:
            DomainError: If ``action_type`` is empty or ``payload`` cannot be
                encoded as JSON.
        """
        if not action_type:
            raise create_validation_error(
                "action_type must be a non-empty string",
                field="action_type",
                operation="queue_enqueue",
            )
        _ensure_serializable(payload, action_type)

        now = self.clock.now()
        action = OfflineAction(
            id=make_action_id(now),
            action_type=action_type,
            payload=payload,
            enqueued_at=now,
        )
        self._actions.append(action)
        logger.info("Queued offline action %s (%s)", action.id, action_type)

        await self._persist(operation="queue_enqueue")
        return action.id

    async def remove_completed(self, action_ids: Iterable[str]) -> int:
        """Drop the given ids and persist the remaining list.

        Returns:
            Number of actions removed.
        """
        completed = set(action_ids)
        if not completed:
            return 0
        remaining = [action for action in self._actions if action.id not in completed]
        removed = len(self._actions) - len(remaining)
        if removed:
            self._actions = remaining
            await self._persist(operation="queue_remove_completed")
        return removed

    async def clear(self) -> int:
        """Drop every pending action and delete the storage key.

        Returns:
            Number of actions dropped.
        """
        dropped = len(self._actions)
        self._actions = []
        self._loaded = True
        async with self._persist_lock:
            try:
                await self.store.remove(self.storage_key)
            except Exception as e:
                self._record_failure("queue_clear", e)
            else:
                self.last_persist_error = None
        logger.info("Cleared %d offline action(s)", dropped)
        return dropped

    async def load_from_storage(self) -> list[OfflineAction]:
        """Merge the persisted list into memory.

        Actions enqueued before the load finished are kept; the merged list
        is ordered by ``(enqueued_at, id)`` and de-duplicated by id.

        Returns:
            The merged pending list.

        Raises:
            PersistenceError: If the store cannot be read.
            InfrastructureError: If the data was written by a newer schema.
        """
        async with self._persist_lock:
            if await self._merge_from_store():
                await self._write(operation="queue_load")
        return self.list_pending()

    async def _merge_from_store(self) -> bool:
        """Read the persisted list and merge it into memory.

        Returns:
            True if memory holds actions the store does not.
        """
        started = time.perf_counter()
        raw = await self.store.get(self.storage_key)
        persisted = self._decode(raw) if raw is not None else []

        merged: dict[str, OfflineAction] = {}
        for action in sorted([*persisted, *self._actions], key=lambda a: a.sort_key):
            merged.setdefault(action.id, action)

        persisted_ids = {action.id for action in persisted}
        unsaved = any(action.id not in persisted_ids for action in self._actions)
        self._actions = list(merged.values())
        self._loaded = True

        log_operation_success(
            logger=logger,
            operation="queue_load",
            duration_ms=(time.perf_counter() - started) * 1000,
            result_info={"persisted": len(persisted), "pending": len(self._actions)},
        )
        return unsaved

    def _decode(self, raw: bytes) -> list[OfflineAction]:
        try:
            document = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            self._report_corrupt(f"Persisted queue is not valid JSON: {e}", e)
            return []

        if isinstance(document, list):
            records = [self._upgrade_legacy(record) for record in document]
        elif isinstance(document, dict):
            version = document.get(QueueStorage.ENVELOPE_VERSION_FIELD)
            if isinstance(version, int) and version > QueueStorage.SCHEMA_VERSION:
                raise InfrastructureError(
                    ErrorCode.QUEUE_SCHEMA_UNSUPPORTED,
                    f"Persisted queue schema {version} is newer than supported "
                    f"schema {QueueStorage.SCHEMA_VERSION}",
                    ErrorContext(
                        operation="queue_load",
                        additional_data={
                            "storage_key": self.storage_key,
                            "schema_version": version,
                        },
                    ),
                )
            try:
                return QueueEnvelope.model_validate(document).actions
            except ValidationError as e:
                self._report_corrupt(f"Persisted queue envelope is invalid: {e}", e)
                return []
        else:
            self._report_corrupt(
                f"Persisted queue has unexpected type {type(document).__name__}", None
            )
            return []

        actions: list[OfflineAction] = []
        for record in records:
            try:
                actions.append(OfflineAction.model_validate(record))
            except ValidationError as e:
                self._report_corrupt(f"Skipping invalid legacy queue record: {e}", e)
        return actions

    @staticmethod
    def _upgrade_legacy(record: Any) -> Any:
        if not isinstance(record, dict) or "enqueued_at" in record or "enqueuedAt" in record:
            return record
        upgraded = dict(record)
        timestamp = upgraded.pop("timestamp", None)
        if isinstance(timestamp, (int, float)):
            upgraded["enqueued_at"] = timestamp / _LEGACY_TIMESTAMP_SCALE
        return upgraded

    def _report_corrupt(self, message: str, error: Exception | None) -> None:
        log_operation_error(
            logger=logger,
            error=InfrastructureError(
                ErrorCode.QUEUE_CORRUPTED,
                message,
                ErrorContext(
                    operation="queue_load",
                    additional_data={"storage_key": self.storage_key},
                ),
                original_error=error,
            ),
            level=logging.WARNING,
        )

    async def _persist(self, *, operation: str) -> bool:
        async with self._persist_lock:
            if not self._loaded:
                # Never overwrite a persisted list this queue has not merged.
                try:
                    await self._merge_from_store()
                except Exception as e:
                    self._record_failure(operation, e)
                    return False
            return await self._write(operation=operation)

    async def _write(self, *, operation: str) -> bool:
        # Encoded under the persist lock so the last writer stores the newest list.
        envelope = QueueEnvelope(actions=self._actions)
        try:
            await self.store.set(self.storage_key, orjson.dumps(envelope.model_dump()))
        except Exception as e:
            self._record_failure(operation, e)
            return False
        self.last_persist_error = None
        return True

    def _record_failure(self, operation: str, error: Exception) -> None:
        failure = (
            error
            if isinstance(error, SkillSyncError)
            else create_persistence_error(
                f"Failed to persist offline queue: {error}",
                storage_key=self.storage_key,
                operation=operation,
                code=ErrorCode.PERSISTENCE_REMOVE_FAILED
                if operation == "queue_clear"
                else ErrorCode.PERSISTENCE_WRITE_FAILED,
                original_error=error,
            )
        )
        self.last_persist_error = failure
        log_operation_error(
            logger=logger,
            error=failure,
            operation=operation,
            additional_context={"pending": len(self._actions)},
            level=logging.WARNING,
        )
