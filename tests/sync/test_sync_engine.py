"""Tests for SyncEngine."""

import asyncio
import logging
from unittest.mock import AsyncMock

import pytest

from skillsync.shared.cancellation import CancellationToken
from skillsync.shared.errors import ErrorCode, SyncError
from skillsync.shared.scheduling import ManualClock
from skillsync.storage.kv_store import MemoryKeyValueStore
from skillsync.sync.offline_queue import OfflineQueue
from skillsync.sync.sync_engine import SyncEngine, SyncOutcome


@pytest.fixture
def queue(memory_store: MemoryKeyValueStore, clock: ManualClock) -> OfflineQueue:
    return OfflineQueue(memory_store, clock=clock)


class TestDrainOrdering:
    """FIFO execution and halt on first failure."""

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_tail_queued(self, queue: OfflineQueue, caplog) -> None:
        # Given: A, B, C with B failing
        a = await queue.enqueue("updateProfile", {"step": "A"})
        b = await queue.enqueue("sendMessage", {"step": "B"})
        c = await queue.enqueue("createSession", {"step": "C"})
        error = RuntimeError("server rejected B")
        handlers = {
            "updateProfile": AsyncMock(),
            "sendMessage": AsyncMock(side_effect=error),
            "createSession": AsyncMock(),
        }
        engine = SyncEngine(queue, handlers)

        # When
        with caplog.at_level(logging.WARNING, logger="skillsync.sync.sync_engine"):
            outcomes = await engine.drain()

        # Then
        assert outcomes == [
            SyncOutcome(action_id=a, succeeded=True),
            SyncOutcome(action_id=b, succeeded=False, error=error),
        ]
        assert [action.id for action in queue.list_pending()] == [b, c]
        handlers["updateProfile"].assert_awaited_once_with({"step": "A"})
        handlers["createSession"].assert_not_awaited()
        assert any(
            getattr(record, "error_code", None) == "SYNC_HANDLER_FAILED"
            for record in caplog.records
        )

    @pytest.mark.asyncio
    async def test_handlers_run_sequentially_in_order(self, queue: OfflineQueue) -> None:
        order: list[int] = []
        running = 0

        async def handler(payload):
            nonlocal running
            running += 1
            assert running == 1
            await asyncio.sleep(0)
            order.append(payload["n"])
            running -= 1

        for n in range(4):
            await queue.enqueue("sendMessage", {"n": n})

        outcomes = await SyncEngine(queue, {"sendMessage": handler}).drain()

        assert order == [0, 1, 2, 3]
        assert all(outcome.succeeded for outcome in outcomes)
        assert queue.pending_count == 0

    @pytest.mark.asyncio
    async def test_missing_handler_halts_drain(self, queue: OfflineQueue) -> None:
        first = await queue.enqueue("unknownAction", {})
        await queue.enqueue("sendMessage", {})
        send = AsyncMock()

        outcomes = await SyncEngine(queue, {"sendMessage": send}).drain()

        assert len(outcomes) == 1
        assert outcomes[0].action_id == first
        assert isinstance(outcomes[0].error, SyncError)
        assert outcomes[0].error.code == ErrorCode.SYNC_HANDLER_MISSING
        send.assert_not_awaited()
        assert queue.pending_count == 2

    @pytest.mark.asyncio
    async def test_failed_action_retried_on_next_drain(self, queue: OfflineQueue) -> None:
        await queue.enqueue("sendMessage", {"text": "hi"})
        handler = AsyncMock(side_effect=[ConnectionError("offline"), None])
        engine = SyncEngine(queue, {"sendMessage": handler})

        assert not (await engine.drain())[0].succeeded
        assert (await engine.drain())[0].succeeded
        assert queue.pending_count == 0

    @pytest.mark.asyncio
    async def test_per_call_handlers_override_defaults(self, queue: OfflineQueue) -> None:
        await queue.enqueue("sendMessage", {})
        default = AsyncMock()
        override = AsyncMock()
        engine = SyncEngine(queue, {"sendMessage": default})

        await engine.drain({"sendMessage": override})

        override.assert_awaited_once()
        default.assert_not_awaited()


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_concurrent_drain_is_noop(self, queue: OfflineQueue) -> None:
        # Given: a drain blocked inside its first handler
        gate = asyncio.Event()

        async def wait_for_gate(payload):
            await gate.wait()

        handler = AsyncMock(side_effect=wait_for_gate)
        await queue.enqueue("sendMessage", {"n": 1})
        await queue.enqueue("sendMessage", {"n": 2})
        engine = SyncEngine(queue, {"sendMessage": handler})

        first = asyncio.create_task(engine.drain())
        for _ in range(5):
            await asyncio.sleep(0)
        assert engine.is_syncing

        # When
        second = await engine.drain()
        gate.set()
        outcomes = await first

        # Then
        assert second == []
        assert len(outcomes) == 2
        assert handler.await_count == 2
        assert not engine.is_syncing

    @pytest.mark.asyncio
    async def test_guard_released_when_drain_raises(self, queue: OfflineQueue, mocker) -> None:
        await queue.enqueue("sendMessage", {})
        engine = SyncEngine(queue, {"sendMessage": AsyncMock()})
        mocker.patch.object(queue, "remove_completed", side_effect=RuntimeError("boom"))

        with pytest.raises(RuntimeError):
            await engine.drain()

        assert not engine.is_syncing


class TestEngineState:
    @pytest.mark.asyncio
    async def test_last_sync_time_recorded(self, queue: OfflineQueue, clock: ManualClock) -> None:
        engine = SyncEngine(queue, clock=clock)
        assert engine.last_sync_time is None

        assert await engine.drain() == []

        assert engine.last_sync_time == clock.now()

    @pytest.mark.asyncio
    async def test_store_failure_after_success_keeps_outcomes(
        self, queue: OfflineQueue, memory_store: MemoryKeyValueStore, mocker, caplog
    ) -> None:
        # Given: the action was stored, then the backend starts failing
        action_id = await queue.enqueue("sendMessage", {"text": "hi"})
        mocker.patch.object(memory_store, "set", side_effect=RuntimeError("backend unavailable"))
        handler = AsyncMock()
        engine = SyncEngine(queue, {"sendMessage": handler})

        # When
        with caplog.at_level(logging.WARNING, logger="skillsync.sync.offline_queue"):
            outcomes = await engine.drain()

        # Then: the handler's work is reported and the failure is recorded
        assert outcomes == [SyncOutcome(action_id=action_id, succeeded=True)]
        handler.assert_awaited_once()
        assert queue.pending_count == 0
        assert queue.last_persist_error.code == ErrorCode.PERSISTENCE_WRITE_FAILED
        assert isinstance(queue.last_persist_error.original_error, RuntimeError)
        assert engine.last_sync_time is not None
        assert not engine.is_syncing
        assert "backend unavailable" in caplog.text

    @pytest.mark.asyncio
    async def test_pending_count_passthrough(self, queue: OfflineQueue) -> None:
        engine = SyncEngine(queue)
        await queue.enqueue("sendMessage", {})

        assert engine.pending_count == 1

    @pytest.mark.asyncio
    async def test_handler_receives_token(self, queue: OfflineQueue) -> None:
        received: list[CancellationToken] = []

        async def handler(payload, token):
            received.append(token)

        await queue.enqueue("sendMessage", {})
        engine = SyncEngine(queue)
        engine.register_handler("sendMessage", handler)

        await engine.drain()

        assert len(received) == 1
        assert not received[0].cancelled

    @pytest.mark.asyncio
    async def test_closed_engine_skips_drain(self, queue: OfflineQueue) -> None:
        await queue.enqueue("sendMessage", {})
        handler = AsyncMock()
        engine = SyncEngine(queue, {"sendMessage": handler})

        engine.close()

        assert await engine.drain() == []
        handler.assert_not_awaited()
