"""Tests for QueryExecutor and QuerySubscription."""

import asyncio
import logging
from unittest.mock import AsyncMock

import pytest

from skillsync.services.cache_models import Freshness
from skillsync.services.cache_store import CacheStore
from skillsync.services.query_executor import QueryExecutor, QueryOptions
from skillsync.services.retry_policy import RetryPolicy
from skillsync.services.state_machine import QueryState, QueryStatus
from skillsync.shared.cancellation import CancellationToken
from skillsync.shared.errors import DomainError, ErrorCode, SkillSyncError
from skillsync.shared.scheduling import ManualClock, VirtualScheduler

DASHBOARD = ("dashboard", "u42")


class TestFreshness:
    """Cache-first reads."""

    @pytest.mark.asyncio
    async def test_two_fetches_within_stale_window_call_fn_once(
        self, executor: QueryExecutor, clock: ManualClock
    ) -> None:
        # Given
        fn = AsyncMock(return_value={"matches": 3})
        first = executor.fetch(DASHBOARD, fn)
        await first.wait_settled()

        # When
        clock.advance(299)
        second = executor.fetch(DASHBOARD, fn)

        # Then: served synchronously from cache
        assert second.state.status == QueryStatus.SUCCESS
        assert second.data == {"matches": 3}
        assert not second.is_fetching
        assert fn.await_count == 1
        assert executor.network_calls == 1

    @pytest.mark.asyncio
    async def test_absent_entry_loads(self, executor: QueryExecutor, cache: CacheStore) -> None:
        fn = AsyncMock(return_value=[1, 2])
        sub = executor.fetch("skills", fn)

        assert sub.state.status == QueryStatus.LOADING
        assert sub.state.is_loading

        state = await sub.wait_settled()

        assert state.status == QueryStatus.SUCCESS
        assert state.data == [1, 2]
        assert cache.get("skills").value == [1, 2]

    @pytest.mark.asyncio
    async def test_result_cached_with_query_windows(
        self, executor: QueryExecutor, cache: CacheStore
    ) -> None:
        sub = executor.fetch("k", AsyncMock(return_value=1), stale_after=5, evict_after=50)
        await sub.wait_settled()

        entry = cache.get("k")
        assert (entry.stale_after, entry.evict_after) == (5, 50)

    def test_invalid_options_rejected(self, executor: QueryExecutor) -> None:
        with pytest.raises(DomainError) as exc_info:
            executor.fetch("k", AsyncMock(), stale_after=100, evict_after=10)
        assert exc_info.value.code == ErrorCode.INVALID_CACHE_POLICY

    @pytest.mark.asyncio
    async def test_sync_fetch_function_supported(self, executor: QueryExecutor) -> None:
        sub = executor.fetch("k", lambda: "plain")

        state = await sub.wait_settled()

        assert state.data == "plain"


class TestDashboardScenario:
    """120 s stale / 300 s evict dashboard query."""

    @pytest.mark.asyncio
    async def test_fresh_then_stale_while_revalidate(
        self, executor: QueryExecutor, clock: ManualClock, cache: CacheStore
    ) -> None:
        fn = AsyncMock(return_value={"matches": 3})
        options = {"stale_after": 120, "evict_after": 300}

        # t=0: network load
        first = executor.fetch(["dashboard", "u42"], fn, **options)
        assert (await first.wait_settled()).data == {"matches": 3}
        assert fn.await_count == 1

        # t=60: fresh, no call
        clock.advance(60)
        second = executor.fetch(["dashboard", "u42"], fn, **options)
        assert second.data == {"matches": 3}
        assert fn.await_count == 1

        # t=180: stale value returned immediately, refreshed in the background
        clock.advance(120)
        fn.return_value = {"matches": 4}
        third = executor.fetch(["dashboard", "u42"], fn, **options)
        assert third.state.status == QueryStatus.SUCCESS
        assert third.data == {"matches": 3}
        assert third.is_fetching
        assert not third.state.is_loading

        state = await third.wait_settled()
        assert fn.await_count == 2
        assert state.data == {"matches": 4}
        assert not state.is_fetching
        assert cache.freshness(DASHBOARD) is Freshness.FRESH

    @pytest.mark.asyncio
    async def test_background_refresh_failure_keeps_data(
        self, executor: QueryExecutor, clock: ManualClock, cache: CacheStore
    ) -> None:
        cache.set(DASHBOARD, {"matches": 3}, stale_after=120, evict_after=300)
        clock.advance(200)
        error = RuntimeError("offline")

        sub = executor.fetch(DASHBOARD, AsyncMock(side_effect=error), retry_limit=0)
        state = await sub.wait_settled()

        assert state.status == QueryStatus.ERROR
        assert state.error is error
        assert state.data == {"matches": 3}


class TestBoundedRetry:
    """Exponential backoff with a retry limit."""

    @pytest.mark.asyncio
    async def test_recovers_within_limit(
        self, executor: QueryExecutor, scheduler: VirtualScheduler
    ) -> None:
        # Given: two failures, then success
        fn = AsyncMock(side_effect=[RuntimeError("e1"), RuntimeError("e2"), {"ok": True}])
        sub = executor.fetch("k", fn, retry_limit=3)
        await scheduler.settle()

        # Then: first retry scheduled after 2 s
        assert fn.await_count == 1
        assert sub.state.status == QueryStatus.LOADING
        assert sub.state.retry_count == 1
        assert sub.is_fetching and not sub.state.is_loading

        await scheduler.advance(1)
        assert fn.await_count == 1
        await scheduler.advance(1)
        assert fn.await_count == 2

        # Second retry waits 4 s
        await scheduler.advance(4)
        assert fn.await_count == 3

        state = await sub.wait_settled()
        assert state.status == QueryStatus.SUCCESS
        assert state.retry_count == 0
        assert state.data == {"ok": True}
        assert scheduler.sleep_calls == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_exhausted_retries_enter_error(
        self, executor: QueryExecutor, scheduler: VirtualScheduler, caplog
    ) -> None:
        errors = [RuntimeError(f"e{i}") for i in range(5)]
        fn = AsyncMock(side_effect=errors)
        sub = executor.fetch("k", fn, retry_limit=2)

        with caplog.at_level(logging.WARNING, logger="skillsync.services.query_executor"):
            await scheduler.advance(60)

        state = sub.state
        assert state.status == QueryStatus.ERROR
        assert state.error is errors[2]
        assert state.retry_count == 2
        assert fn.await_count == 3
        assert scheduler.sleep_calls == [2.0, 4.0]
        assert any(
            getattr(record, "error_code", None) == "QUERY_RETRIES_EXHAUSTED"
            for record in caplog.records
        )

    @pytest.mark.asyncio
    async def test_zero_retry_limit_fails_immediately(
        self, executor: QueryExecutor, scheduler: VirtualScheduler
    ) -> None:
        sub = executor.fetch("k", AsyncMock(side_effect=RuntimeError("x")), retry_limit=0)

        state = await sub.wait_settled()

        assert state.status == QueryStatus.ERROR
        assert scheduler.sleep_calls == []

    @pytest.mark.asyncio
    async def test_classified_errors_skip_retry(
        self, cache: CacheStore, scheduler: VirtualScheduler
    ) -> None:
        executor = QueryExecutor(
            cache, scheduler=scheduler, retry_policy=RetryPolicy(classify_errors=True)
        )
        fn = AsyncMock(side_effect=ValueError("invalid payload"))

        state = await executor.fetch("k", fn).wait_settled()

        assert state.status == QueryStatus.ERROR
        assert fn.await_count == 1
        assert scheduler.sleep_calls == []

    @pytest.mark.asyncio
    async def test_refetch_resets_retry_count(
        self, executor: QueryExecutor, scheduler: VirtualScheduler
    ) -> None:
        fn = AsyncMock(side_effect=[RuntimeError("e1"), "value"])
        sub = executor.fetch("k", fn)
        await scheduler.settle()
        assert sub.state.retry_count == 1

        # Manual refetch drops the pending retry and starts over
        sub.refetch()
        state = await sub.wait_settled()

        assert state.status == QueryStatus.SUCCESS
        assert state.retry_count == 0
        assert scheduler.pending == 0
        assert fn.await_count == 2


class TestRefetchAndEnable:
    @pytest.mark.asyncio
    async def test_refetch_bypasses_freshness(self, executor: QueryExecutor) -> None:
        fn = AsyncMock(side_effect=["v1", "v2"])
        sub = executor.fetch("k", fn)
        await sub.wait_settled()

        sub.refetch()
        assert sub.state.status == QueryStatus.LOADING
        assert sub.data == "v1"
        assert sub.state.is_fetching and not sub.state.is_loading
        state = await sub.wait_settled()

        assert state.data == "v2"
        assert fn.await_count == 2

    @pytest.mark.asyncio
    async def test_disabled_query_stays_idle(self, executor: QueryExecutor) -> None:
        fn = AsyncMock(return_value="v")
        sub = executor.fetch("k", fn, enabled=False)

        assert sub.state.status == QueryStatus.IDLE
        assert fn.await_count == 0

        sub.set_enabled(True)
        state = await sub.wait_settled()

        assert state.data == "v"

    @pytest.mark.asyncio
    async def test_disable_drops_pending_retry(
        self, executor: QueryExecutor, scheduler: VirtualScheduler
    ) -> None:
        fn = AsyncMock(side_effect=RuntimeError("down"))
        sub = executor.fetch("k", fn)
        await scheduler.settle()
        assert scheduler.pending == 1

        sub.set_enabled(False)
        await scheduler.advance(100)

        assert sub.state.status == QueryStatus.IDLE
        assert fn.await_count == 1

    @pytest.mark.asyncio
    async def test_refetch_active_respects_freshness(
        self, executor: QueryExecutor, clock: ManualClock
    ) -> None:
        fresh_fn = AsyncMock(return_value="fresh")
        stale_fn = AsyncMock(return_value="stale")
        fresh = executor.fetch("fresh", fresh_fn, stale_after=1000, evict_after=2000)
        stale = executor.fetch("stale", stale_fn, stale_after=10, evict_after=2000)
        await fresh.wait_settled()
        await stale.wait_settled()
        clock.advance(20)

        assert executor.refetch_active() == 2
        await fresh.wait_settled()
        await stale.wait_settled()

        assert fresh_fn.await_count == 1
        assert stale_fn.await_count == 2

    @pytest.mark.asyncio
    async def test_refetch_active_force(self, executor: QueryExecutor) -> None:
        fn = AsyncMock(return_value="v")
        sub = executor.fetch("k", fn)
        await sub.wait_settled()

        executor.refetch_active(force=True)
        await sub.wait_settled()

        assert fn.await_count == 2


class TestListeners:
    @pytest.mark.asyncio
    async def test_subscribe_receives_transitions(self, executor: QueryExecutor) -> None:
        seen: list[QueryState] = []
        sub = executor.fetch("k", AsyncMock(return_value="v"))

        unsubscribe = sub.subscribe(seen.append)
        await sub.wait_settled()
        unsubscribe()
        sub.refetch()
        await sub.wait_settled()

        assert [state.status for state in seen] == [QueryStatus.LOADING, QueryStatus.SUCCESS]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_query(
        self, executor: QueryExecutor, caplog
    ) -> None:
        sub = executor.fetch("k", AsyncMock(return_value="v"))

        def broken(state: QueryState) -> None:
            raise RuntimeError("listener bug")

        sub.subscribe(broken, emit_current=False)
        state = await sub.wait_settled()

        assert state.data == "v"
        assert "Query listener failed" in caplog.text


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_overlapping_fetches_not_coalesced(
        self, executor: QueryExecutor, scheduler: VirtualScheduler
    ) -> None:
        gate = asyncio.Event()
        calls = 0

        async def fn():
            nonlocal calls
            calls += 1
            await gate.wait()
            return calls

        first = executor.fetch("k", fn)
        second = executor.fetch("k", fn)
        await scheduler.settle()
        gate.set()
        await first.wait_settled()
        await second.wait_settled()

        assert calls == 2
        assert executor.network_calls == 2

    @pytest.mark.asyncio
    async def test_coalesce_shares_one_call(
        self, executor: QueryExecutor, scheduler: VirtualScheduler
    ) -> None:
        gate = asyncio.Event()

        async def wait_for_gate():
            await gate.wait()
            return "shared"

        fn = AsyncMock(side_effect=wait_for_gate)

        first = executor.fetch("k", fn, coalesce=True)
        second = executor.fetch("k", fn, coalesce=True)
        await scheduler.settle()
        gate.set()

        assert (await first.wait_settled()).status == QueryStatus.SUCCESS
        assert (await second.wait_settled()).status == QueryStatus.SUCCESS
        assert fn.await_count == 1
        assert executor.network_calls == 1


class TestCancellation:
    @pytest.mark.asyncio
    async def test_closed_subscription_result_not_cached(
        self, executor: QueryExecutor, cache: CacheStore, scheduler: VirtualScheduler
    ) -> None:
        # Given: a fetch blocked in flight
        gate = asyncio.Event()
        tokens: list[CancellationToken] = []

        async def fn(token: CancellationToken):
            tokens.append(token)
            await gate.wait()
            return "late"

        sub = executor.fetch("k", fn)
        await scheduler.settle()

        # When: the consumer unmounts before the result arrives
        sub.close()
        gate.set()
        await scheduler.settle()

        # Then
        assert tokens[0].cancelled
        assert "k" not in cache
        assert sub.closed
        assert sub not in executor.active_subscriptions

    @pytest.mark.asyncio
    async def test_close_drops_pending_retry(
        self, executor: QueryExecutor, scheduler: VirtualScheduler
    ) -> None:
        fn = AsyncMock(side_effect=RuntimeError("down"))
        sub = executor.fetch("k", fn)
        await scheduler.settle()

        sub.close()
        await scheduler.advance(100)

        assert fn.await_count == 1

    @pytest.mark.asyncio
    async def test_closed_executor_rejects_fetch(self, executor: QueryExecutor) -> None:
        sub = executor.fetch("k", AsyncMock(return_value=1))
        await executor.close()

        assert sub.closed
        with pytest.raises(SkillSyncError) as exc_info:
            executor.fetch("k", AsyncMock())
        assert exc_info.value.code == ErrorCode.SESSION_CLOSED


class TestPrefetch:
    @pytest.mark.asyncio
    async def test_prefetch_warms_cache(self, executor: QueryExecutor, cache: CacheStore) -> None:
        fn = AsyncMock(return_value="warm")

        assert await executor.prefetch("k", fn) is True
        assert await executor.prefetch("k", fn) is False
        assert cache.get("k").value == "warm"
        assert fn.await_count == 1

    @pytest.mark.asyncio
    async def test_prefetch_failure_is_logged(self, executor: QueryExecutor, caplog) -> None:
        fn = AsyncMock(side_effect=ConnectionError("offline"))

        with caplog.at_level(logging.WARNING):
            assert await executor.prefetch("k", fn) is False

        assert "Prefetch failed" in caplog.text

    @pytest.mark.asyncio
    async def test_invalidate_forces_reload(
        self, executor: QueryExecutor, cache: CacheStore
    ) -> None:
        fn = AsyncMock(return_value="v")
        await executor.fetch(("chats", "c1"), fn).wait_settled()

        assert executor.invalidate_matching("chats") == 1
        sub = executor.fetch(("chats", "c1"), fn)

        assert sub.state.status == QueryStatus.LOADING
        await sub.wait_settled()
        assert fn.await_count == 2


def test_default_options_follow_cache_windows(scheduler: VirtualScheduler) -> None:
    cache = CacheStore(scheduler=scheduler, default_stale_after=30, default_evict_after=90)
    executor = QueryExecutor(cache)

    assert executor.default_options == QueryOptions(stale_after=30, evict_after=90, retry_limit=3)
    assert executor.scheduler is scheduler
