"""Cache-first query executor with bounded exponential-backoff retry.

``QueryExecutor.fetch`` binds a query key to a fetch function and returns a
:class:`QuerySubscription` whose :class:`QueryState` is updated as the
load progresses:

- a FRESH cache entry is served immediately without calling the fetch
  function;
- a STALE entry is served immediately while a silent background refresh
  runs (``is_fetching=True``, ``is_loading=False``);
- otherwise the fetch function is called, retried up to ``retry_limit``
  times with a ``2 ** retry_count`` second backoff, and the result is
  written back to the CacheStore.

Overlapping fetches for the same key are not coalesced unless
``coalesce=True`` is set on the query; both call the fetch function and the
last one to resolve wins the cache write.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Union

from skillsync.services.cache_models import (
    Freshness,
    QueryKey,
    QueryKeyLike,
    format_key,
    normalize_key,
)
from skillsync.services.cache_store import CacheStore
from skillsync.services.retry_policy import RetryPolicy
from skillsync.services.state_machine import QueryState, QueryStateMachine
from skillsync.shared.cancellation import CancellationToken, call_with_token
from skillsync.shared.constants import QueryCacheConfig, RetryConfig
from skillsync.shared.errors import (
    CancelledOperationError,
    ErrorCode,
    ErrorContext,
    QueryError,
    SkillSyncError,
    create_validation_error,
)
from skillsync.shared.logging import (
    log_operation_error,
    log_operation_start,
    log_operation_success,
)
from skillsync.shared.scheduling import Scheduler

logger = logging.getLogger(__name__)

FetchFn = Callable[..., Union[Awaitable[Any], Any]]
StateListener = Callable[[QueryState], None]


@dataclass(frozen=True)
class QueryOptions:
    """Per-query cache and retry options.

    Attributes:
        stale_after: Seconds a cached value is served without refetching
        evict_after: Seconds before the cached value is swept away
        retry_limit: Retries after the first failed attempt
        enabled: Start loading as soon as the subscription is created
        coalesce: Share one in-flight call among concurrent same-key fetches
    """

    stale_after: float = QueryCacheConfig.DEFAULT_STALE_AFTER
    evict_after: float = QueryCacheConfig.DEFAULT_EVICT_AFTER
    retry_limit: int = RetryConfig.DEFAULT_RETRY_LIMIT
    enabled: bool = True
    coalesce: bool = False

    def __post_init__(self) -> None:
        if self.stale_after > self.evict_after:
            raise create_validation_error(
                f"stale_after ({self.stale_after}) must not exceed "
                f"evict_after ({self.evict_after})",
                field="stale_after",
                operation="query_options",
                code=ErrorCode.INVALID_CACHE_POLICY,
            )
        if self.retry_limit < 0:
            raise create_validation_error(
                f"retry_limit must be non-negative, got {self.retry_limit}",
                field="retry_limit",
                operation="query_options",
            )


class QuerySubscription:
    """Live binding of one query key to a fetch function.

    Consumers read :attr:`state`, register listeners with :meth:`subscribe`,
    and drive the query with :meth:`refetch`, :meth:`set_enabled` and
    :meth:`close`.
    """

    def __init__(
        self,
        executor: QueryExecutor,
        key: QueryKey,
        fn: FetchFn,
        options: QueryOptions,
        retry_policy: RetryPolicy,
    ) -> None:
        self.key = key
        self.fn = fn
        self.options = options
        self.retry_policy = retry_policy
        self._executor = executor
        self._machine = QueryStateMachine(executor.scheduler.clock, self._notify)
        self._listeners: list[StateListener] = []
        self._token = CancellationToken()
        self._enabled = options.enabled
        self._closed = False
        self._generation = 0
        self._task: asyncio.Task[None] | None = None
        self._waiting_retry = False
        self._settled = asyncio.Event()
        self._settled.set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> QueryState:
        return self._machine.state

    @property
    def data(self) -> Any:
        return self._machine.state.data

    @property
    def is_fetching(self) -> bool:
        return self._machine.state.is_fetching

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def token(self) -> CancellationToken:
        return self._token

    def subscribe(self, listener: StateListener, *, emit_current: bool = True) -> Callable[[], None]:
        """Register ``listener`` for every new state.

        Returns:
            Callable that removes the listener.
        """
        self._listeners.append(listener)
        if emit_current:
            listener(self.state)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return unsubscribe

    def refetch(self) -> None:
        """Reset the retry counter and hit the network, ignoring freshness."""
        self._start(force=True)

    def set_enabled(self, enabled: bool) -> None:
        """Enable (triggering a load) or disable (returning to IDLE) the query."""
        if self._closed or enabled == self._enabled:
            return
        self._enabled = enabled
        if enabled:
            self._start(force=False)
            return
        self._generation += 1
        self._cancel_pending_retry()
        self._machine.to_idle()
        self._settled.set()

    async def wait_settled(self) -> QueryState:
        """Wait until no attempt or retry is outstanding and return the state."""
        await self._settled.wait()
        return self.state

    def close(self) -> None:
        """Tear the subscription down.

        The cancellation token is cancelled and pending retries are dropped.
        An attempt already in flight still runs to completion, but its result
        is discarded instead of being written to the cache.
        """
        if self._closed:
            return
        self._closed = True
        self._generation += 1
        self._token.cancel("subscription closed")
        self._cancel_pending_retry()
        self._listeners.clear()
        self._settled.set()
        self._executor._forget(self)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _notify(self, state: QueryState) -> None:
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception(
                    "Query listener failed for %s", format_key(self.key)
                )

    def _cancel_pending_retry(self) -> None:
        if self._task is not None and not self._task.done() and self._waiting_retry:
            self._task.cancel()

    def _start(self, *, force: bool) -> None:
        if self._closed or not self._enabled:
            return

        self._generation += 1
        self._cancel_pending_retry()

        if not force:
            entry, freshness = self._executor.cache.lookup(self.key)
            if entry is not None and freshness is Freshness.FRESH:
                self._machine.serve_cached(entry.value)
                self._settled.set()
                return
            if entry is not None and freshness is Freshness.STALE:
                self._machine.serve_cached(entry.value, refreshing=True)
                self._launch(background=True)
                return

        self._machine.begin_load()
        self._launch(background=False)

    def _launch(self, *, background: bool) -> None:
        self._settled.clear()
        generation = self._generation
        self._task = asyncio.get_running_loop().create_task(
            self._run(generation, background=background),
            name=f"skillsync-query-{format_key(self.key)}",
        )

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and not self._closed

    async def _run(self, generation: int, *, background: bool) -> None:
        key_label = format_key(self.key)
        try:
            while True:
                try:
                    value = await self._executor._fetch_once(
                        self.key, self.fn, self._token, self.options
                    )
                except Exception as error:
                    if isinstance(error, CancelledOperationError) and self._token.cancelled:
                        logger.debug("Discarded cancelled fetch for %s", key_label)
                        return
                    if not self._is_current(generation):
                        return
                    if not self.retry_policy.should_retry(self._machine.retry_count, error):
                        self._fail(error, background=background)
                        return

                    self._machine.schedule_retry()
                    delay = self.retry_policy.delay_for(self._machine.retry_count)
                    logger.warning(
                        "Fetch for %s failed (%s); retry %d/%d in %.1fs",
                        key_label,
                        type(error).__name__,
                        self._machine.retry_count,
                        self.retry_policy.retry_limit,
                        delay,
                    )
                    self._waiting_retry = True
                    try:
                        await self._executor.scheduler.sleep(delay)
                    finally:
                        self._waiting_retry = False
                    if not self._is_current(generation):
                        return
                    continue

                if self._is_current(generation):
                    self._machine.succeed(value)
                return
        finally:
            if generation == self._generation:
                self._settled.set()

    def _fail(self, error: BaseException, *, background: bool) -> None:
        exhausted = self._machine.retry_count >= self.retry_policy.retry_limit
        query_error = QueryError(
            code=ErrorCode.QUERY_RETRIES_EXHAUSTED if exhausted else ErrorCode.QUERY_NOT_RETRYABLE,
            message=f"Query {format_key(self.key)} failed: {error}",
            context=ErrorContext(
                operation="query_fetch",
                query_key=format_key(self.key),
                additional_data={
                    "retry_count": self._machine.retry_count,
                    "retry_limit": self.retry_policy.retry_limit,
                    "background": background,
                    "error_type": type(error).__name__,
                },
            ),
            original_error=error,
        )
        log_operation_error(logger=logger, error=query_error, operation="query_fetch")
        self._machine.fail(error)


class QueryExecutor:
    """Creates query subscriptions over a borrowed CacheStore.

    Args:
        cache: CacheStore shared by every query of the session
        scheduler: Scheduler for backoff delays (defaults to the cache's)
        retry_policy: Backoff shape; ``retry_limit`` is taken per query
        default_options: Options used when ``fetch`` is called without any
    """

    def __init__(
        self,
        cache: CacheStore,
        scheduler: Scheduler | None = None,
        retry_policy: RetryPolicy | None = None,
        default_options: QueryOptions | None = None,
    ) -> None:
        self.cache = cache
        self.scheduler: Scheduler = scheduler or cache.scheduler
        self.retry_policy = retry_policy or RetryPolicy()
        self.default_options = default_options or QueryOptions(
            stale_after=cache.default_stale_after,
            evict_after=cache.default_evict_after,
            retry_limit=self.retry_policy.retry_limit,
        )
        self._subscriptions: list[QuerySubscription] = []
        self._inflight: dict[QueryKey, asyncio.Task[Any]] = {}
        self._shared_token = CancellationToken()
        self._closed = False
        self.network_calls = 0

    @property
    def active_subscriptions(self) -> list[QuerySubscription]:
        return list(self._subscriptions)

    def fetch(
        self,
        key: QueryKeyLike,
        fn: FetchFn,
        options: QueryOptions | None = None,
        **overrides: Any,
    ) -> QuerySubscription:
        """Bind ``key`` to ``fn`` and start loading when enabled.

        Keyword overrides (``stale_after``, ``evict_after``, ``retry_limit``,
        ``enabled``, ``coalesce``) are applied on top of ``options``.

        Raises:
            SkillSyncError: If the executor has been closed.
            DomainError: If the key or options are invalid.
        """
        if self._closed:
            raise SkillSyncError(
                ErrorCode.SESSION_CLOSED,
                "QueryExecutor is closed",
                ErrorContext(operation="query_fetch"),
            )

        normalized = normalize_key(key)
        resolved = replace(options or self.default_options, **overrides)
        policy = replace(self.retry_policy, retry_limit=resolved.retry_limit)

        subscription = QuerySubscription(self, normalized, fn, resolved, policy)
        self._subscriptions.append(subscription)
        if resolved.enabled:
            subscription._start(force=False)
        return subscription

    async def prefetch(
        self,
        key: QueryKeyLike,
        fn: FetchFn,
        stale_after: float | None = None,
        evict_after: float | None = None,
    ) -> bool:
        """Warm the cache for ``key`` unless a fresh entry already exists.

        Failures are logged and never raised.

        Returns:
            True if the fetch function was called and succeeded.
        """
        normalized = normalize_key(key)
        if self.cache.freshness(normalized) is Freshness.FRESH:
            return False

        options = replace(
            self.default_options,
            stale_after=self.default_options.stale_after if stale_after is None else stale_after,
            evict_after=self.default_options.evict_after if evict_after is None else evict_after,
        )
        try:
            await self._fetch_once(normalized, fn, CancellationToken(), options)
        except Exception as error:
            log_operation_error(
                logger=logger,
                error=QueryError(
                    ErrorCode.QUERY_FAILED,
                    f"Prefetch failed for {format_key(normalized)}: {error}",
                    ErrorContext(operation="query_prefetch", query_key=format_key(normalized)),
                    original_error=error,
                ),
                level=logging.WARNING,
            )
            return False
        return True

    def invalidate(self, key: QueryKeyLike) -> bool:
        return self.cache.invalidate(key)

    def invalidate_matching(self, prefix: QueryKeyLike) -> int:
        return self.cache.invalidate_matching(prefix)

    def refetch_active(self, *, force: bool = False) -> int:
        """Re-run every enabled, idle-network subscription.

        Without ``force`` the freshness check still applies, so only stale
        or missing queries hit the network (refetch on app focus).

        Returns:
            Number of subscriptions re-triggered.
        """
        triggered = 0
        for subscription in self.active_subscriptions:
            if not subscription.enabled or subscription.is_fetching:
                continue
            subscription._start(force=force)
            triggered += 1
        return triggered

    async def close(self) -> None:
        """Close every subscription and stop accepting new queries."""
        self._closed = True
        for subscription in self.active_subscriptions:
            subscription.close()
        self._shared_token.cancel("executor closed")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _forget(self, subscription: QuerySubscription) -> None:
        with contextlib.suppress(ValueError):
            self._subscriptions.remove(subscription)

    async def _fetch_once(
        self,
        key: QueryKey,
        fn: FetchFn,
        token: CancellationToken,
        options: QueryOptions,
    ) -> Any:
        """Run one attempt and write the result into the cache."""
        if options.coalesce:
            task = self._inflight.get(key)
            if task is None:
                task = asyncio.get_running_loop().create_task(
                    self._call_and_store(key, fn, self._shared_token, options)
                )
                self._inflight[key] = task

                def _release(done: asyncio.Task[Any], key: QueryKey = key) -> None:
                    if self._inflight.get(key) is done:
                        del self._inflight[key]

                task.add_done_callback(_release)
            else:
                logger.debug("Joined in-flight fetch for %s", format_key(key))
            value = await asyncio.shield(task)
            token.raise_if_cancelled()
            return value

        return await self._call_and_store(key, fn, token, options)

    async def _call_and_store(
        self,
        key: QueryKey,
        fn: FetchFn,
        token: CancellationToken,
        options: QueryOptions,
    ) -> Any:
        key_label = format_key(key)
        log_operation_start(logger, "query_fetch", {"query_key": key_label})
        started = time.perf_counter()
        self.network_calls += 1

        value = await call_with_token(fn, token)

        # Results for a cancelled token are never cached.
        token.raise_if_cancelled()
        self.cache.set(key, value, options.stale_after, options.evict_after)
        log_operation_success(
            logger=logger,
            operation="query_fetch",
            duration_ms=(time.perf_counter() - started) * 1000,
            context={"query_key": key_label},
        )
        return value
