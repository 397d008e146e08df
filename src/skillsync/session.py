"""Session lifecycle: explicit construction and teardown of sync components.

A :class:`SyncSession` owns one CacheStore and one OfflineQueue for the
lifetime of an application session, plus the QueryExecutor, SyncEngine and
SyncTriggers that borrow them.

Example:
    >>> async with SyncSession(settings, store=store, handlers=handlers) as session:
    ...     sub = session.executor.fetch(("dashboard", "u42"), load_dashboard)
    ...     await session.queue.enqueue("sendMessage", {"chatId": "c1", "text": "hi"})
    ...     await session.triggers.set_online(True)
"""

from __future__ import annotations

import logging
from types import TracebackType
from typing import Any

from skillsync.config.models.settings import Settings
from skillsync.services.cache_store import CacheStore
from skillsync.services.query_executor import QueryExecutor, QueryOptions
from skillsync.services.retry_policy import RetryPolicy
from skillsync.shared.errors import ErrorCode, ErrorContext, SkillSyncError
from skillsync.shared.logging import setup_structured_logger
from skillsync.shared.scheduling import AsyncioScheduler, Scheduler
from skillsync.storage.kv_store import FileKeyValueStore, KeyValueStore, MemoryKeyValueStore
from skillsync.sync.offline_queue import OfflineQueue
from skillsync.sync.sync_engine import HandlerMap, SyncEngine, SyncOutcome
from skillsync.sync.triggers import ConnectivityMonitor, ConnectivityProbe, SyncTriggers

logger = logging.getLogger(__name__)


def build_store(settings: Settings) -> KeyValueStore:
    """File-backed store under ``queue.storage_dir``, else an in-memory one."""
    if settings.queue.storage_dir is not None:
        return FileKeyValueStore(settings.queue.storage_dir)
    logger.warning("No queue storage_dir configured; offline actions are not durable")
    return MemoryKeyValueStore()


class SyncSession:
    """Owns the cache, queue and their consumers for one application session.

    Args:
        settings: Configuration (defaults read from the environment)
        store: Key-value store for the queue (defaults per ``build_store``)
        scheduler: Scheduler shared by cache sweeps, retries and polling
        handlers: ``action_type`` → handler map for drains
        probe: Connectivity probe; when given, a ConnectivityMonitor polls it
        is_online: Initial connectivity
    """

    def __init__(
        self,
        settings: Settings | None = None,
        store: KeyValueStore | None = None,
        scheduler: Scheduler | None = None,
        handlers: HandlerMap | None = None,
        probe: ConnectivityProbe | None = None,
        *,
        is_online: bool = True,
    ) -> None:
        self.settings = settings or Settings()
        self.scheduler: Scheduler = scheduler or AsyncioScheduler()
        self.store: KeyValueStore = store if store is not None else build_store(self.settings)

        cache_settings = self.settings.cache
        query_settings = self.settings.query
        self.cache = CacheStore(
            scheduler=self.scheduler,
            default_stale_after=cache_settings.stale_after,
            default_evict_after=cache_settings.evict_after,
            sweep_interval=cache_settings.sweep_interval,
        )
        retry_policy = RetryPolicy(
            retry_limit=query_settings.retry_limit,
            backoff_base=query_settings.backoff_base,
            max_backoff=query_settings.max_backoff,
            classify_errors=query_settings.classify_errors,
        )
        self.executor = QueryExecutor(
            self.cache,
            scheduler=self.scheduler,
            retry_policy=retry_policy,
            default_options=QueryOptions(
                stale_after=cache_settings.stale_after,
                evict_after=cache_settings.evict_after,
                retry_limit=query_settings.retry_limit,
                coalesce=query_settings.coalesce,
            ),
        )

        # Queue timestamps are persisted, so they use the scheduler's clock
        # which is wall time outside tests.
        self.queue = OfflineQueue(
            self.store,
            storage_key=self.settings.queue.storage_key,
            clock=self.scheduler.clock,
        )
        self.engine = SyncEngine(self.queue, handlers, clock=self.scheduler.clock)
        self.triggers = SyncTriggers(
            self.engine,
            self.executor,
            is_online=is_online,
            drain_on_reconnect=self.settings.sync.drain_on_reconnect,
            drain_on_foreground=self.settings.sync.drain_on_foreground,
            refetch_on_foreground=query_settings.refetch_on_foreground,
        )
        self.monitor: ConnectivityMonitor | None = (
            ConnectivityMonitor(
                self.triggers,
                probe,
                scheduler=self.scheduler,
                interval=self.settings.sync.connectivity_poll_interval,
            )
            if probe is not None
            else None
        )
        self._started = False
        self._closed = False

    @property
    def started(self) -> bool:
        return self._started

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> SyncSession:
        """Load the persisted queue and start background tasks."""
        if self._closed:
            raise SkillSyncError(
                ErrorCode.SESSION_CLOSED,
                "Cannot start a closed session",
                ErrorContext(operation="session_start"),
            )
        if self._started:
            return self

        log_settings = self.settings.logging
        if log_settings.configure:
            setup_structured_logger(
                level=log_settings.level,
                log_file=log_settings.file,
                use_rich_console=log_settings.console_output,
            )

        await self.queue.load_from_storage()
        self.cache.start_sweeper()
        if self.monitor is not None:
            self.monitor.start()
        self._started = True
        logger.info(
            "Sync session started with %d pending offline action(s)",
            self.queue.pending_count,
        )
        return self

    async def drain(self) -> list[SyncOutcome]:
        """Drain the offline queue now.

        Raises:
            SkillSyncError: If the session has not been started.
        """
        if not self._started or self._closed:
            raise SkillSyncError(
                ErrorCode.SESSION_NOT_STARTED,
                "Session must be started before draining",
                ErrorContext(operation="session_drain"),
            )
        return await self.engine.drain()

    async def close(self) -> None:
        """Stop background tasks and close every query subscription."""
        if self._closed:
            return
        self._closed = True
        if self.monitor is not None:
            await self.monitor.stop()
        await self.executor.close()
        await self.cache.close()
        self.engine.close()
        logger.info("Sync session closed")

    async def __aenter__(self) -> SyncSession:
        return await self.start()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    def stats(self) -> dict[str, Any]:
        """Diagnostic snapshot of the session's components."""
        return {
            "cache": self.cache.stats.to_dict(),
            "cache_entries": len(self.cache),
            "network_calls": self.executor.network_calls,
            "active_queries": len(self.executor.active_subscriptions),
            "pending_actions": self.queue.pending_count,
            "queue_durable": self.queue.is_durable,
            "is_syncing": self.engine.is_syncing,
            "last_sync_time": self.engine.last_sync_time,
            "is_online": self.triggers.is_online,
        }
