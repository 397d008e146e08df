"""In-memory query cache with staleness and eviction policy.

CacheStore maps a normalized query key to a :class:`CacheEntry`. Each entry
carries its own ``stale_after``/``evict_after`` windows; a background sweep
task removes entries whose eviction window has passed. One CacheStore is
owned per application session (see ``skillsync.session``) and borrowed by
every QueryExecutor of that session.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Iterator

from skillsync.services.cache_models import (
    CacheEntry,
    CacheStats,
    Freshness,
    QueryKey,
    QueryKeyLike,
    format_key,
    normalize_key,
)
from skillsync.shared.constants import QueryCacheConfig
from skillsync.shared.logging import log_operation_success
from skillsync.shared.scheduling import AsyncioScheduler, Scheduler

logger = logging.getLogger(__name__)

MIN_SWEEP_INTERVAL = 1.0


class CacheStore:
    """Key → CacheEntry table owning the staleness/eviction policy.

    Args:
        scheduler: Scheduler used for the clock and the sweep timer.
        default_stale_after: Window used when ``set`` is called without one.
        default_evict_after: Window used when ``set`` is called without one,
            and the sweep period when the store is empty.
        sweep_interval: Fixed sweep period. When None the period follows the
            smallest ``evict_after`` currently held.
    """

    def __init__(
        self,
        scheduler: Scheduler | None = None,
        default_stale_after: float = QueryCacheConfig.DEFAULT_STALE_AFTER,
        default_evict_after: float = QueryCacheConfig.DEFAULT_EVICT_AFTER,
        sweep_interval: float | None = None,
    ) -> None:
        self.scheduler: Scheduler = scheduler or AsyncioScheduler()
        self.default_stale_after = default_stale_after
        self.default_evict_after = default_evict_after
        self.sweep_interval = sweep_interval
        self.stats = CacheStats()
        self._entries: dict[QueryKey, CacheEntry] = {}
        self._sweeper: asyncio.Task[None] | None = None

    def now(self) -> float:
        return self.scheduler.clock.now()

    # ------------------------------------------------------------------
    # Core contract
    # ------------------------------------------------------------------

    def get(self, key: QueryKeyLike) -> CacheEntry | None:
        """Return the entry for ``key`` or None. No side effects."""
        return self._entries.get(normalize_key(key))

    def set(
        self,
        key: QueryKeyLike,
        value: Any,
        stale_after: float | None = None,
        evict_after: float | None = None,
    ) -> CacheEntry:
        """Store ``value`` under ``key``, replacing any existing entry.

        Raises:
            DomainError: If ``stale_after > evict_after``.
        """
        normalized = normalize_key(key)
        entry = CacheEntry(
            key=normalized,
            value=value,
            written_at=self.now(),
            stale_after=self.default_stale_after if stale_after is None else stale_after,
            evict_after=self.default_evict_after if evict_after is None else evict_after,
        )
        self._entries[normalized] = entry
        self.stats.writes += 1

        log_operation_success(
            logger=logger,
            operation="cache_set",
            duration_ms=0,
            context={
                "query_key": format_key(normalized),
                "stale_after": entry.stale_after,
                "evict_after": entry.evict_after,
            },
        )
        return entry

    def invalidate(self, key: QueryKeyLike) -> bool:
        """Remove the entry for ``key`` unconditionally.

        Returns:
            True if an entry was removed.
        """
        normalized = normalize_key(key)
        removed = self._entries.pop(normalized, None) is not None
        if removed:
            self.stats.invalidations += 1
            logger.debug("Invalidated cache entry %s", format_key(normalized))
        return removed

    def sweep(self, now: float | None = None) -> int:
        """Remove every entry whose ``written_at + evict_after < now``.

        Each entry is judged against its own ``evict_after``.

        Returns:
            Number of entries removed.
        """
        current = self.now() if now is None else now
        expired = [
            key for key, entry in self._entries.items() if entry.is_evictable(current)
        ]
        for key in expired:
            del self._entries[key]

        self.stats.sweeps += 1
        self.stats.evictions += len(expired)
        if expired:
            logger.debug("Cache sweep evicted %d entries", len(expired))
        return len(expired)

    def freshness(self, key: QueryKeyLike, now: float | None = None) -> Freshness:
        """Classify ``key`` as FRESH, STALE or ABSENT."""
        entry = self.get(key)
        if entry is None:
            return Freshness.ABSENT
        return entry.freshness(self.now() if now is None else now)

    def lookup(self, key: QueryKeyLike) -> tuple[CacheEntry | None, Freshness]:
        """Return the entry with its freshness and record hit/miss counters.

        An entry past its eviction window that has not been swept yet is
        reported as ABSENT together with ``None``.
        """
        entry = self.get(key)
        freshness = Freshness.ABSENT if entry is None else entry.freshness(self.now())

        if freshness is Freshness.FRESH:
            self.stats.hits += 1
        elif freshness is Freshness.STALE:
            self.stats.stale_hits += 1
        else:
            self.stats.misses += 1
            entry = None
        return entry, freshness

    # ------------------------------------------------------------------
    # Bulk operations
    # ------------------------------------------------------------------

    def invalidate_matching(self, prefix: QueryKeyLike) -> int:
        """Remove every entry whose key starts with the parts of ``prefix``.

        Example:
            >>> store.invalidate_matching(["chats"])  # drops ("chats", "c1"), ...
        """
        normalized = normalize_key(prefix)
        size = len(normalized)
        matched = [key for key in self._entries if key[:size] == normalized]
        for key in matched:
            del self._entries[key]
        self.stats.invalidations += len(matched)
        return len(matched)

    def clear(self) -> None:
        """Remove every entry."""
        self.stats.invalidations += len(self._entries)
        self._entries.clear()

    def keys(self) -> Iterator[QueryKey]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, (str, tuple, list)):
            return False
        return normalize_key(key) in self._entries

    # ------------------------------------------------------------------
    # Sweep timer
    # ------------------------------------------------------------------

    @property
    def is_sweeping(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    def sweep_period(self) -> float:
        """Delay before the next timed sweep."""
        if self.sweep_interval is not None:
            period = self.sweep_interval
        elif self._entries:
            period = min(entry.evict_after for entry in self._entries.values())
        else:
            period = self.default_evict_after
        return max(period, MIN_SWEEP_INTERVAL)

    def start_sweeper(self) -> None:
        """Start the periodic sweep task on the running event loop."""
        if self.is_sweeping:
            return
        self._sweeper = asyncio.get_running_loop().create_task(
            self._sweep_loop(), name="skillsync-cache-sweeper"
        )

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None

    async def _sweep_loop(self) -> None:
        while True:
            await self.scheduler.sleep(self.sweep_period())
            self.sweep()

    async def close(self) -> None:
        """Stop the sweeper and drop every entry."""
        await self.stop_sweeper()
        self._entries.clear()
