"""Connectivity, foreground and manual-refresh triggers for queue drains.

:class:`SyncTriggers` turns lifecycle signals into ``SyncEngine.drain`` calls.
The engine's single-flight guard makes overlapping triggers safe, so no
debouncing happens here. :class:`ConnectivityMonitor` feeds ``set_online``
from an injected probe on a fixed poll interval.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Union

from skillsync.shared.constants import SyncTriggerConfig
from skillsync.shared.scheduling import AsyncioScheduler, Scheduler
from skillsync.sync.sync_engine import SyncEngine, SyncOutcome

if TYPE_CHECKING:
    from skillsync.services.query_executor import QueryExecutor

logger = logging.getLogger(__name__)

ConnectivityProbe = Callable[[], Union[Awaitable[bool], bool]]


class SyncTriggers:
    """Routes connectivity and lifecycle events to the sync engine.

    Args:
        engine: Engine whose ``drain`` is fired
        executor: Optional query executor refetched on foreground/refresh
        is_online: Initial connectivity
        drain_on_reconnect: Drain on an offline → online transition
        drain_on_foreground: Drain when the app returns to the foreground
        refetch_on_foreground: Refetch stale active queries on foreground
    """

    def __init__(
        self,
        engine: SyncEngine,
        executor: QueryExecutor | None = None,
        *,
        is_online: bool = True,
        drain_on_reconnect: bool = SyncTriggerConfig.DRAIN_ON_RECONNECT,
        drain_on_foreground: bool = SyncTriggerConfig.DRAIN_ON_FOREGROUND,
        refetch_on_foreground: bool = SyncTriggerConfig.REFETCH_ON_FOREGROUND,
    ) -> None:
        self.engine = engine
        self.executor = executor
        self.drain_on_reconnect = drain_on_reconnect
        self.drain_on_foreground = drain_on_foreground
        self.refetch_on_foreground = refetch_on_foreground
        self._online = is_online

    @property
    def is_online(self) -> bool:
        return self._online

    async def set_online(self, online: bool) -> list[SyncOutcome]:
        """Record connectivity; regaining it drains the queue."""
        was_online = self._online
        self._online = online
        if online == was_online:
            return []

        logger.info("Connectivity changed: %s", "online" if online else "offline")
        if online and self.drain_on_reconnect:
            return await self.engine.drain()
        return []

    async def on_foreground(self) -> list[SyncOutcome]:
        """App returned to the foreground."""
        if self.executor is not None and self.refetch_on_foreground and self._online:
            refetched = self.executor.refetch_active()
            logger.debug("Foreground refetch triggered for %d queries", refetched)
        if self._online and self.drain_on_foreground:
            return await self.engine.drain()
        return []

    async def manual_refresh(self) -> list[SyncOutcome]:
        """User-requested refresh: refetch every active query and drain.

        Does nothing while offline.
        """
        if not self._online:
            logger.info("Manual refresh ignored while offline")
            return []
        if self.executor is not None:
            self.executor.refetch_active(force=True)
        return await self.engine.drain()


class ConnectivityMonitor:
    """Polls a connectivity probe and forwards the result to SyncTriggers.

    A probe that raises counts as offline.

    Args:
        triggers: Receiver of ``set_online``
        probe: Sync or async callable returning True when online
        scheduler: Scheduler used between polls
        interval: Seconds between polls
    """

    def __init__(
        self,
        triggers: SyncTriggers,
        probe: ConnectivityProbe,
        scheduler: Scheduler | None = None,
        interval: float = SyncTriggerConfig.CONNECTIVITY_POLL_INTERVAL,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.triggers = triggers
        self.probe = probe
        self.scheduler: Scheduler = scheduler or AsyncioScheduler()
        self.interval = interval
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def check(self) -> bool:
        """Run the probe once and forward the result."""
        try:
            result: Any = self.probe()
            if inspect.isawaitable(result):
                result = await result
            online = bool(result)
        except Exception:
            logger.warning("Connectivity probe failed; treating as offline", exc_info=True)
            online = False
        await self.triggers.set_online(online)
        return online

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._poll_loop(), name="skillsync-connectivity-monitor"
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _poll_loop(self) -> None:
        while True:
            await self.check()
            await self.scheduler.sleep(self.interval)
