"""Clock and scheduler abstractions.

Every delay in SkillSync (retry backoff, the cache sweep timer, connectivity
polling) goes through a :class:`Scheduler`, so timing can be replaced by
:class:`VirtualScheduler` and driven deterministically without real sleeps.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from typing import Protocol


class Clock(Protocol):
    """Source of the current time in seconds."""

    def now(self) -> float:
        """Return the current time in seconds."""


class SystemClock:
    """Wall-clock time (``time.time``); values survive process restarts."""

    def now(self) -> float:
        return time.time()


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = float(start)

    def now(self) -> float:
        return self._now

    def set(self, value: float) -> None:
        if value < self._now:
            msg = f"ManualClock cannot move backwards ({value} < {self._now})"
            raise ValueError(msg)
        self._now = float(value)

    def advance(self, seconds: float) -> None:
        self.set(self._now + seconds)


class Scheduler(Protocol):
    """Delay primitive shared by every timer-driven component."""

    clock: Clock

    async def sleep(self, delay: float) -> None:
        """Suspend the calling task for ``delay`` seconds."""


class AsyncioScheduler:
    """Scheduler backed by ``asyncio.sleep`` and the system clock."""

    def __init__(self, clock: Clock | None = None) -> None:
        self.clock: Clock = clock or SystemClock()

    async def sleep(self, delay: float) -> None:
        await asyncio.sleep(max(0.0, delay))


class VirtualScheduler:
    """Scheduler whose sleeps complete only when virtual time is advanced.

    Sleeping tasks register a deadline on the attached :class:`ManualClock`;
    :meth:`advance` moves the clock deadline by deadline, waking each sleeper
    and letting the event loop settle before moving on, so chains of timers
    (retry after retry) fire in order inside a single ``advance`` call.

    Example:
        >>> scheduler = VirtualScheduler()
        >>> task = asyncio.create_task(scheduler.sleep(2))
        >>> await scheduler.advance(2)
        >>> task.done()
        True
    """

    def __init__(self, clock: ManualClock | None = None, settle_rounds: int = 25) -> None:
        self.clock: ManualClock = clock or ManualClock()
        self.settle_rounds = settle_rounds
        self._timers: list[tuple[float, int, asyncio.Future[None]]] = []
        self._sequence = itertools.count()
        self.sleep_calls: list[float] = []

    @property
    def pending(self) -> int:
        """Number of sleepers that have not been woken or cancelled."""
        return sum(1 for _, _, future in self._timers if not future.done())

    async def sleep(self, delay: float) -> None:
        self.sleep_calls.append(delay)
        if delay <= 0:
            await asyncio.sleep(0)
            return

        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        deadline = self.clock.now() + delay
        heapq.heappush(self._timers, (deadline, next(self._sequence), future))
        await future

    async def settle(self) -> None:
        """Yield to the event loop until ready callbacks have run."""
        for _ in range(self.settle_rounds):
            await asyncio.sleep(0)

    async def advance(self, seconds: float) -> None:
        """Move virtual time forward, firing every timer that falls due."""
        target = self.clock.now() + seconds
        await self.settle()
        while self._timers and self._timers[0][0] <= target:
            deadline, _, future = heapq.heappop(self._timers)
            if future.done():
                continue
            self.clock.set(max(deadline, self.clock.now()))
            future.set_result(None)
            await self.settle()
        self.clock.set(target)
        await self.settle()
