"""Query State Machine implementation.

This module provides the explicit finite state machine behind every query
subscription: ``IDLE -> LOADING -> SUCCESS | ERROR`` plus a retry counter.
Timing lives in the executor's scheduler; the machine only records
transitions and publishes immutable :class:`QueryState` snapshots.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable

from skillsync.shared.scheduling import Clock


class QueryStatus(str, Enum):
    """Lifecycle states of a query subscription."""

    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class QueryState:
    """Immutable snapshot of a query subscription.

    Attributes:
        status: Current lifecycle state
        data: Last successfully fetched (or cached) value
        error: Most recent error once retries are exhausted
        retry_count: Retries performed for the current load
        is_fetching: True while any attempt or pending retry is outstanding
        is_loading: True only for the first attempt of a foreground load
        updated_at: Clock time of the last transition
        data_updated_at: Clock time ``data`` was last set (None = no data yet)
    """

    status: QueryStatus = QueryStatus.IDLE
    data: Any = None
    error: BaseException | None = None
    retry_count: int = 0
    is_fetching: bool = False
    is_loading: bool = False
    updated_at: float = 0.0
    data_updated_at: float | None = None

    @property
    def is_idle(self) -> bool:
        return self.status is QueryStatus.IDLE

    @property
    def is_success(self) -> bool:
        return self.status is QueryStatus.SUCCESS

    @property
    def is_error(self) -> bool:
        return self.status is QueryStatus.ERROR

    @property
    def has_data(self) -> bool:
        return self.data_updated_at is not None


class QueryStateMachine:
    """State machine for one query subscription.

    Args:
        clock: Clock stamping ``updated_at``/``data_updated_at``
        on_change: Callback receiving every new snapshot
    """

    def __init__(
        self,
        clock: Clock,
        on_change: Callable[[QueryState], None] | None = None,
    ) -> None:
        self._clock = clock
        self._on_change = on_change
        self._state = QueryState(updated_at=clock.now())
        self._transitions = 0

    @property
    def state(self) -> QueryState:
        """Get the current snapshot."""
        return self._state

    @property
    def retry_count(self) -> int:
        return self._state.retry_count

    def _publish(self, **changes: Any) -> QueryState:
        now = self._clock.now()
        if "data" in changes:
            changes["data_updated_at"] = now
        self._state = replace(self._state, updated_at=now, **changes)
        self._transitions += 1
        if self._on_change is not None:
            self._on_change(self._state)
        return self._state

    def begin_load(self) -> QueryState:
        """Enter LOADING for a foreground network attempt; data stays visible.

        ``is_loading`` is only set when there is no data to show yet.
        """
        return self._publish(
            status=QueryStatus.LOADING,
            error=None,
            retry_count=0,
            is_fetching=True,
            is_loading=not self._state.has_data,
        )

    def serve_cached(self, data: Any, *, refreshing: bool = False) -> QueryState:
        """Show a cached value; ``refreshing`` marks a stale value being refreshed."""
        return self._publish(
            status=QueryStatus.SUCCESS,
            data=data,
            error=None,
            retry_count=0,
            is_fetching=refreshing,
            is_loading=False,
        )

    def succeed(self, data: Any) -> QueryState:
        """Record a successful fetch and reset the retry counter."""
        return self._publish(
            status=QueryStatus.SUCCESS,
            data=data,
            error=None,
            retry_count=0,
            is_fetching=False,
            is_loading=False,
        )

    def schedule_retry(self) -> QueryState:
        """Count a failed attempt that will be retried."""
        return self._publish(
            retry_count=self._state.retry_count + 1,
            is_fetching=True,
            is_loading=False,
        )

    def fail(self, error: BaseException) -> QueryState:
        """Enter ERROR with the most recent error; data is kept."""
        return self._publish(
            status=QueryStatus.ERROR,
            error=error,
            is_fetching=False,
            is_loading=False,
        )

    def to_idle(self) -> QueryState:
        """Return to IDLE (query disabled); cached data stays visible."""
        return self._publish(
            status=QueryStatus.IDLE,
            is_fetching=False,
            is_loading=False,
        )

    def get_stats(self) -> dict[str, Any]:
        """Get current statistics about the state machine."""
        return {
            "status": self._state.status.value,
            "retry_count": self._state.retry_count,
            "is_fetching": self._state.is_fetching,
            "has_data": self._state.has_data,
            "transitions": self._transitions,
        }
