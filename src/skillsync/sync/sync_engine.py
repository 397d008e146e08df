"""Single-flight drain of the offline queue.

A drain walks the pending actions in FIFO order and awaits each handler in
turn. Later actions may depend on earlier ones, so the pass stops at the
first failure: the failing action and everything after it stay queued for
the next trigger. Only actions whose handler succeeded are removed.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Union

from skillsync.shared.cancellation import CancellationToken, call_with_token
from skillsync.shared.errors import (
    CancelledOperationError,
    ErrorCode,
    SkillSyncError,
    create_sync_error,
)
from skillsync.shared.logging import log_operation_error, log_operation_success
from skillsync.shared.scheduling import Clock, SystemClock
from skillsync.sync.offline_queue import OfflineAction, OfflineQueue

logger = logging.getLogger(__name__)

ActionHandler = Callable[..., Union[Awaitable[Any], Any]]
HandlerMap = Mapping[str, ActionHandler]


@dataclass(frozen=True)
class SyncOutcome:
    """Result of executing one queued action during a drain."""

    action_id: str
    succeeded: bool
    error: BaseException | None = None


class SyncEngine:
    """Drains an :class:`OfflineQueue` against ``action_type`` handlers.

    Handlers are called with the action payload and, when they declare a
    ``token`` parameter, the engine's :class:`CancellationToken`.

    Args:
        queue: Queue to drain (borrowed)
        handlers: Default ``action_type`` → handler map
        clock: Clock stamping :attr:`last_sync_time`
    """

    def __init__(
        self,
        queue: OfflineQueue,
        handlers: HandlerMap | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.queue = queue
        self.handlers: dict[str, ActionHandler] = dict(handlers or {})
        self.clock: Clock = clock or SystemClock()
        self.last_sync_time: float | None = None
        self._is_syncing = False
        self._token = CancellationToken()

    @property
    def is_syncing(self) -> bool:
        return self._is_syncing

    @property
    def pending_count(self) -> int:
        return self.queue.pending_count

    def register_handler(self, action_type: str, handler: ActionHandler) -> None:
        self.handlers[action_type] = handler

    async def drain(self, handlers: HandlerMap | None = None) -> list[SyncOutcome]:
        """Execute pending actions in order until the queue is empty or one fails.

        A call made while another drain is running returns ``[]`` at once.

        Args:
            handlers: Handler map for this pass (defaults to :attr:`handlers`)

        Returns:
            One outcome per attempted action; a failure is always last.
        """
        if self._is_syncing:
            logger.debug("Drain already in progress; skipping")
            return []
        if self._token.cancelled:
            logger.debug("Sync engine closed; skipping drain")
            return []

        self._is_syncing = True
        started = time.perf_counter()
        outcomes: list[SyncOutcome] = []
        try:
            handler_map = self.handlers if handlers is None else handlers
            for action in self.queue.list_pending():
                outcome = await self._execute(action, handler_map)
                outcomes.append(outcome)
                if not outcome.succeeded:
                    break

            succeeded = [outcome.action_id for outcome in outcomes if outcome.succeeded]
            if succeeded:
                await self.queue.remove_completed(succeeded)
            self.last_sync_time = self.clock.now()

            log_operation_success(
                logger=logger,
                operation="sync_drain",
                duration_ms=(time.perf_counter() - started) * 1000,
                result_info={
                    "attempted": len(outcomes),
                    "succeeded": len(succeeded),
                    "remaining": self.queue.pending_count,
                },
            )
            return outcomes
        finally:
            self._is_syncing = False

    def close(self) -> None:
        """Cancel the token handed to handlers and refuse further drains."""
        self._token.cancel("sync engine closed")

    async def _execute(self, action: OfflineAction, handler_map: HandlerMap) -> SyncOutcome:
        handler = handler_map.get(action.action_type)
        if handler is None:
            error = create_sync_error(
                f"No handler registered for '{action.action_type}'",
                action_id=action.id,
                action_type=action.action_type,
                code=ErrorCode.SYNC_HANDLER_MISSING,
            )
            log_operation_error(logger=logger, error=error, level=logging.WARNING)
            return SyncOutcome(action_id=action.id, succeeded=False, error=error)

        try:
            await call_with_token(handler, self._token, action.payload)
        except CancelledOperationError as e:
            logger.info("Handler for %s stopped by cancellation", action.id)
            return SyncOutcome(action_id=action.id, succeeded=False, error=e)
        except Exception as e:
            failure = (
                e
                if isinstance(e, SkillSyncError)
                else create_sync_error(
                    f"Handler for '{action.action_type}' failed: {e}",
                    action_id=action.id,
                    action_type=action.action_type,
                    original_error=e,
                )
            )
            log_operation_error(logger=logger, error=failure, level=logging.WARNING)
            return SyncOutcome(action_id=action.id, succeeded=False, error=e)

        logger.debug("Synced offline action %s (%s)", action.id, action.action_type)
        return SyncOutcome(action_id=action.id, succeeded=True)
