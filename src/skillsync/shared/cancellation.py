"""Cooperative cancellation token.

Fetch functions and queue handlers may accept a ``token`` keyword argument.
A query subscription or the sync engine cancels its token on ``close()``,
so a long-running call can stop early and the executor can drop a result
that resolved after its consumer went away.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Callable

from skillsync.shared.errors import CancelledOperationError, ErrorContext

logger = logging.getLogger(__name__)


class CancellationToken:
    """One-shot cancellation flag with callbacks."""

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: str | None = None
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """Cancel the token and run registered callbacks once."""
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Cancellation callback failed")

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` on cancellation (immediately if already cancelled)."""
        if self._cancelled:
            callback()
            return
        self._callbacks.append(callback)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise CancelledOperationError(
                f"Operation was cancelled: {self._reason}",
                ErrorContext(operation="cancellation"),
            )

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self._cancelled}, reason={self._reason!r})"


def accepts_token(func: Callable[..., Any]) -> bool:
    """Return True when ``func`` declares an explicit ``token`` parameter.

    ``**kwargs`` alone does not count, so mocks and generic wrappers are
    called without the token.
    """
    try:
        signature = inspect.signature(func)
    except (TypeError, ValueError):
        return False
    for parameter in signature.parameters.values():
        if parameter.name == "token" and parameter.kind in (
            inspect.Parameter.KEYWORD_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
        ):
            return True
    return False


async def call_with_token(func: Callable[..., Any], token: CancellationToken, *args: Any) -> Any:
    """Call ``func`` (sync or async), passing ``token=`` when it declares one."""
    result = func(*args, token=token) if accepts_token(func) else func(*args)
    if inspect.isawaitable(result):
        result = await result
    return result
