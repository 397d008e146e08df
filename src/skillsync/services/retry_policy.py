"""Retry policy for query fetches.

Backoff grows as ``backoff_base ** retry_count`` seconds, where
``retry_count`` is the number of the retry about to be scheduled (1 for the
first retry). By default every error is retryable; ``classify_errors=True``
turns on the client-side classification below so validation,
authentication and other 4xx failures go straight to the error state.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from skillsync.shared.constants import ErrorClassification, RetryConfig
from skillsync.shared.errors import ErrorCode, create_validation_error


class ErrorCategory(str, Enum):
    """Coarse error categories used by opt-in classification."""

    NETWORK = "network"
    SERVER = "server"
    CLIENT = "client"
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    UNKNOWN = "unknown"


def _status_of(error: BaseException) -> int | None:
    for attribute in ("status", "status_code"):
        status = getattr(error, attribute, None)
        if isinstance(status, int) and not isinstance(status, bool):
            return status
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    if isinstance(status, int) and not isinstance(status, bool):
        return status
    return None


def is_network_error(error: BaseException) -> bool:
    """Heuristic network/transport detection by exception type and message."""
    if isinstance(error, (ConnectionError, TimeoutError)):
        return True
    message = str(error).lower()
    return any(keyword in message for keyword in ErrorClassification.NETWORK_KEYWORDS)


def categorize_error(error: BaseException) -> ErrorCategory:
    """Categorize ``error`` for retry decisions."""
    if is_network_error(error):
        return ErrorCategory.NETWORK

    status = _status_of(error)
    if status is not None:
        if status in (401, 403):
            return ErrorCategory.AUTHENTICATION
        if status >= ErrorClassification.SERVER_ERROR_MIN_STATUS:
            return ErrorCategory.SERVER
        if status >= ErrorClassification.CLIENT_ERROR_MIN_STATUS:
            return ErrorCategory.CLIENT

    name = type(error).__name__
    if name == "ValidationError" or isinstance(error, ValueError):
        return ErrorCategory.VALIDATION
    if name == "AuthenticationError":
        return ErrorCategory.AUTHENTICATION
    return ErrorCategory.UNKNOWN


def is_retryable(error: BaseException) -> bool:
    """Return False for failures a retry cannot fix."""
    category = categorize_error(error)
    if category in (ErrorCategory.VALIDATION, ErrorCategory.AUTHENTICATION):
        return False
    if category is ErrorCategory.CLIENT:
        return _status_of(error) not in ErrorClassification.NON_RETRYABLE_STATUS
    return True


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential-backoff retry policy.

    Attributes:
        retry_limit: Maximum number of retries after the first attempt
        backoff_base: Base of the exponential backoff
        backoff_unit: Seconds multiplied into every delay
        max_backoff: Optional cap on a single delay (None = uncapped)
        classify_errors: Skip retries for non-retryable errors
    """

    retry_limit: int = RetryConfig.DEFAULT_RETRY_LIMIT
    backoff_base: float = RetryConfig.BACKOFF_BASE
    backoff_unit: float = RetryConfig.BACKOFF_UNIT
    max_backoff: float | None = None
    classify_errors: bool = False

    def __post_init__(self) -> None:
        if self.retry_limit < 0:
            raise create_validation_error(
                f"retry_limit must be non-negative, got {self.retry_limit}",
                field="retry_limit",
                operation="retry_policy",
                code=ErrorCode.VALIDATION_ERROR,
            )
        if self.backoff_base < 1:
            raise create_validation_error(
                f"backoff_base must be >= 1, got {self.backoff_base}",
                field="backoff_base",
                operation="retry_policy",
                code=ErrorCode.VALIDATION_ERROR,
            )

    def delay_for(self, retry_count: int) -> float:
        """Delay before retry number ``retry_count`` (1-based)."""
        delay = (self.backoff_base**retry_count) * self.backoff_unit
        if self.max_backoff is not None:
            delay = min(delay, self.max_backoff)
        return delay

    def should_retry(self, retry_count: int, error: BaseException) -> bool:
        """Whether a failure after ``retry_count`` retries gets another attempt."""
        if retry_count >= self.retry_limit:
            return False
        if self.classify_errors and not is_retryable(error):
            return False
        return True
