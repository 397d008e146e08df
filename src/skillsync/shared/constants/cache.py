"""
Cache Configuration Constants

Default staleness and eviction windows for the query cache together with
the retry/backoff defaults used by the query executor.
"""

from .system import BASE_MINUTE, BASE_SECOND


class QueryCacheConfig:
    """Query cache defaults."""

    # Freshness windows
    DEFAULT_STALE_AFTER = 5 * BASE_MINUTE  # 5 minutes
    DEFAULT_EVICT_AFTER = 10 * BASE_MINUTE  # 10 minutes

    # Key handling
    KEY_SEPARATOR = ":"


class RetryConfig:
    """Query retry defaults."""

    DEFAULT_RETRY_LIMIT = 3
    BACKOFF_BASE = 2.0
    BACKOFF_UNIT = 1 * BASE_SECOND


class ErrorClassification:
    """Message keywords and HTTP status ranges used by opt-in classification."""

    NETWORK_KEYWORDS = (
        "network",
        "timeout",
        "fetch",
        "connection",
        "internet",
        "offline",
        "unreachable",
        "abort",
    )
    NON_RETRYABLE_STATUS = (400, 401, 403, 404, 422)
    SERVER_ERROR_MIN_STATUS = 500
    CLIENT_ERROR_MIN_STATUS = 400
