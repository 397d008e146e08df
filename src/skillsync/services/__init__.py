"""Query cache, retry policy and cache-first query execution."""

from .cache_models import CacheEntry, CacheStats, Freshness, format_key, normalize_key
from .cache_store import CacheStore
from .query_executor import QueryExecutor, QueryOptions, QuerySubscription
from .retry_policy import ErrorCategory, RetryPolicy, categorize_error, is_retryable
from .state_machine import QueryState, QueryStateMachine, QueryStatus

__all__ = [
    "CacheEntry",
    "CacheStats",
    "CacheStore",
    "ErrorCategory",
    "Freshness",
    "QueryExecutor",
    "QueryOptions",
    "QueryState",
    "QueryStateMachine",
    "QueryStatus",
    "QuerySubscription",
    "RetryPolicy",
    "categorize_error",
    "format_key",
    "is_retryable",
    "normalize_key",
]
