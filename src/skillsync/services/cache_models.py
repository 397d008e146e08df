"""Cache entry Dataclass models.

This module defines the in-memory cache entry, the freshness classification
consumed by the query executor, and query key normalization.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Sequence, Union

from skillsync.shared.constants import QueryCacheConfig
from skillsync.shared.errors import ErrorCode, create_validation_error

QueryKeyPart = Union[str, int]
QueryKey = tuple[QueryKeyPart, ...]
QueryKeyLike = Union[str, Sequence[QueryKeyPart]]

__all__ = [
    "CacheEntry",
    "CacheStats",
    "Freshness",
    "QueryKey",
    "QueryKeyLike",
    "format_key",
    "normalize_key",
]


class Freshness(str, Enum):
    """How a cache entry may be served at a given instant."""

    FRESH = "fresh"
    STALE = "stale"
    ABSENT = "absent"


def normalize_key(key: QueryKeyLike) -> QueryKey:
    """Normalize a query key to a tuple of parts.

    A plain string becomes a one-element tuple; lists and tuples are
    converted part by part.

    Raises:
        DomainError: If the key is empty or contains unsupported parts.
    """
    parts: tuple[Any, ...] = (key,) if isinstance(key, str) else tuple(key)

    if not parts:
        raise create_validation_error(
            "Query key must contain at least one part",
            field="key",
            operation="normalize_key",
            code=ErrorCode.INVALID_QUERY_KEY,
        )
    for part in parts:
        if isinstance(part, bool) or not isinstance(part, (str, int)):
            raise create_validation_error(
                f"Query key parts must be str or int, got {type(part).__name__}",
                field="key",
                operation="normalize_key",
                code=ErrorCode.INVALID_QUERY_KEY,
            )
    return parts


def format_key(key: QueryKey) -> str:
    """Render a normalized key for logs and error context."""
    return QueryCacheConfig.KEY_SEPARATOR.join(str(part) for part in key)


@dataclass
class CacheEntry:
    """In-memory cache entry.

    Attributes:
        key: Normalized query key
        value: Cached result of the fetch function
        written_at: Clock time (seconds) the entry was written
        stale_after: Seconds after ``written_at`` when the entry turns stale
        evict_after: Seconds after ``written_at`` when the entry is evicted

    Note:
        ``stale_after <= evict_after`` always holds, so an entry is never
        evicted while it is still fresh.
    """

    key: QueryKey
    value: Any
    written_at: float
    stale_after: float
    evict_after: float

    def __post_init__(self) -> None:
        """Validate the staleness/eviction windows.

        Raises:
            DomainError: If a window is negative or stale_after > evict_after
        """
        if self.stale_after < 0 or self.evict_after < 0:
            raise create_validation_error(
                f"Cache windows must be non-negative "
                f"(stale_after={self.stale_after}, evict_after={self.evict_after})",
                field="stale_after",
                operation="cache_entry",
                code=ErrorCode.INVALID_CACHE_POLICY,
            )
        if self.stale_after > self.evict_after:
            raise create_validation_error(
                f"stale_after ({self.stale_after}) must not exceed "
                f"evict_after ({self.evict_after})",
                field="stale_after",
                operation="cache_entry",
                code=ErrorCode.INVALID_CACHE_POLICY,
            )

    def age(self, now: float) -> float:
        return now - self.written_at

    def freshness(self, now: float) -> Freshness:
        """Classify the entry at ``now``.

        Returns:
            FRESH if age < stale_after, STALE if stale_after <= age < evict_after,
            ABSENT otherwise
        """
        age = self.age(now)
        if age < self.stale_after:
            return Freshness.FRESH
        if age < self.evict_after:
            return Freshness.STALE
        return Freshness.ABSENT

    def is_evictable(self, now: float) -> bool:
        """True once ``written_at + evict_after < now``."""
        return self.written_at + self.evict_after < now


@dataclass
class CacheStats:
    """Counters collected by CacheStore for diagnostics."""

    hits: int = 0
    stale_hits: int = 0
    misses: int = 0
    writes: int = 0
    invalidations: int = 0
    evictions: int = 0
    sweeps: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "hits": self.hits,
            "stale_hits": self.stale_hits,
            "misses": self.misses,
            "writes": self.writes,
            "invalidations": self.invalidations,
            "evictions": self.evictions,
            "sweeps": self.sweeps,
        }
