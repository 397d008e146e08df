"""Query cache and retry configuration models."""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator

from skillsync.shared.constants import QueryCacheConfig, RetryConfig


class CacheSettings(BaseModel):
    """Cache freshness and sweep configuration.

    ``stale_after`` and ``evict_after`` are the defaults for queries that do
    not pass their own. ``sweep_interval`` of None derives the sweep period
    from the smallest ``evict_after`` held by the cache.
    """

    stale_after: float = Field(
        default=QueryCacheConfig.DEFAULT_STALE_AFTER,
        ge=0,
        description="Seconds a cached value is served without refetching",
    )
    evict_after: float = Field(
        default=QueryCacheConfig.DEFAULT_EVICT_AFTER,
        ge=0,
        description="Seconds before a cached value is removed",
    )
    sweep_interval: float | None = Field(
        default=None,
        gt=0,
        description="Seconds between eviction sweeps (None = derived)",
    )

    @model_validator(mode="after")
    def validate_windows(self) -> CacheSettings:
        """stale_after must not exceed evict_after."""
        if self.stale_after > self.evict_after:
            msg = (
                f"stale_after ({self.stale_after}) must not exceed "
                f"evict_after ({self.evict_after})"
            )
            raise ValueError(msg)
        return self


class QuerySettings(BaseModel):
    """Retry and execution options for the query executor."""

    retry_limit: int = Field(
        default=RetryConfig.DEFAULT_RETRY_LIMIT,
        ge=0,
        description="Retries after the first failed attempt",
    )
    backoff_base: float = Field(
        default=RetryConfig.BACKOFF_BASE,
        ge=1,
        description="Base of the exponential backoff (delay = base ** retry)",
    )
    max_backoff: float | None = Field(
        default=None,
        gt=0,
        description="Cap on a single backoff delay in seconds (None = uncapped)",
    )
    coalesce: bool = Field(
        default=False,
        description="Share one in-flight call among concurrent same-key fetches",
    )
    classify_errors: bool = Field(
        default=False,
        description="Skip retries for validation, auth and other 4xx errors",
    )
    refetch_on_foreground: bool = Field(
        default=True,
        description="Refetch stale active queries when the app is foregrounded",
    )


__all__ = ["CacheSettings", "QuerySettings"]
