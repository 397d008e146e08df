"""Configuration domain models."""

from __future__ import annotations

from .app_settings import LoggingSettings
from .cache_settings import CacheSettings, QuerySettings
from .settings import Settings
from .sync_settings import QueueSettings, SyncSettings

__all__ = [
    "CacheSettings",
    "LoggingSettings",
    "QuerySettings",
    "QueueSettings",
    "Settings",
    "SyncSettings",
]
