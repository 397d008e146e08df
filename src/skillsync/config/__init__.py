"""Configuration management for SkillSync."""

from .loader import load_settings
from .models import (
    CacheSettings,
    LoggingSettings,
    QuerySettings,
    QueueSettings,
    Settings,
    SyncSettings,
)

__all__ = [
    "CacheSettings",
    "LoggingSettings",
    "QuerySettings",
    "QueueSettings",
    "Settings",
    "SyncSettings",
    "load_settings",
]
