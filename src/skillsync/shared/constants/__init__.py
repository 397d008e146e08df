"""
SkillSync Constants Module

Centralized constants for the query cache and the offline sync layer.
"""

from .cache import ErrorClassification, QueryCacheConfig, RetryConfig
from .sync import QueueStorage, SyncTriggerConfig
from .system import BASE_MINUTE, BASE_SECOND, Application, Logging

__all__ = [
    "BASE_MINUTE",
    "BASE_SECOND",
    "Application",
    "ErrorClassification",
    "Logging",
    "QueryCacheConfig",
    "QueueStorage",
    "RetryConfig",
    "SyncTriggerConfig",
]
