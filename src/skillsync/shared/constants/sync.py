"""
Offline Queue and Sync Constants

Storage keys, persisted envelope versioning and trigger defaults for the
offline action queue and the sync engine.
"""

from .system import BASE_SECOND


class QueueStorage:
    """Persisted offline queue layout."""

    STORAGE_KEY = "skillsync:offline_actions"
    SCHEMA_VERSION = 1
    OFFLINE_PREFIX = "offline_"
    ENVELOPE_VERSION_FIELD = "schema_version"

    # File-backed store
    FILE_SUFFIX = ".kv"
    TEMP_SUFFIX = ".tmp"


class SyncTriggerConfig:
    """Connectivity / lifecycle trigger defaults."""

    CONNECTIVITY_POLL_INTERVAL = 30 * BASE_SECOND
    DRAIN_ON_RECONNECT = True
    DRAIN_ON_FOREGROUND = True
    REFETCH_ON_FOREGROUND = True
