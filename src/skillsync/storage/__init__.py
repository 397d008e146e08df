"""Key-value persistence used by the offline queue and snapshot storage."""

from .kv_store import (
    EnumerableKeyValueStore,
    FileKeyValueStore,
    KeyValueStore,
    MemoryKeyValueStore,
)
from .offline_storage import OfflineStorage, StorageInfo

__all__ = [
    "EnumerableKeyValueStore",
    "FileKeyValueStore",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "OfflineStorage",
    "StorageInfo",
]
