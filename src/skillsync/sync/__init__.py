"""Offline action queue, drain engine and sync triggers."""

from .offline_queue import OfflineAction, OfflineQueue, QueueEnvelope
from .sync_engine import SyncEngine, SyncOutcome
from .triggers import ConnectivityMonitor, SyncTriggers

__all__ = [
    "ConnectivityMonitor",
    "OfflineAction",
    "OfflineQueue",
    "QueueEnvelope",
    "SyncEngine",
    "SyncOutcome",
    "SyncTriggers",
]
