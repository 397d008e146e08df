"""
SkillSync - Offline-first data layer

Cache-first query execution with stale-while-revalidate and bounded retry,
plus a durable offline action queue drained on reconnect.
"""

__version__ = "0.1.0"

from .session import SyncSession

__all__ = [
    "SyncSession",
    "__version__",
]
