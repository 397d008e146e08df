"""Shared utilities: errors, structured logging, constants, scheduling."""

from .cancellation import CancellationToken, call_with_token
from .errors import (
    DomainError,
    ErrorCode,
    ErrorContext,
    InfrastructureError,
    PersistenceError,
    QueryError,
    SkillSyncError,
    SyncError,
)
from .scheduling import AsyncioScheduler, ManualClock, SystemClock, VirtualScheduler

__all__ = [
    "AsyncioScheduler",
    "CancellationToken",
    "call_with_token",
    "DomainError",
    "ErrorCode",
    "ErrorContext",
    "InfrastructureError",
    "ManualClock",
    "PersistenceError",
    "QueryError",
    "SkillSyncError",
    "SyncError",
    "SystemClock",
    "VirtualScheduler",
]
