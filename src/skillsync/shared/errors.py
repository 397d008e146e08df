"""SkillSync Error Handling Module

This module defines the error handling system for SkillSync, providing
structured error classes with context information.

The error hierarchy follows these principles:
- One Source of Truth: All error codes are defined in ErrorCode enum
- Structured Context: ErrorContext provides additional information
- Proper Exception Chaining: Original exceptions are preserved
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Union

# Type alias for primitive context values (str, int, float, bool only)
PrimitiveContextValue = Union[str, int, float, bool]

# Default keys to mask in safe_dict for PII protection
SAFE_DICT_MASK_KEYS: tuple[str, ...] = ("user_id",)


class ErrorCode(str, Enum):
    """Error codes for SkillSync.

    This enum serves as the single source of truth for all error codes
    used throughout the package.
    """

    # Validation Errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_CACHE_POLICY = "INVALID_CACHE_POLICY"
    INVALID_QUERY_KEY = "INVALID_QUERY_KEY"
    PAYLOAD_NOT_SERIALIZABLE = "PAYLOAD_NOT_SERIALIZABLE"

    # Query Errors
    QUERY_FAILED = "QUERY_FAILED"
    QUERY_RETRIES_EXHAUSTED = "QUERY_RETRIES_EXHAUSTED"
    QUERY_NOT_RETRYABLE = "QUERY_NOT_RETRYABLE"
    OPERATION_CANCELLED = "OPERATION_CANCELLED"

    # Persistence Errors
    PERSISTENCE_READ_FAILED = "PERSISTENCE_READ_FAILED"
    PERSISTENCE_WRITE_FAILED = "PERSISTENCE_WRITE_FAILED"
    PERSISTENCE_REMOVE_FAILED = "PERSISTENCE_REMOVE_FAILED"
    QUEUE_CORRUPTED = "QUEUE_CORRUPTED"
    QUEUE_SCHEMA_UNSUPPORTED = "QUEUE_SCHEMA_UNSUPPORTED"

    # Sync Errors
    SYNC_HANDLER_FAILED = "SYNC_HANDLER_FAILED"
    SYNC_HANDLER_MISSING = "SYNC_HANDLER_MISSING"
    SYNC_ALREADY_RUNNING = "SYNC_ALREADY_RUNNING"

    # Configuration Errors
    CONFIG_ERROR = "CONFIG_ERROR"
    CONFIG_MISSING = "CONFIG_MISSING"
    CONFIG_INVALID = "CONFIG_INVALID"

    # Lifecycle Errors
    SESSION_CLOSED = "SESSION_CLOSED"
    SESSION_NOT_STARTED = "SESSION_NOT_STARTED"


def _coerce_primitives(value: Any | None) -> dict[str, PrimitiveContextValue] | None:
    """Coerce additional_data values to primitives.

    Converts Path, Enum, Decimal to primitive types. ``None`` values are
    dropped so optional parameters can be passed through unconditionally.

    Args:
        value: Input dictionary or None

    Returns:
        Dictionary with primitive values only, or None

    Raises:
        TypeError: If value is not a dict or contains unconvertible types
    """
    if value is None:
        return None

    if not isinstance(value, dict):
        error_msg = f"additional_data must be dict, got {type(value).__name__}"
        raise TypeError(error_msg)

    coerced: dict[str, PrimitiveContextValue] = {}
    for key, val in value.items():
        if val is None:
            continue
        if isinstance(val, (str, int, float, bool)):
            coerced[key] = val
        elif isinstance(val, Path):
            coerced[key] = str(val)
        elif isinstance(val, Enum):
            coerced[key] = val.value
        elif isinstance(val, Decimal):
            coerced[key] = float(val)
        else:
            error_msg = (
                f"Cannot coerce {type(val).__name__} to primitive type. "
                f"Only str, int, float, bool, Path, Enum, Decimal are allowed."
            )
            raise TypeError(error_msg)

    return coerced


@dataclass(frozen=True)
class ErrorContextModel:
    """Context information for errors.

    Only primitive types (str, int, float, bool) are allowed in
    additional_data to ensure safe serialization and prevent sensitive
    payload data from leaking into logs.

    Attributes:
        operation: Optional operation name that caused the error
        query_key: Optional query key (joined with ``:``) involved in the error
        action_id: Optional offline action id involved in the error
        user_id: Optional user ID (masked in logs)
        additional_data: Optional dict with primitive values only
    """

    operation: str | None = None
    query_key: str | None = None
    action_id: str | None = None
    user_id: str | None = None
    additional_data: dict[str, PrimitiveContextValue] | None = None

    def __post_init__(self) -> None:
        """Post-initialization validation and coercion."""
        if self.additional_data is not None:
            coerced = _coerce_primitives(self.additional_data)
            object.__setattr__(self, "additional_data", coerced)

    def safe_dict(self, *, mask_keys: tuple[str, ...] | None = None) -> dict[str, Any]:
        """Export context as dict with PII masking.

        Args:
            mask_keys: Fields to exclude from output. Defaults to SAFE_DICT_MASK_KEYS.

        Returns:
            Dictionary with masked sensitive fields and guaranteed additional_data key.

        Example:
            >>> context = ErrorContextModel(user_id="u42", operation="fetch")
            >>> context.safe_dict()
            {'operation': 'fetch', 'additional_data': {}}
        """
        if mask_keys is None:
            mask_keys = SAFE_DICT_MASK_KEYS

        data: dict[str, Any] = {}
        for name in ("operation", "query_key", "action_id", "user_id"):
            value = getattr(self, name)
            if value is not None and name not in mask_keys:
                data[name] = value

        if self.additional_data is not None and "additional_data" not in mask_keys:
            data["additional_data"] = self.additional_data
        else:
            data["additional_data"] = {}

        return data


ErrorContext = ErrorContextModel


class SkillSyncError(Exception):
    """Base exception class for all SkillSync errors."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        context: ErrorContext | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        """Initialize SkillSyncError.

        Args:
            code: Error code from ErrorCode enum
            message: Human-readable error message
            context: Additional context information
            original_error: Original exception that caused this error
        """
        self.code = code
        self.message = message
        self.context = context or ErrorContext()
        self.original_error = original_error

        super().__init__(f"{code.value}: {message}")

    def __str__(self) -> str:
        """Return string representation of the error."""
        return f"{self.code.value}: {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging with PII masking."""
        return {
            "code": self.code.value,
            "message": self.message,
            "context": self.context.safe_dict(),
            "original_error": str(self.original_error) if self.original_error else None,
        }


class DomainError(SkillSyncError):
    """Domain-specific errors.

    Raised when caller input violates a cache or queue invariant, e.g.
    ``stale_after > evict_after`` or a payload that cannot be serialized.
    """


class InfrastructureError(SkillSyncError):
    """Errors raised while talking to injected collaborators.

    Examples:
    - Key-value store read/write failures
    - Persisted queue written by a newer schema
    """


class PersistenceError(InfrastructureError):
    """Key-value persistence failures (read, write, remove)."""


class QueryError(SkillSyncError):
    """Errors surfaced by the query executor.

    The raw exception raised by the fetch function is kept as
    ``original_error``; the query state exposes the raw error itself.
    """


class SyncError(SkillSyncError):
    """Errors produced while draining the offline queue."""


class CancelledOperationError(SkillSyncError):
    """Raised by ``CancellationToken.raise_if_cancelled``."""

    def __init__(
        self,
        message: str = "Operation was cancelled",
        context: ErrorContext | None = None,
    ) -> None:
        super().__init__(ErrorCode.OPERATION_CANCELLED, message, context)


class ConfigurationError(SkillSyncError):
    """Configuration loading or validation failures."""


def create_validation_error(
    message: str,
    field: str | None = None,
    operation: str | None = None,
    code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    original_error: Exception | None = None,
) -> DomainError:
    """Create a validation error with context."""
    additional_data: dict[str, PrimitiveContextValue] | None = (
        {"field": field} if field else None
    )
    context = ErrorContext(
        operation=operation,
        additional_data=additional_data,
    )
    return DomainError(code, message, context, original_error)


def create_persistence_error(
    message: str,
    storage_key: str,
    operation: str,
    code: ErrorCode = ErrorCode.PERSISTENCE_WRITE_FAILED,
    original_error: BaseException | None = None,
) -> PersistenceError:
    """Create a persistence error with context."""
    context = ErrorContext(
        operation=operation,
        additional_data={
            "storage_key": storage_key,
            "original_error_type": (
                type(original_error).__name__ if original_error else None
            ),
        },
    )
    return PersistenceError(code, message, context, original_error)


def create_sync_error(
    message: str,
    action_id: str,
    action_type: str,
    code: ErrorCode = ErrorCode.SYNC_HANDLER_FAILED,
    original_error: BaseException | None = None,
) -> SyncError:
    """Create a sync handler error with context."""
    context = ErrorContext(
        operation="drain",
        action_id=action_id,
        additional_data={"action_type": action_type},
    )
    return SyncError(code, message, context, original_error)


def create_config_error(
    message: str,
    config_key: str | None = None,
    operation: str | None = None,
    original_error: Exception | None = None,
) -> ConfigurationError:
    """Create a configuration error with context."""
    additional_data: dict[str, PrimitiveContextValue] | None = (
        {"config_key": config_key} if config_key else None
    )
    context = ErrorContext(
        operation=operation,
        additional_data=additional_data,
    )
    return ConfigurationError(ErrorCode.CONFIG_ERROR, message, context, original_error)
