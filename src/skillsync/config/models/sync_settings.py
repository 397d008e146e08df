"""Offline queue and sync trigger configuration models."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from skillsync.shared.constants import QueueStorage, SyncTriggerConfig


class QueueSettings(BaseModel):
    """Persistence of the offline action queue.

    With ``storage_dir`` unset the queue lives in memory only and does not
    survive a restart.
    """

    storage_key: str = Field(
        default=QueueStorage.STORAGE_KEY,
        min_length=1,
        description="Key the queue envelope is stored under",
    )
    schema_version: int = Field(
        default=QueueStorage.SCHEMA_VERSION,
        ge=1,
        le=QueueStorage.SCHEMA_VERSION,
        description="Envelope schema version written by this build",
    )
    storage_dir: Path | None = Field(
        default=None,
        description="Directory for the file-backed key-value store",
    )

    @field_validator("storage_dir", mode="before")
    @classmethod
    def expand_storage_dir(cls, v: object) -> object:
        """Expand ``~`` and treat blank strings as unset."""
        if isinstance(v, str):
            if not v.strip():
                return None
            return Path(v.strip()).expanduser()
        return v


class SyncSettings(BaseModel):
    """When the offline queue is drained."""

    connectivity_poll_interval: float = Field(
        default=SyncTriggerConfig.CONNECTIVITY_POLL_INTERVAL,
        gt=0,
        description="Seconds between connectivity probes",
    )
    drain_on_reconnect: bool = Field(
        default=SyncTriggerConfig.DRAIN_ON_RECONNECT,
        description="Drain when connectivity is regained",
    )
    drain_on_foreground: bool = Field(
        default=SyncTriggerConfig.DRAIN_ON_FOREGROUND,
        description="Drain when the app returns to the foreground",
    )


__all__ = ["QueueSettings", "SyncSettings"]
