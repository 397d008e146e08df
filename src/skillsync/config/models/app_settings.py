"""Logging configuration model."""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field, field_validator

from skillsync.shared.constants import Logging


class LoggingSettings(BaseModel):
    """Logging configuration.

    ``configure`` makes :class:`~skillsync.session.SyncSession` install the
    structured logger on start; hosts that configure logging themselves
    leave it off.
    """

    level: str = Field(default=Logging.DEFAULT_LEVEL, description="Logging level")
    file: str | None = Field(default=None, description="JSON log file path")
    console_output: bool = Field(default=True, description="Enable rich console logging")
    configure: bool = Field(
        default=False,
        description="Install the structured logger when a session starts",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            msg = f"Unknown logging level: {v}"
            raise ValueError(msg)
        return level


__all__ = ["LoggingSettings"]
