"""SkillSync Settings Configuration Model.

Main Settings class composing every configuration domain.
"""

from __future__ import annotations

import logging
from pathlib import Path

import toml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from skillsync.config.models.app_settings import LoggingSettings
from skillsync.config.models.cache_settings import CacheSettings, QuerySettings
from skillsync.config.models.sync_settings import QueueSettings, SyncSettings
from skillsync.shared.constants import Application

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Unified configuration for one sync session.

    Environment variables override defaults, e.g.
    ``SKILLSYNC_CACHE__STALE_AFTER=120`` or ``SKILLSYNC_QUERY__COALESCE=true``.
    """

    model_config = SettingsConfigDict(
        env_prefix=Application.ENV_PREFIX,
        env_nested_delimiter="__",
        env_ignore_empty=True,
        extra="ignore",
    )

    cache: CacheSettings = Field(default_factory=CacheSettings)
    query: QuerySettings = Field(default_factory=QuerySettings)
    queue: QueueSettings = Field(default_factory=QueueSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def from_toml_file(cls, file_path: str | Path) -> Settings:
        """Load settings from TOML file with environment variable overrides."""

        file_path = Path(file_path)
        if not file_path.exists():
            msg = f"Configuration file not found: {file_path}"
            raise FileNotFoundError(msg)

        raw_config = toml.load(file_path)
        logger.debug("Loaded configuration from %s", file_path)
        return cls(**raw_config)

    def to_toml_file(self, file_path: str | Path) -> None:
        """Save settings to TOML file."""

        file_path = Path(file_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        config_dict = self.model_dump(mode="json", exclude_none=True)

        with open(file_path, "w", encoding="utf-8") as f:
            toml.dump(config_dict, f)
