"""Settings loader.

This module handles:
- Environment variable loading from .env files
- Configuration file loading from TOML
- Search of the default configuration locations

There is no process-wide settings singleton; callers keep the returned
instance and pass it to the session they build.
"""

from __future__ import annotations

import logging
from pathlib import Path

import toml
from dotenv import load_dotenv
from pydantic import ValidationError

from skillsync.config.models.settings import Settings
from skillsync.shared.constants import Application
from skillsync.shared.errors import (
    ConfigurationError,
    ErrorCode,
    ErrorContext,
)

logger = logging.getLogger(__name__)


def default_config_paths() -> list[Path]:
    """Configuration files tried in order when no path is given."""
    return [
        Path("config") / Application.CONFIG_FILE,
        Path(Application.CONFIG_FILE),
        Path.home() / Application.HOME_DIR / "config.toml",
    ]


def _load_env_file(env_file: Path) -> bool:
    """Load environment variables from ``env_file`` if it exists.

    Variables already present in the environment win over the file.

    Returns:
        True if the file was found and loaded.
    """
    if not env_file.exists():
        return False
    loaded = load_dotenv(env_file, override=False)
    logger.debug("Loaded environment from %s", env_file)
    return bool(loaded)


def load_settings(
    config_path: str | Path | None = None,
    env_file: str | Path | None = ".env",
) -> Settings:
    """Load settings from a TOML configuration file or the environment.

    Args:
        config_path: Optional path to a TOML configuration file. If None, the
            default locations are searched and the environment is used when
            none exists.
        env_file: ``.env`` file loaded before settings are built (None to skip)

    Returns:
        Settings instance loaded from the specified source

    Raises:
        ConfigurationError: If an explicit ``config_path`` is missing, or a
            configuration file cannot be parsed or validated.
    """
    if env_file is not None:
        _load_env_file(Path(env_file))

    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(
                ErrorCode.CONFIG_MISSING,
                f"Configuration file not found: {path}",
                ErrorContext(
                    operation="load_settings",
                    additional_data={"config_path": str(path)},
                ),
            )
        return _from_file(path)

    for candidate in default_config_paths():
        if candidate.exists():
            return _from_file(candidate)

    # Fall back to environment variables
    try:
        return Settings()
    except ValidationError as e:
        raise _invalid_config(e, source="environment") from e


def _from_file(path: Path) -> Settings:
    try:
        return Settings.from_toml_file(path)
    except (toml.TomlDecodeError, ValidationError) as e:
        raise _invalid_config(e, source=str(path)) from e


def _invalid_config(error: Exception, source: str) -> ConfigurationError:
    return ConfigurationError(
        ErrorCode.CONFIG_INVALID,
        f"Invalid configuration in {source}: {error}",
        ErrorContext(
            operation="load_settings",
            additional_data={"source": source},
        ),
        original_error=error,
    )
