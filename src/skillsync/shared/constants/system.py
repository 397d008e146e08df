"""
System-wide Constants

Base time units and application identity shared by the cache and sync
constant modules.
"""

# Base time units (seconds)
BASE_SECOND = 1.0
BASE_MINUTE = 60 * BASE_SECOND


class Application:
    """Application identity constants."""

    NAME = "skillsync"
    VERSION = "0.1.0"
    ENV_PREFIX = "SKILLSYNC_"
    HOME_DIR = ".skillsync"
    CONFIG_FILE = "skillsync.toml"


class Logging:
    """Logging defaults."""

    DEFAULT_LEVEL = "INFO"
    DEFAULT_LOGGER_NAME = "skillsync"
