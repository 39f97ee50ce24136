"""
contactsync.config - Configuration management module

Contains configuration loading, validation, and default settings.
"""

from contactsync.config.loader import (
    DEFAULT_CONFIG_FILE,
    DEFAULT_SETTINGS,
    ConfigError,
    ConfigLoader,
)

__all__ = [
    "ConfigLoader",
    "ConfigError",
    "DEFAULT_CONFIG_FILE",
    "DEFAULT_SETTINGS",
]
