"""
Configuration loader module for contactsync.

Provides YAML-based configuration file loading with support for:
- Loading configuration from default or custom paths
- Graceful handling of missing configuration files
- Type and range validation of known keys
- Defaults for every setting the engine reads
"""

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from contactsync.utils.paths import CONFIG_DIR_ENV_VAR, DEFAULT_CONFIG_DIR

# Default configuration file name
DEFAULT_CONFIG_FILE = "config.yaml"

# Defaults applied by ConfigLoader.with_defaults()
DEFAULT_SETTINGS: dict[str, Any] = {
    "database_path": None,
    "log_dir": None,
    "log_retention_count": 10,
    "verbose": False,
    "http_timeout": 30.0,
    "sync_timeout": 60.0,
    "db_max_retries": 5,
    "db_retry_base_delay": 0.1,
    "google_page_size": 1000,
    "vcard_paths": None,
    "vcard_cache_ttl": 300.0,
    "search_limit": 10,
    "google_other_contacts": True,
}

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""

    pass


class ConfigLoader:
    """
    YAML configuration file loader.

    Attributes:
        config_dir: Directory containing the configuration file
        config_file: Name of the configuration file

    Usage:
        loader = ConfigLoader()
        config = loader.load_and_validate()

        # Load from specific file
        config = loader.load_from_file("/path/to/config.yaml")
    """

    def __init__(
        self, config_dir: Path | None = None, config_file: str = DEFAULT_CONFIG_FILE
    ):
        """
        Initialize the configuration loader.

        Args:
            config_dir: Directory containing the configuration file.
                       Defaults to ~/.contactsync/ or $CONTACTSYNC_CONFIG_DIR
            config_file: Name of the configuration file (default: config.yaml)
        """
        if config_dir is not None:
            self.config_dir = Path(config_dir)
        else:
            env_dir = os.environ.get(CONFIG_DIR_ENV_VAR)
            if env_dir:
                self.config_dir = Path(env_dir)
            else:
                self.config_dir = DEFAULT_CONFIG_DIR

        self.config_file = config_file

    def _get_config_path(self) -> Path:
        return self.config_dir / self.config_file

    def load(self) -> dict[str, Any]:
        """
        Load configuration from the default configuration file.

        Returns:
            Dictionary containing configuration values, or empty dict if file
            doesn't exist

        Raises:
            ConfigError: If the configuration file exists but cannot be parsed
        """
        return self.load_from_file(self._get_config_path())

    def load_from_file(self, path: Path | str) -> dict[str, Any]:
        """
        Load configuration from a specific file.

        Returns an empty dict if the file doesn't exist, allowing
        graceful operation with CLI defaults.

        Args:
            path: Path to the configuration file

        Returns:
            Dictionary containing configuration values

        Raises:
            ConfigError: If the configuration file exists but cannot be parsed
        """
        path = Path(path)

        if not path.exists():
            logger.debug(f"Configuration file not found: {path}")
            return {}

        try:
            with open(path, encoding="utf-8") as f:
                config = yaml.safe_load(f)

            if config is None:
                logger.debug(f"Configuration file is empty: {path}")
                return {}

            if not isinstance(config, dict):
                raise ConfigError(
                    f"Configuration file must contain a YAML dictionary, "
                    f"got {type(config).__name__}"
                )

            logger.debug(f"Loaded configuration from {path}")
            return config

        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML configuration file: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read configuration file: {e}") from e

    def validate(self, config: dict[str, Any]) -> None:
        """
        Validate configuration structure and values.

        Unknown keys are ignored so newer config files keep working with
        older releases.

        Args:
            config: Configuration dictionary to validate

        Raises:
            ConfigError: If configuration is invalid
        """
        if not isinstance(config, dict):
            raise ConfigError(
                f"Configuration must be a dictionary, got {type(config).__name__}"
            )

        valid_keys: dict[str, type[Any] | tuple[type[Any], ...]] = {
            "database_path": str,
            "log_dir": str,
            "log_retention_count": int,
            "verbose": bool,
            "http_timeout": (int, float),
            "sync_timeout": (int, float),
            "db_max_retries": int,
            "db_retry_base_delay": (int, float),
            "google_page_size": int,
            "vcard_paths": list,
            "vcard_cache_ttl": (int, float),
            "search_limit": int,
            "google_other_contacts": bool,
        }

        for key, value in config.items():
            if key not in valid_keys:
                continue
            expected_type = valid_keys[key]
            # bool is an int subclass; only accept it where bool is expected
            if isinstance(value, bool) and expected_type is not bool:
                raise ConfigError(
                    f"Invalid type for '{key}': expected number, got bool"
                )
            if not isinstance(value, expected_type):
                if isinstance(expected_type, tuple):
                    type_name = " or ".join(t.__name__ for t in expected_type)
                else:
                    type_name = expected_type.__name__
                raise ConfigError(
                    f"Invalid type for '{key}': expected {type_name}, "
                    f"got {type(value).__name__}"
                )

        positive_int_keys = ["db_max_retries", "google_page_size", "search_limit"]
        for key in positive_int_keys:
            if key in config and config[key] < 1:
                raise ConfigError(f"{key} must be >= 1, got {config[key]}")

        if "google_page_size" in config and config["google_page_size"] > 1000:
            raise ConfigError(
                f"google_page_size must be <= 1000, got {config['google_page_size']}"
            )

        if "log_retention_count" in config and config["log_retention_count"] < 0:
            raise ConfigError(
                f"log_retention_count must be >= 0, "
                f"got {config['log_retention_count']}"
            )

        positive_float_keys = [
            "http_timeout",
            "sync_timeout",
            "db_retry_base_delay",
            "vcard_cache_ttl",
        ]
        for key in positive_float_keys:
            if key in config and config[key] <= 0:
                raise ConfigError(f"{key} must be > 0, got {config[key]}")

        if "vcard_paths" in config:
            for entry in config["vcard_paths"]:
                if not isinstance(entry, str):
                    raise ConfigError(
                        f"vcard_paths entries must be strings, "
                        f"got {type(entry).__name__}"
                    )

    def load_and_validate(self) -> dict[str, Any]:
        """
        Load configuration and validate it.

        Returns:
            Validated configuration dictionary

        Raises:
            ConfigError: If configuration cannot be loaded or is invalid
        """
        config = self.load()
        if config:
            self.validate(config)
        return config

    @staticmethod
    def with_defaults(config: dict[str, Any]) -> dict[str, Any]:
        """
        Return a copy of config with DEFAULT_SETTINGS filled in.

        Args:
            config: Validated configuration dictionary

        Returns:
            New dictionary containing every known setting
        """
        merged = dict(DEFAULT_SETTINGS)
        merged.update({k: v for k, v in config.items() if v is not None})
        return merged
