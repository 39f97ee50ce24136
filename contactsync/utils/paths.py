"""
Path utilities for configuration directory resolution.

Provides consistent path resolution for the contactsync configuration
directory across all modules.
"""

from __future__ import annotations

import os
from pathlib import Path

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".contactsync"

# Environment variable for overriding config directory
CONFIG_DIR_ENV_VAR = "CONTACTSYNC_CONFIG_DIR"

# Default database file name inside the config directory
DEFAULT_DATABASE_FILE = "contacts.db"


def resolve_config_dir(config_dir: Path | str | None = None) -> Path:
    """
    Resolve the configuration directory path.

    Priority:
        1. Explicit config_dir parameter (if provided)
        2. CONTACTSYNC_CONFIG_DIR environment variable
        3. Default directory (~/.contactsync)

    Args:
        config_dir: Optional explicit configuration directory path.
                   Can be a Path object or string.

    Returns:
        Resolved Path to the configuration directory (expanduser and resolve applied)
    """
    if config_dir is not None:
        return Path(config_dir).expanduser().resolve()

    env_dir = os.environ.get(CONFIG_DIR_ENV_VAR)
    if env_dir:
        return Path(env_dir).expanduser().resolve()

    return DEFAULT_CONFIG_DIR.expanduser().resolve()


def resolve_database_path(
    config_dir: Path, database_path: Path | str | None = None
) -> Path:
    """
    Resolve the SQLite database path.

    A relative database_path is taken relative to the configuration directory.

    Args:
        config_dir: Resolved configuration directory
        database_path: Optional explicit path from configuration

    Returns:
        Absolute path to the database file
    """
    if not database_path:
        return config_dir / DEFAULT_DATABASE_FILE

    path = Path(database_path).expanduser()
    if not path.is_absolute():
        path = config_dir / path
    return path
