"""
contactsync.utils - Utility module

Common utilities including logging configuration and path resolution.
"""

from contactsync.utils.normalization import last_path_segment, normalize_email
from contactsync.utils.paths import (
    DEFAULT_CONFIG_DIR,
    resolve_config_dir,
    resolve_database_path,
)

__all__ = [
    "normalize_email",
    "last_path_segment",
    "resolve_config_dir",
    "resolve_database_path",
    "DEFAULT_CONFIG_DIR",
]
