"""CLI package for contactsync."""

from contactsync.cli.formatters import (
    format_time,
    show_addressbooks,
    show_discovered,
    show_source_errors,
    show_sources,
    show_stats,
    show_suggestions,
    show_sync_report,
)
from contactsync.cli.main import (
    cli,
    get_config_dir,
    get_local_store,
    get_orchestrator,
    get_source_store,
)
from contactsync.utils import DEFAULT_CONFIG_DIR

__all__ = [
    "DEFAULT_CONFIG_DIR",
    "cli",
    "format_time",
    "get_config_dir",
    "get_local_store",
    "get_orchestrator",
    "get_source_store",
    "show_addressbooks",
    "show_discovered",
    "show_source_errors",
    "show_sources",
    "show_stats",
    "show_suggestions",
    "show_sync_report",
]
