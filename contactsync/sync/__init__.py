"""Sync orchestration for remote contact sources."""

from contactsync.sync.engine import (
    SourceConfigError,
    SourceSyncReport,
    SyncError,
    SyncOrchestrator,
)
from contactsync.sync.locks import KeyedLock
from contactsync.sync.retry import retry_db_operation

__all__ = [
    "KeyedLock",
    "SourceConfigError",
    "SourceSyncReport",
    "SyncError",
    "SyncOrchestrator",
    "retry_db_operation",
]
