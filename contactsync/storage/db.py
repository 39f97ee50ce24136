"""
SQLite database module for contact sources, synced contacts and send history.

Provides the schema, connection handling and the busy/locked error signal
shared by ContactSourceStore and LocalContactStore.
"""

import sqlite3
import threading
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

# SQL Schema for contact sources, addressbooks, synced contacts and local contacts
SCHEMA = """
CREATE TABLE IF NOT EXISTS contact_sources (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    type TEXT NOT NULL,
    url TEXT NOT NULL DEFAULT '',
    username TEXT NOT NULL DEFAULT '',
    account_id TEXT,
    enabled INTEGER NOT NULL DEFAULT 1,
    sync_interval INTEGER NOT NULL DEFAULT 0,
    last_synced_at TEXT,
    last_error TEXT,
    last_error_at TEXT,
    created_at TEXT NOT NULL,
    UNIQUE(account_id)
);

CREATE TABLE IF NOT EXISTS contact_source_addressbooks (
    id TEXT PRIMARY KEY,
    source_id TEXT NOT NULL REFERENCES contact_sources(id) ON DELETE CASCADE,
    path TEXT NOT NULL,
    name TEXT NOT NULL,
    enabled INTEGER NOT NULL DEFAULT 1,
    sync_token TEXT,
    last_synced_at TEXT,
    UNIQUE(source_id, path)
);

CREATE INDEX IF NOT EXISTS idx_addressbooks_source
    ON contact_source_addressbooks(source_id);

CREATE TABLE IF NOT EXISTS synced_contacts (
    id TEXT PRIMARY KEY,
    addressbook_id TEXT NOT NULL
        REFERENCES contact_source_addressbooks(id) ON DELETE CASCADE,
    email TEXT NOT NULL,
    display_name TEXT NOT NULL DEFAULT '',
    href TEXT NOT NULL,
    etag TEXT NOT NULL DEFAULT '',
    synced_at TEXT NOT NULL,
    UNIQUE(addressbook_id, href, email)
);

CREATE INDEX IF NOT EXISTS idx_synced_contacts_addressbook
    ON synced_contacts(addressbook_id);
CREATE INDEX IF NOT EXISTS idx_synced_contacts_href
    ON synced_contacts(addressbook_id, href);
CREATE INDEX IF NOT EXISTS idx_synced_contacts_email ON synced_contacts(email);

CREATE TABLE IF NOT EXISTS local_contacts (
    email TEXT PRIMARY KEY,
    display_name TEXT NOT NULL DEFAULT '',
    send_count INTEGER NOT NULL DEFAULT 0,
    last_used TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_local_contacts_send_count
    ON local_contacts(send_count DESC);
CREATE INDEX IF NOT EXISTS idx_local_contacts_last_used
    ON local_contacts(last_used DESC);
"""

# Substrings of sqlite3.OperationalError messages that signal contention
BUSY_ERROR_MARKERS = (
    "database is locked",
    "database table is locked",
    "sqlite_busy",
    "database is busy",
)

# Seconds sqlite waits on a lock before raising "database is locked"
DEFAULT_BUSY_TIMEOUT = 5.0


class StoreError(Exception):
    """Raised when a store operation fails."""

    pass


class StoreBusyError(StoreError):
    """Raised when the database is locked by another writer (transient)."""

    pass


class StoreIntegrityError(StoreError):
    """Raised when a write violates a uniqueness or foreign key constraint."""

    pass


def is_busy_error(error: BaseException) -> bool:
    """
    Check whether an error is the store's transient busy/locked signal.

    Args:
        error: Exception raised by a store operation

    Returns:
        True for StoreBusyError and for sqlite3.OperationalError whose
        message reports a locked or busy database
    """
    if isinstance(error, StoreBusyError):
        return True
    if isinstance(error, sqlite3.OperationalError):
        message = str(error).lower()
        return any(marker in message for marker in BUSY_ERROR_MARKERS)
    return False


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_db_time(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime for storage (ISO-8601, UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def from_db_time(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ContactDatabase:
    """
    SQLite database manager shared by the contact stores.

    Usage:
        db = ContactDatabase('/path/to/contacts.db')
        db.initialize()

        # Or use in-memory for testing:
        db = ContactDatabase(':memory:')
        db.initialize()
    """

    def __init__(self, db_path: str, busy_timeout: float = DEFAULT_BUSY_TIMEOUT):
        """
        Initialize the database manager.

        Args:
            db_path: Path to SQLite database file, or ':memory:' for in-memory database
            busy_timeout: Seconds to wait on a locked database before failing
        """
        self.db_path = db_path
        self.busy_timeout = busy_timeout
        self._shared_connection: Optional[sqlite3.Connection] = None
        self._shared_lock = threading.RLock()

    @property
    def is_memory(self) -> bool:
        return self.db_path == ":memory:"

    def _connect(self, path: str, check_same_thread: bool = True) -> sqlite3.Connection:
        conn = sqlite3.connect(
            path, timeout=self.busy_timeout, check_same_thread=check_same_thread
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get a database connection.

        For in-memory databases, returns a shared connection so the schema
        persists across operations. For file databases, creates a new
        connection each time.
        """
        if self.is_memory:
            if self._shared_connection is None:
                self._shared_connection = self._connect(
                    ":memory:", check_same_thread=False
                )
            return self._shared_connection
        return self._connect(self.db_path)

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for a database transaction.

        Commits on success and rolls back on error. sqlite errors surface
        as StoreError: StoreBusyError for a locked or busy database,
        StoreIntegrityError for constraint violations.

        Yields:
            sqlite3.Connection: Database connection

        Usage:
            with db.connection() as conn:
                conn.execute("SELECT * FROM contact_sources")
        """
        if self.is_memory:
            self._shared_lock.acquire()
        try:
            try:
                conn = self._get_connection()
            except sqlite3.Error as e:
                if is_busy_error(e):
                    raise StoreBusyError(str(e)) from e
                raise StoreError(f"Failed to open database {self.db_path}: {e}") from e
            try:
                yield conn
                conn.commit()
            except sqlite3.IntegrityError as e:
                conn.rollback()
                raise StoreIntegrityError(str(e)) from e
            except sqlite3.Error as e:
                conn.rollback()
                if is_busy_error(e):
                    raise StoreBusyError(str(e)) from e
                raise StoreError(f"Database error: {e}") from e
            except Exception:
                conn.rollback()
                raise
            finally:
                if not self.is_memory:
                    conn.close()
        finally:
            if self.is_memory:
                self._shared_lock.release()

    def initialize(self) -> None:
        """Create all tables and indexes if they don't exist."""
        with self.connection() as conn:
            conn.executescript(SCHEMA)

    def close(self) -> None:
        """Close the shared in-memory connection, discarding its data."""
        with self._shared_lock:
            if self._shared_connection is not None:
                self._shared_connection.close()
                self._shared_connection = None

    def vacuum(self) -> None:
        """Vacuum the database to reclaim space."""
        with self.connection() as conn:
            conn.execute("VACUUM")
