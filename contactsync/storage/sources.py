"""
Contact source store.

Persists configured sources, their addressbooks with per-addressbook sync
checkpoints, the contacts synced from them, and the per-source error status.
"""

import logging
import sqlite3
import uuid
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta
from typing import Any, Optional

from contactsync.storage.db import (
    ContactDatabase,
    StoreError,
    StoreIntegrityError,
    from_db_time,
    to_db_time,
    utc_now,
)
from contactsync.storage.models import (
    VALID_SOURCE_TYPES,
    Addressbook,
    AutocompleteContact,
    Contact,
    Source,
    SourceConfig,
    SourceError,
    SourceType,
)
from contactsync.utils.normalization import last_path_segment

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT = 10

_SOURCE_COLUMNS = """
    id, name, type, url, username, account_id, enabled, sync_interval,
    last_synced_at, last_error, last_error_at, created_at
"""

_ADDRESSBOOK_COLUMNS = "id, source_id, path, name, enabled, sync_token, last_synced_at"

_CONTACT_COLUMNS = "id, addressbook_id, email, display_name, href, etag, synced_at"

_UPSERT_CONTACT_SQL = """
    INSERT INTO synced_contacts
        (id, addressbook_id, email, display_name, href, etag, synced_at)
    VALUES (?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(addressbook_id, href, email) DO UPDATE SET
        display_name = excluded.display_name,
        etag = excluded.etag,
        synced_at = excluded.synced_at
"""


class SourceNotFoundError(StoreError):
    """Raised when an operation references a source that does not exist."""

    pass


class SourceValidationError(StoreError):
    """Raised when a source configuration is invalid."""

    pass


def _parse_source_type(value: str) -> SourceType | str:
    if value in VALID_SOURCE_TYPES:
        return SourceType(value)
    logger.warning(f"Unknown contact source type in database: {value!r}")
    return value


def _row_to_source(row: sqlite3.Row) -> Source:
    return Source(
        id=row["id"],
        name=row["name"],
        type=_parse_source_type(row["type"]),
        url=row["url"] or "",
        username=row["username"] or "",
        account_id=row["account_id"],
        enabled=bool(row["enabled"]),
        sync_interval=row["sync_interval"],
        last_synced_at=from_db_time(row["last_synced_at"]),
        last_error=row["last_error"] or "",
        last_error_at=from_db_time(row["last_error_at"]),
        created_at=from_db_time(row["created_at"]),
    )


def _row_to_addressbook(row: sqlite3.Row) -> Addressbook:
    return Addressbook(
        id=row["id"],
        source_id=row["source_id"],
        path=row["path"],
        name=row["name"],
        enabled=bool(row["enabled"]),
        sync_token=row["sync_token"] or "",
        last_synced_at=from_db_time(row["last_synced_at"]),
    )


def _row_to_contact(row: sqlite3.Row) -> Contact:
    return Contact(
        id=row["id"],
        addressbook_id=row["addressbook_id"],
        email=row["email"],
        display_name=row["display_name"],
        href=row["href"],
        etag=row["etag"],
        synced_at=from_db_time(row["synced_at"]),
    )


def validate_source_config(config: SourceConfig) -> SourceType:
    """
    Validate a source configuration.

    Args:
        config: Configuration to validate

    Returns:
        The parsed source type

    Raises:
        SourceValidationError: If the configuration is invalid
    """
    if not config.name or not config.name.strip():
        raise SourceValidationError("source name is required")

    type_value = config.type.value if isinstance(config.type, SourceType) else config.type
    if type_value not in VALID_SOURCE_TYPES:
        raise SourceValidationError(f"unknown source type: {config.type!r}")
    source_type = SourceType(type_value)

    if source_type == SourceType.CARDDAV:
        if not config.url:
            raise SourceValidationError("CardDAV source requires a url")
        if not config.username:
            raise SourceValidationError("CardDAV source requires a username")
    elif config.url:
        raise SourceValidationError(f"{source_type.value} source must not have a url")

    if config.sync_interval < 0:
        raise SourceValidationError(
            f"sync_interval must be >= 0, got {config.sync_interval}"
        )

    return source_type


class ContactSourceStore:
    """
    Store for contact sources, addressbooks and synced contacts.

    Usage:
        db = ContactDatabase(':memory:')
        db.initialize()
        store = ContactSourceStore(db)
        source = store.create_source(SourceConfig(name="Work", type="google"))
    """

    def __init__(self, db: ContactDatabase):
        self.db = db

    # =========================================================================
    # Source Operations
    # =========================================================================

    def create_source(self, config: SourceConfig) -> Source:
        """
        Validate and persist a new source.

        For CardDAV sources, every path in config.enabled_addressbooks is
        created as an enabled addressbook in the same transaction. The
        password in config is never stored.

        Args:
            config: Source configuration

        Returns:
            The created Source

        Raises:
            SourceValidationError: If the configuration is invalid or the
                                   account is already linked to a source
        """
        source_type = validate_source_config(config)
        source = Source(
            id=str(uuid.uuid4()),
            name=config.name.strip(),
            type=source_type,
            url=config.url,
            username=config.username,
            account_id=config.account_id or None,
            enabled=config.enabled,
            sync_interval=config.sync_interval,
            created_at=utc_now(),
        )

        try:
            with self.db.connection() as conn:
                conn.execute(
                    """
                    INSERT INTO contact_sources
                        (id, name, type, url, username, account_id, enabled,
                         sync_interval, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        source.id,
                        source.name,
                        source.type.value,
                        source.url,
                        source.username,
                        source.account_id,
                        int(source.enabled),
                        source.sync_interval,
                        to_db_time(source.created_at),
                    ),
                )
                if source_type == SourceType.CARDDAV:
                    for path in config.enabled_addressbooks:
                        source.addressbooks.append(
                            self._insert_addressbook(
                                conn, source.id, path, last_path_segment(path), True
                            )
                        )
        except StoreIntegrityError as e:
            raise SourceValidationError(
                f"account {source.account_id} is already linked to a contact source"
            ) from e

        logger.info(f"Contact source created: {source.name} ({source.id})")
        return source

    def get_source(self, source_id: str) -> Optional[Source]:
        """
        Get a source by id.

        Returns:
            The Source, or None if not found
        """
        with self.db.connection() as conn:
            row = conn.execute(
                f"SELECT {_SOURCE_COLUMNS} FROM contact_sources WHERE id = ?",
                (source_id,),
            ).fetchone()
        return _row_to_source(row) if row else None

    def get_source_by_account_id(self, account_id: str) -> Optional[Source]:
        """Get the source linked to an email account, if any."""
        with self.db.connection() as conn:
            row = conn.execute(
                f"SELECT {_SOURCE_COLUMNS} FROM contact_sources WHERE account_id = ?",
                (account_id,),
            ).fetchone()
        return _row_to_source(row) if row else None

    def list_sources(self) -> list[Source]:
        """List all sources, oldest first."""
        with self.db.connection() as conn:
            rows = conn.execute(
                f"SELECT {_SOURCE_COLUMNS} FROM contact_sources "
                f"ORDER BY created_at ASC, rowid ASC"
            ).fetchall()
        return [_row_to_source(row) for row in rows]

    def update_source(self, source_id: str, config: SourceConfig) -> Source:
        """
        Update a source's name, url, username, enabled flag and interval.

        The source type cannot change. For CardDAV sources a non-empty
        config.enabled_addressbooks replaces the addressbook set.

        Raises:
            SourceNotFoundError: If the source does not exist
            SourceValidationError: If the configuration is invalid
        """
        existing = self.get_source(source_id)
        if existing is None:
            raise SourceNotFoundError(f"source not found: {source_id}")

        source_type = validate_source_config(config)
        if source_type.value != existing.type_value:
            raise SourceValidationError(
                f"cannot change source type from {existing.type_value} "
                f"to {source_type.value}"
            )

        with self.db.connection() as conn:
            conn.execute(
                """
                UPDATE contact_sources
                SET name = ?, url = ?, username = ?, enabled = ?, sync_interval = ?
                WHERE id = ?
                """,
                (
                    config.name.strip(),
                    config.url,
                    config.username,
                    int(config.enabled),
                    config.sync_interval,
                    source_id,
                ),
            )

        if source_type == SourceType.CARDDAV and config.enabled_addressbooks:
            self.replace_addressbooks(source_id, config.enabled_addressbooks)

        logger.info(f"Contact source updated: {source_id}")
        updated = self.get_source(source_id)
        assert updated is not None
        return updated

    def delete_source(self, source_id: str) -> None:
        """
        Delete a source together with its addressbooks and contacts.

        Raises:
            SourceNotFoundError: If the source does not exist
        """
        with self.db.connection() as conn:
            cursor = conn.execute(
                "DELETE FROM contact_sources WHERE id = ?", (source_id,)
            )
            if cursor.rowcount == 0:
                raise SourceNotFoundError(f"source not found: {source_id}")
        logger.info(f"Contact source deleted: {source_id}")

    def update_source_sync_status(self, source_id: str, error: str = "") -> None:
        """
        Record the outcome of a sync.

        An empty error marks a successful sync: last_synced_at is set to now
        and any previous error is cleared. A non-empty error is recorded with
        its timestamp and leaves last_synced_at untouched.

        Args:
            source_id: Source identifier
            error: Error message, or empty string on success
        """
        now = to_db_time(utc_now())
        with self.db.connection() as conn:
            if error:
                conn.execute(
                    """
                    UPDATE contact_sources
                    SET last_error = ?, last_error_at = ?
                    WHERE id = ?
                    """,
                    (error, now, source_id),
                )
            else:
                conn.execute(
                    """
                    UPDATE contact_sources
                    SET last_synced_at = ?, last_error = NULL, last_error_at = NULL
                    WHERE id = ?
                    """,
                    (now, source_id),
                )

    def clear_source_error(self, source_id: str) -> None:
        """Clear a source's error status without marking it synced."""
        with self.db.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE contact_sources
                SET last_error = NULL, last_error_at = NULL
                WHERE id = ?
                """,
                (source_id,),
            )
            if cursor.rowcount == 0:
                raise SourceNotFoundError(f"source not found: {source_id}")

    def get_sources_with_errors(self) -> list[SourceError]:
        """List sources whose last sync failed, most recent failure first."""
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT id, name, last_error, last_error_at
                FROM contact_sources
                WHERE last_error IS NOT NULL AND last_error != ''
                ORDER BY last_error_at DESC
                """
            ).fetchall()
        return [
            SourceError(
                source_id=row["id"],
                source_name=row["name"],
                error=row["last_error"],
                error_at=from_db_time(row["last_error_at"]),
            )
            for row in rows
        ]

    def get_sources_due_for_sync(self, now: Optional[datetime] = None) -> list[Source]:
        """
        List enabled sources with a sync interval that are due.

        A source is due if it was never synced, or if at least sync_interval
        minutes have passed since its last successful sync.

        Args:
            now: Reference time (defaults to current UTC time)
        """
        now = now or utc_now()
        due = []
        for source in self.list_sources():
            if not source.enabled or source.sync_interval <= 0:
                continue
            if source.last_synced_at is None:
                due.append(source)
                continue
            if now - source.last_synced_at >= timedelta(minutes=source.sync_interval):
                due.append(source)
        return due

    def get_stats(self) -> dict[str, Any]:
        """
        Get store statistics.

        Returns:
            Dictionary with source, addressbook, contact and error counts
        """
        with self.db.connection() as conn:
            total_sources = conn.execute(
                "SELECT COUNT(*) FROM contact_sources"
            ).fetchone()[0]
            enabled_sources = conn.execute(
                "SELECT COUNT(*) FROM contact_sources WHERE enabled = 1"
            ).fetchone()[0]
            total_addressbooks = conn.execute(
                "SELECT COUNT(*) FROM contact_source_addressbooks"
            ).fetchone()[0]
            total_contacts = conn.execute(
                "SELECT COUNT(*) FROM synced_contacts"
            ).fetchone()[0]
            sources_with_errors = conn.execute(
                """
                SELECT COUNT(*) FROM contact_sources
                WHERE last_error IS NOT NULL AND last_error != ''
                """
            ).fetchone()[0]

        return {
            "total_sources": total_sources,
            "enabled_sources": enabled_sources,
            "total_addressbooks": total_addressbooks,
            "total_contacts": total_contacts,
            "sources_with_errors": sources_with_errors,
        }

    # =========================================================================
    # Addressbook Operations
    # =========================================================================

    def _insert_addressbook(
        self,
        conn: sqlite3.Connection,
        source_id: str,
        path: str,
        name: str,
        enabled: bool,
    ) -> Addressbook:
        addressbook = Addressbook(
            id=str(uuid.uuid4()),
            source_id=source_id,
            path=path,
            name=name or last_path_segment(path) or path,
            enabled=enabled,
        )
        conn.execute(
            """
            INSERT INTO contact_source_addressbooks
                (id, source_id, path, name, enabled)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                addressbook.id,
                source_id,
                path,
                addressbook.name,
                int(enabled),
            ),
        )
        return addressbook

    def create_addressbook(
        self, source_id: str, path: str, name: str = "", enabled: bool = True
    ) -> Addressbook:
        """
        Create an addressbook for a source.

        Args:
            source_id: Owning source
            path: Collection path on the server, or "/" for OAuth sources
            name: Display name (defaults to the last path segment)
            enabled: Whether the addressbook is synced and searched

        Raises:
            SourceNotFoundError: If the source does not exist
            StoreError: If the source already has an addressbook at path
        """
        try:
            with self.db.connection() as conn:
                return self._insert_addressbook(conn, source_id, path, name, enabled)
        except StoreIntegrityError as e:
            if self.get_source(source_id) is None:
                raise SourceNotFoundError(f"source not found: {source_id}") from e
            raise StoreError(
                f"addressbook {path} already exists for source {source_id}"
            ) from e

    def get_addressbook(self, addressbook_id: str) -> Optional[Addressbook]:
        """Get an addressbook by id, or None if not found."""
        with self.db.connection() as conn:
            row = conn.execute(
                f"SELECT {_ADDRESSBOOK_COLUMNS} FROM contact_source_addressbooks "
                f"WHERE id = ?",
                (addressbook_id,),
            ).fetchone()
        return _row_to_addressbook(row) if row else None

    def list_addressbooks(self, source_id: str) -> list[Addressbook]:
        """List a source's addressbooks ordered by name."""
        with self.db.connection() as conn:
            rows = conn.execute(
                f"SELECT {_ADDRESSBOOK_COLUMNS} FROM contact_source_addressbooks "
                f"WHERE source_id = ? ORDER BY name ASC",
                (source_id,),
            ).fetchall()
        return [_row_to_addressbook(row) for row in rows]

    def list_enabled_addressbooks(self, source_id: str) -> list[Addressbook]:
        """List a source's enabled addressbooks ordered by name."""
        with self.db.connection() as conn:
            rows = conn.execute(
                f"SELECT {_ADDRESSBOOK_COLUMNS} FROM contact_source_addressbooks "
                f"WHERE source_id = ? AND enabled = 1 ORDER BY name ASC",
                (source_id,),
            ).fetchall()
        return [_row_to_addressbook(row) for row in rows]

    def set_addressbook_enabled(self, addressbook_id: str, enabled: bool) -> None:
        """Enable or disable an addressbook."""
        with self.db.connection() as conn:
            cursor = conn.execute(
                "UPDATE contact_source_addressbooks SET enabled = ? WHERE id = ?",
                (int(enabled), addressbook_id),
            )
            if cursor.rowcount == 0:
                raise StoreError(f"addressbook not found: {addressbook_id}")

    def replace_addressbooks(
        self, source_id: str, paths: Sequence[str]
    ) -> list[Addressbook]:
        """
        Make a source's addressbooks match the given paths.

        Addressbooks already present keep their checkpoint and contacts and
        are enabled. Missing paths are created. Addressbooks not listed are
        deleted together with their contacts. All in one transaction.

        Args:
            source_id: Owning source
            paths: Collection paths to keep

        Returns:
            The resulting addressbooks ordered by name
        """
        wanted = list(dict.fromkeys(paths))
        with self.db.connection() as conn:
            existing = {
                row["path"]: row["id"]
                for row in conn.execute(
                    "SELECT id, path FROM contact_source_addressbooks "
                    "WHERE source_id = ?",
                    (source_id,),
                )
            }
            for path, addressbook_id in existing.items():
                if path not in wanted:
                    conn.execute(
                        "DELETE FROM contact_source_addressbooks WHERE id = ?",
                        (addressbook_id,),
                    )
                else:
                    conn.execute(
                        "UPDATE contact_source_addressbooks SET enabled = 1 "
                        "WHERE id = ?",
                        (addressbook_id,),
                    )
            for path in wanted:
                if path not in existing:
                    self._insert_addressbook(
                        conn, source_id, path, last_path_segment(path), True
                    )

        return self.list_addressbooks(source_id)

    def delete_addressbooks_for_source(self, source_id: str) -> None:
        """Delete all addressbooks of a source (contacts cascade)."""
        with self.db.connection() as conn:
            conn.execute(
                "DELETE FROM contact_source_addressbooks WHERE source_id = ?",
                (source_id,),
            )

    def update_addressbook_sync_token(self, addressbook_id: str, sync_token: str) -> None:
        """
        Store an addressbook's checkpoint and mark it synced now.

        Args:
            addressbook_id: Addressbook identifier
            sync_token: New checkpoint (empty forces a full sync next time)
        """
        with self.db.connection() as conn:
            conn.execute(
                """
                UPDATE contact_source_addressbooks
                SET sync_token = ?, last_synced_at = ?
                WHERE id = ?
                """,
                (sync_token, to_db_time(utc_now()), addressbook_id),
            )

    # =========================================================================
    # Contact Operations
    # =========================================================================

    def _upsert_contacts(
        self, conn: sqlite3.Connection, contacts: Sequence[Contact]
    ) -> int:
        """Upsert rows on an open transaction. Returns the number written."""
        now = utc_now()
        synced_at = to_db_time(now)
        written = 0

        emails_by_href: dict[tuple[str, str], set[str]] = {}
        for contact in contacts:
            key = (contact.addressbook_id, contact.href)
            emails_by_href.setdefault(key, set()).add(contact.email)

        for contact in contacts:
            if not contact.id:
                contact.id = str(uuid.uuid4())
            contact.synced_at = now
            try:
                conn.execute(
                    _UPSERT_CONTACT_SQL,
                    (
                        contact.id,
                        contact.addressbook_id,
                        contact.email,
                        contact.display_name,
                        contact.href,
                        contact.etag,
                        synced_at,
                    ),
                )
                written += 1
            except sqlite3.IntegrityError as e:
                logger.warning(f"Failed to upsert contact {contact.email}: {e}")

        # Drop addresses that were removed from an entity
        for (addressbook_id, href), emails in emails_by_href.items():
            placeholders = ", ".join("?" for _ in emails)
            conn.execute(
                f"""
                DELETE FROM synced_contacts
                WHERE addressbook_id = ? AND href = ? AND email NOT IN ({placeholders})
                """,
                (addressbook_id, href, *emails),
            )

        return written

    def upsert_contacts_batch(self, contacts: Sequence[Contact]) -> int:
        """
        Insert or update contacts in a single transaction.

        Rows are keyed by (addressbook_id, href, email). Rows sharing an href
        with the batch whose email is no longer present are removed. A row
        that fails to write is logged and skipped.

        Args:
            contacts: Contacts to write

        Returns:
            Number of rows written
        """
        if not contacts:
            return 0
        with self.db.connection() as conn:
            written = self._upsert_contacts(conn, contacts)
        logger.debug(f"Batch upsert complete: {written}/{len(contacts)}")
        return written

    def delete_contacts_by_hrefs(self, addressbook_id: str, hrefs: Iterable[str]) -> int:
        """
        Delete all rows of the given hrefs in one transaction.

        Returns:
            Number of rows deleted
        """
        hrefs = list(hrefs)
        if not hrefs:
            return 0
        deleted = 0
        with self.db.connection() as conn:
            for href in hrefs:
                cursor = conn.execute(
                    "DELETE FROM synced_contacts WHERE addressbook_id = ? AND href = ?",
                    (addressbook_id, href),
                )
                deleted += cursor.rowcount
        logger.debug(f"Batch delete complete: {deleted} rows for {len(hrefs)} hrefs")
        return deleted

    def delete_contacts_for_addressbook(self, addressbook_id: str) -> int:
        """Delete every contact of an addressbook. Returns rows deleted."""
        with self.db.connection() as conn:
            cursor = conn.execute(
                "DELETE FROM synced_contacts WHERE addressbook_id = ?",
                (addressbook_id,),
            )
            return cursor.rowcount

    def replace_addressbook_contacts(
        self, addressbook_id: str, contacts: Sequence[Contact]
    ) -> int:
        """
        Replace an addressbook's contacts with a full snapshot.

        The delete and the inserts share one transaction, so readers see
        either the old set or the new one.

        Returns:
            Number of rows written
        """
        with self.db.connection() as conn:
            conn.execute(
                "DELETE FROM synced_contacts WHERE addressbook_id = ?",
                (addressbook_id,),
            )
            written = self._upsert_contacts(conn, contacts)
        logger.debug(f"Replaced contacts of addressbook {addressbook_id}: {written}")
        return written

    def apply_contact_changes(
        self,
        addressbook_id: str,
        deleted_hrefs: Iterable[str],
        updated: Sequence[Contact],
    ) -> tuple[int, int]:
        """
        Apply an incremental change set in one transaction.

        Deletions are applied before upserts.

        Returns:
            Tuple of (rows deleted, rows written)
        """
        deleted = 0
        with self.db.connection() as conn:
            for href in deleted_hrefs:
                cursor = conn.execute(
                    "DELETE FROM synced_contacts WHERE addressbook_id = ? AND href = ?",
                    (addressbook_id, href),
                )
                deleted += cursor.rowcount
            written = self._upsert_contacts(conn, updated) if updated else 0
        return deleted, written

    def list_contacts(self, addressbook_id: str) -> list[Contact]:
        """List an addressbook's contacts ordered by display name and email."""
        with self.db.connection() as conn:
            rows = conn.execute(
                f"SELECT {_CONTACT_COLUMNS} FROM synced_contacts "
                f"WHERE addressbook_id = ? ORDER BY display_name ASC, email ASC",
                (addressbook_id,),
            ).fetchall()
        return [_row_to_contact(row) for row in rows]

    def get_contact_by_href(self, addressbook_id: str, href: str) -> Optional[Contact]:
        """Get the first row stored for an href, or None."""
        with self.db.connection() as conn:
            row = conn.execute(
                f"SELECT {_CONTACT_COLUMNS} FROM synced_contacts "
                f"WHERE addressbook_id = ? AND href = ? ORDER BY email ASC LIMIT 1",
                (addressbook_id, href),
            ).fetchone()
        return _row_to_contact(row) if row else None

    def search_contacts(
        self, query: str, limit: int = DEFAULT_SEARCH_LIMIT
    ) -> list[AutocompleteContact]:
        """
        Search synced contacts by email or display name.

        Only contacts in enabled addressbooks of enabled sources match.
        Results are labelled with the source type.

        Args:
            query: Case-insensitive substring
            limit: Maximum number of results (non-positive means default)
        """
        if limit <= 0:
            limit = DEFAULT_SEARCH_LIMIT
        pattern = f"%{query.lower()}%"

        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT c.email, c.display_name, s.type
                FROM synced_contacts c
                JOIN contact_source_addressbooks ab ON c.addressbook_id = ab.id
                JOIN contact_sources s ON ab.source_id = s.id
                WHERE s.enabled = 1 AND ab.enabled = 1
                  AND (LOWER(c.email) LIKE ? OR LOWER(c.display_name) LIKE ?)
                ORDER BY c.display_name ASC, c.email ASC
                LIMIT ?
                """,
                (pattern, pattern, limit),
            ).fetchall()

        return [
            AutocompleteContact(
                email=row["email"],
                display_name=row["display_name"],
                source=row["type"],
            )
            for row in rows
        ]

    def count_contacts(self) -> int:
        """Total number of synced contact rows."""
        with self.db.connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM synced_contacts").fetchone()[0]

    def count_contacts_for_source(self, source_id: str) -> int:
        """Number of synced contact rows belonging to a source."""
        with self.db.connection() as conn:
            return conn.execute(
                """
                SELECT COUNT(*)
                FROM synced_contacts c
                JOIN contact_source_addressbooks ab ON c.addressbook_id = ab.id
                WHERE ab.source_id = ?
                """,
                (source_id,),
            ).fetchone()[0]
