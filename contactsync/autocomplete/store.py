"""
Local autocomplete store.

Keeps the addresses the user has sent mail to, and answers recipient
searches by merging them with vCard files on disk and any registered
contact searchers (such as the synced contact source store).
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable
from typing import Optional, Protocol

from contactsync.autocomplete.merge import merge_results
from contactsync.autocomplete.vcard_scanner import VCardScanner
from contactsync.storage.db import (
    ContactDatabase,
    StoreError,
    from_db_time,
    to_db_time,
    utc_now,
)
from contactsync.storage.models import SOURCE_LOCAL, AutocompleteContact
from contactsync.utils.normalization import normalize_email

DEFAULT_LIMIT = 10

# Below this many local and vCard hits, a stale vCard cache is refreshed
MIN_LOCAL_RESULTS = 3

logger = logging.getLogger(__name__)


class ContactSearcher(Protocol):
    """Anything that can answer a recipient search."""

    def search_contacts(self, query: str, limit: int) -> list[AutocompleteContact]:
        ...


def _row_to_contact(row: sqlite3.Row) -> AutocompleteContact:
    return AutocompleteContact(
        email=row["email"],
        display_name=row["display_name"],
        source=SOURCE_LOCAL,
        send_count=row["send_count"],
        last_used=from_db_time(row["last_used"]),
        created_at=from_db_time(row["created_at"]),
    )


class LocalContactStore:
    """
    Send-history contact store with merged search.

    Usage:
        store = LocalContactStore(db, vcard_scanner=VCardScanner())
        store.register_searcher(source_store)
        store.record_sent("alice@example.com", "Alice")
        suggestions = store.search("ali")
    """

    def __init__(
        self,
        db: ContactDatabase,
        vcard_scanner: Optional[VCardScanner] = None,
        searchers: Iterable[ContactSearcher] = (),
    ):
        self.db = db
        self.vcard_scanner = vcard_scanner
        self.searchers: list[ContactSearcher] = list(searchers)

    def register_searcher(self, searcher: ContactSearcher) -> None:
        """Add a searcher consulted by search()."""
        self.searchers.append(searcher)

    # =========================================================================
    # Send History
    # =========================================================================

    def record_sent(self, email: str, display_name: str = "") -> None:
        """
        Record that mail was sent to an address.

        The address is trimmed and lowercased. Its send count is
        incremented and last use set to now. An empty display name keeps
        the previously known name.

        Raises:
            ValueError: If email is empty
        """
        email = normalize_email(email)
        display_name = (display_name or "").strip()
        if not email:
            raise ValueError("email cannot be empty")

        now = to_db_time(utc_now())
        with self.db.connection() as conn:
            conn.execute(
                """
                INSERT INTO local_contacts
                    (email, display_name, send_count, last_used, created_at)
                VALUES (?, ?, 1, ?, ?)
                ON CONFLICT(email) DO UPDATE SET
                    display_name = CASE
                        WHEN excluded.display_name != '' THEN excluded.display_name
                        ELSE local_contacts.display_name
                    END,
                    send_count = local_contacts.send_count + 1,
                    last_used = excluded.last_used
                """,
                (email, display_name, now, now),
            )
        logger.debug(f"Contact added/updated: {email}")

    def add_from_sent_mail(self, recipients: Iterable[tuple[str, str]]) -> int:
        """
        Record every recipient of a sent message.

        Invalid recipients are logged and skipped.

        Args:
            recipients: (email, display_name) pairs

        Returns:
            Number of recipients recorded
        """
        recorded = 0
        for email, name in recipients:
            try:
                self.record_sent(email, name)
                recorded += 1
            except ValueError as e:
                logger.warning(f"Failed to add contact from sent mail {email!r}: {e}")
        return recorded

    def get(self, email: str) -> Optional[AutocompleteContact]:
        """Get a local contact by email, or None."""
        with self.db.connection() as conn:
            row = conn.execute(
                """
                SELECT email, display_name, send_count, last_used, created_at
                FROM local_contacts WHERE email = ?
                """,
                (normalize_email(email),),
            ).fetchone()
        return _row_to_contact(row) if row else None

    def delete(self, email: str) -> bool:
        """
        Forget a local contact.

        Returns:
            True if a contact was deleted
        """
        with self.db.connection() as conn:
            cursor = conn.execute(
                "DELETE FROM local_contacts WHERE email = ?",
                (normalize_email(email),),
            )
            return cursor.rowcount > 0

    def list(self, limit: int = 100) -> list[AutocompleteContact]:
        """List local contacts, most used first."""
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT email, display_name, send_count, last_used, created_at
                FROM local_contacts
                ORDER BY send_count DESC, last_used DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [_row_to_contact(row) for row in rows]

    def count(self) -> int:
        with self.db.connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM local_contacts").fetchone()[0]

    # =========================================================================
    # Search
    # =========================================================================

    def search_local(self, query: str, limit: int = DEFAULT_LIMIT) -> list[AutocompleteContact]:
        """Search send history by email or name, most used first."""
        pattern = f"%{query.lower()}%"
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT email, display_name, send_count, last_used, created_at
                FROM local_contacts
                WHERE LOWER(email) LIKE ? OR LOWER(display_name) LIKE ?
                ORDER BY send_count DESC, last_used DESC
                LIMIT ?
                """,
                (pattern, pattern, limit),
            ).fetchall()
        return [_row_to_contact(row) for row in rows]

    def search(self, query: str, limit: int = DEFAULT_LIMIT) -> list[AutocompleteContact]:
        """
        Search every contact source and return merged suggestions.

        A source that fails is logged and contributes no results.

        Args:
            query: Case-insensitive substring of email or name
            limit: Maximum number of suggestions (non-positive means default)

        Returns:
            Ranked suggestions, at most limit
        """
        if limit <= 0:
            limit = DEFAULT_LIMIT

        try:
            local = self.search_local(query, limit)
        except StoreError as e:
            logger.warning(f"Failed to search local contacts: {e}")
            local = []

        vcard: list[AutocompleteContact] = []
        if self.vcard_scanner is not None:
            try:
                vcard = self.vcard_scanner.search(query, limit)
            except OSError as e:
                logger.warning(f"Failed to search vCard contacts: {e}")
            if len(local) + len(vcard) < MIN_LOCAL_RESULTS:
                self.vcard_scanner.refresh_if_needed()

        remote: list[AutocompleteContact] = []
        for searcher in self.searchers:
            try:
                remote.extend(searcher.search_contacts(query, limit))
            except Exception as e:
                logger.warning(
                    f"Failed to search contacts in {type(searcher).__name__}: {e}"
                )

        return merge_results(local, vcard, remote)[:limit]
