"""
Scanner for vCard files left on disk by desktop address books.
"""

import logging
import os
import threading
import time
from collections.abc import Iterator, Sequence
from pathlib import Path
from typing import Optional

from contactsync.api.vcard import parse_vcards
from contactsync.storage.models import SOURCE_VCARD, AutocompleteContact
from contactsync.utils.normalization import normalize_email

# Seconds a scan result stays valid
DEFAULT_CACHE_TTL = 300.0

VCARD_SUFFIX = ".vcf"

logger = logging.getLogger(__name__)


def default_vcard_paths() -> list[Path]:
    """Directories where common desktop address books keep vCards."""
    home = Path.home()
    return [
        home / ".local" / "share" / "evolution" / "addressbook",
        home / ".local" / "share" / "gnome-contacts",
        home / ".local" / "share" / "contacts",
        home / ".contacts",
        home / ".local" / "share" / "kaddressbook",
        home / ".kde" / "share" / "apps" / "kabc",
    ]


class VCardScanner:
    """
    Finds contacts in .vcf files under a set of paths.

    Results are deduplicated by lowercased email and cached for a TTL.
    Paths may be directories (walked recursively) or single .vcf files.

    Usage:
        scanner = VCardScanner(default_vcard_paths())
        matches = scanner.search("ali", limit=5)
    """

    def __init__(
        self,
        paths: Optional[Sequence[Path | str]] = None,
        ttl: float = DEFAULT_CACHE_TTL,
    ):
        if paths is None:
            paths = default_vcard_paths()
        self.paths = [Path(p).expanduser() for p in paths]
        self.ttl = ttl
        self._lock = threading.RLock()
        self._cache: Optional[list[AutocompleteContact]] = None
        self._cache_time = 0.0
        self._refresh_thread: Optional[threading.Thread] = None

    def is_cache_valid(self) -> bool:
        with self._lock:
            if self._cache is None:
                return False
            return time.monotonic() - self._cache_time < self.ttl

    @property
    def cache_size(self) -> int:
        with self._lock:
            return len(self._cache or [])

    def _iter_vcard_files(self) -> Iterator[Path]:
        for base in self.paths:
            if not base.exists():
                continue
            if base.is_file():
                if base.suffix.lower() == VCARD_SUFFIX:
                    yield base
                continue
            for root, _dirs, files in os.walk(base):
                for name in sorted(files):
                    if name.lower().endswith(VCARD_SUFFIX):
                        yield Path(root) / name

    def _parse_file(self, path: Path) -> list[AutocompleteContact]:
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning(f"Failed to read vCard file {path}: {e}")
            return []

        contacts = []
        for card in parse_vcards(text):
            for email in card.emails:
                contacts.append(
                    AutocompleteContact(
                        email=email,
                        display_name=card.display_name,
                        source=SOURCE_VCARD,
                    )
                )
        return contacts

    def scan(self) -> list[AutocompleteContact]:
        """
        Rescan every path and replace the cache.

        Returns:
            Contacts found, first occurrence of each email wins
        """
        logger.debug(f"Scanning for vCard files in {len(self.paths)} paths")
        contacts: list[AutocompleteContact] = []
        seen: set[str] = set()

        for path in self._iter_vcard_files():
            for contact in self._parse_file(path):
                key = normalize_email(contact.email)
                if key in seen:
                    continue
                seen.add(key)
                contacts.append(contact)

        with self._lock:
            self._cache = contacts
            self._cache_time = time.monotonic()

        logger.info(f"vCard scan complete: {len(contacts)} contacts")
        return contacts

    def search(self, query: str, limit: int = 10) -> list[AutocompleteContact]:
        """
        Find cached contacts whose email or name contains query.

        A stale cache is rescanned first, synchronously.
        """
        query = query.strip().lower()
        if not query:
            return []
        if limit <= 0:
            limit = 10

        if not self.is_cache_valid():
            self.scan()

        results = []
        with self._lock:
            for contact in self._cache or []:
                if query in contact.email.lower() or query in contact.display_name.lower():
                    results.append(contact)
                    if len(results) >= limit:
                        break
        return results

    def get_cached_contacts(self) -> list[AutocompleteContact]:
        """Copy of the cached contacts (empty if never scanned)."""
        with self._lock:
            return list(self._cache or [])

    def refresh_if_needed(self) -> Optional[threading.Thread]:
        """
        Rescan on a background thread when the cache is stale.

        Returns:
            The started thread, or None if no refresh was needed or one is
            already running
        """
        if self.is_cache_valid():
            return None
        with self._lock:
            if self._refresh_thread is not None and self._refresh_thread.is_alive():
                return None
            thread = threading.Thread(
                target=self._background_scan, name="vcard-scan", daemon=True
            )
            self._refresh_thread = thread
        thread.start()
        return thread

    def _background_scan(self) -> None:
        try:
            self.scan()
        except Exception as e:
            logger.warning(f"Background vCard scan failed: {e}")
