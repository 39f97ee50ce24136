"""
Google People API client for delta contact sync.

Lists the user's connections with sync token support:
- Full sync requests a sync token and pages through every connection
- Incremental sync passes the stored token on the first page
- An expired token triggers a single fallback to full sync

GoogleOtherContactsSearcher searches "other contacts" live for autocomplete.
"""

import json
import logging
import threading
import time
from typing import Any, Optional

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from contactsync.api.batch import (
    CheckpointExpiredError,
    ProtocolError,
    RemoteContact,
    RemoteContactBatch,
    check_cancelled,
)
from contactsync.storage.models import SOURCE_GOOGLE, AutocompleteContact, SourceType

# Only names and addresses are needed for autocomplete
PERSON_FIELDS = "names,emailAddresses"

# API maximum page size
MAX_PAGE_SIZE = 1000
DEFAULT_PAGE_SIZE = MAX_PAGE_SIZE

EXPIRED_SYNC_TOKEN_REASON = "EXPIRED_SYNC_TOKEN"

# otherContacts:search caps pageSize at 30
MAX_SEARCH_PAGE_SIZE = 30
DEFAULT_SEARCH_LIMIT = 10

# Seconds a search result stays cached
DEFAULT_SEARCH_CACHE_TTL = 15 * 60.0

logger = logging.getLogger(__name__)


class GoogleContactsError(ProtocolError):
    """Raised when a Google People API request fails."""

    pass


def _error_reasons(error: HttpError) -> list[str]:
    """Extract error.details[].reason values from an HttpError body."""
    try:
        payload = json.loads(error.content.decode("utf-8"))
    except (AttributeError, UnicodeDecodeError, ValueError):
        return []
    if not isinstance(payload, dict):
        return []
    details = payload.get("error", {}).get("details", [])
    if not isinstance(details, list):
        return []
    return [d.get("reason", "") for d in details if isinstance(d, dict)]


def is_expired_token_error(error: HttpError) -> bool:
    """True for 410 Gone, or 400 with an EXPIRED_SYNC_TOKEN reason."""
    status = error.resp.status
    if status == 410:
        return True
    return status == 400 and EXPIRED_SYNC_TOKEN_REASON in _error_reasons(error)


class GoogleContactsClient:
    """
    Google People API client for one access token.

    Attributes:
        credentials: Google OAuth2 credentials wrapping the access token
        page_size: Connections requested per page

    Usage:
        client = GoogleContactsClient(access_token)
        batch = client.sync_contacts(sync_token="")
        next_token = batch.next_checkpoint
    """

    def __init__(
        self,
        access_token: str = "",
        credentials: Optional[Credentials] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        cancel_event: Optional[threading.Event] = None,
    ):
        """
        Initialize the client.

        Args:
            access_token: OAuth access token with the contacts.readonly scope
            credentials: Prebuilt credentials (takes precedence over access_token)
            page_size: Connections per page (capped at 1000)
            cancel_event: Optional signal checked before each page request
        """
        self.credentials = credentials or Credentials(token=access_token)
        self.page_size = max(1, min(page_size, MAX_PAGE_SIZE))
        self.cancel_event = cancel_event
        self._service = None

    @property
    def service(self) -> Any:
        """
        Get or create the Google API service object.

        Raises:
            GoogleContactsError: If service cannot be created
        """
        if self._service is None:
            try:
                self._service = build(
                    "people", "v1", credentials=self.credentials, cache_discovery=False
                )
                logger.debug("Created People API service")
            except Exception as e:
                logger.error(f"Failed to create People API service: {e}")
                raise GoogleContactsError(f"Failed to create API service: {e}") from e
        return self._service

    def _list_page(
        self, sync_token: str, page_token: Optional[str]
    ) -> dict[str, Any]:
        params: dict[str, Any] = {
            "resourceName": "people/me",
            "personFields": PERSON_FIELDS,
            "pageSize": self.page_size,
            "requestSyncToken": True,
        }
        if page_token:
            params["pageToken"] = page_token
        elif sync_token:
            params["syncToken"] = sync_token

        check_cancelled(self.cancel_event)
        request = self.service.people().connections().list(**params)
        try:
            return request.execute()
        except HttpError as e:
            status = e.resp.status
            if is_expired_token_error(e):
                raise CheckpointExpiredError(
                    f"Google sync token expired (HTTP {status})"
                ) from e
            if status == 401:
                raise GoogleContactsError(
                    "Google API authentication failed (token may be expired)"
                ) from e
            if status == 403:
                raise GoogleContactsError(f"Google API access denied: {e}") from e
            if status == 429:
                raise GoogleContactsError("Google API rate limit exceeded") from e
            raise GoogleContactsError(f"Google People API error {status}: {e}") from e
        except Exception as e:
            # Transport failures such as timeouts or token refresh errors
            raise GoogleContactsError(f"Google People API request failed: {e}") from e

    def _fetch(self, sync_token: str) -> RemoteContactBatch:
        is_full_sync = not sync_token
        batch = RemoteContactBatch(
            provider=SourceType.GOOGLE.value, is_full_sync=is_full_sync
        )
        page_token: Optional[str] = None

        while True:
            response = self._list_page(sync_token, page_token)
            connections = response.get("connections", [])

            for person in connections:
                resource_name = person.get("resourceName", "")
                if person.get("metadata", {}).get("deleted"):
                    batch.deleted.append(resource_name)
                    continue

                names = person.get("names", [])
                display_name = names[0].get("displayName", "") if names else ""
                emails = [
                    (address.get("value") or "").strip()
                    for address in person.get("emailAddresses", [])
                ]
                emails = [email for email in emails if email]
                if not emails:
                    # Rows stored for this person's old addresses must go
                    batch.deleted.append(resource_name)
                    continue
                for email in emails:
                    batch.updated.append(
                        RemoteContact(
                            href=resource_name,
                            email=email,
                            display_name=display_name,
                        )
                    )

            logger.debug(
                f"Fetched Google contacts page: {len(connections)} connections, "
                f"{len(batch.updated)} contacts so far"
            )

            page_token = response.get("nextPageToken")
            if not page_token:
                batch.next_checkpoint = response.get("nextSyncToken", "") or ""
                return batch

    def sync_contacts(self, sync_token: str = "") -> RemoteContactBatch:
        """
        Fetch contact changes since sync_token.

        An expired token on an incremental run triggers exactly one full
        sync. Expiry during a full sync is an error.

        Args:
            sync_token: Stored sync token, empty for a full sync

        Returns:
            RemoteContactBatch whose next_checkpoint is the final page's
            nextSyncToken

        Raises:
            GoogleContactsError: If a request fails
            SyncCancelledError: If cancelled
        """
        token = sync_token
        fell_back = False
        while True:
            logger.info(
                f"Starting Google contacts {'incremental' if token else 'full'} sync"
            )
            try:
                batch = self._fetch(token)
            except CheckpointExpiredError as e:
                if not token or fell_back:
                    raise GoogleContactsError(
                        f"Google sync token rejected during full sync: {e}"
                    ) from e
                logger.warning("Google sync token expired, falling back to full sync")
                token = ""
                fell_back = True
                continue

            if batch.is_full_sync:
                logger.info(
                    f"Google contacts full sync completed: {len(batch.updated)} contacts"
                )
            else:
                logger.info(
                    f"Google contacts incremental sync completed: "
                    f"{len(batch.updated)} updated, {len(batch.deleted)} deleted"
                )
            return batch


class GoogleOtherContactsSearcher:
    """
    Live recipient search over the user's Google "other contacts".

    Other contacts are people the user has interacted with but never saved.
    They are not part of the synced connections, so they are searched on
    demand with otherContacts:search and cached per query.

    A 403 (contacts.other.readonly scope not granted) yields no results.

    Usage:
        searcher = GoogleOtherContactsSearcher(access_token)
        local_store.register_searcher(searcher)
    """

    def __init__(
        self,
        access_token: str = "",
        credentials: Optional[Credentials] = None,
        cache_ttl: float = DEFAULT_SEARCH_CACHE_TTL,
    ):
        self.credentials = credentials or Credentials(token=access_token)
        self.cache_ttl = cache_ttl
        self._service = None
        self._lock = threading.Lock()
        self._cache: dict[tuple[str, int], tuple[float, list[AutocompleteContact]]] = {}

    @property
    def service(self) -> Any:
        if self._service is None:
            try:
                self._service = build(
                    "people", "v1", credentials=self.credentials, cache_discovery=False
                )
            except Exception as e:
                raise GoogleContactsError(f"Failed to create API service: {e}") from e
        return self._service

    def _cached(self, key: tuple[str, int]) -> Optional[list[AutocompleteContact]]:
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            expires_at, contacts = entry
            if time.monotonic() >= expires_at:
                del self._cache[key]
                return None
            return list(contacts)

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def _search(self, query: str, page_size: int) -> dict[str, Any]:
        request = self.service.otherContacts().search(
            query=query, readMask=PERSON_FIELDS, pageSize=page_size
        )
        try:
            return request.execute()
        except HttpError as e:
            status = e.resp.status
            if status == 403:
                logger.warning(
                    "Google other contacts access denied (scope may not be granted)"
                )
                return {}
            if status == 401:
                raise GoogleContactsError(
                    "Google API authentication failed (token may be expired)"
                ) from e
            if status == 429:
                raise GoogleContactsError("Google API rate limit exceeded") from e
            raise GoogleContactsError(f"Google People API error {status}: {e}") from e
        except Exception as e:
            raise GoogleContactsError(f"Google People API request failed: {e}") from e

    def search_contacts(self, query: str, limit: int) -> list[AutocompleteContact]:
        """
        Search other contacts by name or email prefix.

        Args:
            query: Search text; empty returns nothing
            limit: Page size requested (non-positive means 10, capped at 30)

        Raises:
            GoogleContactsError: If the request fails for a reason other than 403
        """
        query = query.strip()
        if not query:
            return []
        if limit <= 0:
            limit = DEFAULT_SEARCH_LIMIT
        page_size = min(limit, MAX_SEARCH_PAGE_SIZE)

        key = (query.lower(), page_size)
        cached = self._cached(key)
        if cached is not None:
            logger.debug(f"Returning {len(cached)} cached Google contacts for {query!r}")
            return cached

        response = self._search(query, page_size)
        contacts: list[AutocompleteContact] = []
        for result in response.get("results", []):
            person = result.get("person", {})
            names = person.get("names", [])
            display_name = names[0].get("displayName", "") if names else ""
            for address in person.get("emailAddresses", []):
                value = (address.get("value") or "").strip()
                if value:
                    contacts.append(
                        AutocompleteContact(
                            email=value, display_name=display_name, source=SOURCE_GOOGLE
                        )
                    )

        logger.debug(f"Google other contacts search for {query!r}: {len(contacts)} results")
        with self._lock:
            self._cache[key] = (time.monotonic() + self.cache_ttl, contacts)
        return list(contacts)
