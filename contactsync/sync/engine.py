"""
Sync orchestrator for remote contact sources.

Pulls changes from each configured source through its protocol client and
applies them to the contact source store:
- Per-source serialization with a keyed lock
- Credential lookup through the CredentialProvider collaborator
- Full snapshots replace an addressbook atomically; deltas are applied in
  one transaction
- Checkpoints advance only after the changes they cover are stored
- Error status is recorded on the source and cleared by a successful sync
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Optional, TypeVar

from contactsync.api.batch import (
    ProtocolError,
    RemoteContactBatch,
    SyncCancelledError,
    check_cancelled,
)
from contactsync.api.carddav import (
    DEFAULT_SYNC_TIMEOUT,
    DEFAULT_TIMEOUT,
    CardDAVClient,
)
from contactsync.api.google_people import DEFAULT_PAGE_SIZE, GoogleContactsClient
from contactsync.api.microsoft_graph import MicrosoftGraphClient
from contactsync.auth.credentials import CredentialError, CredentialProvider
from contactsync.storage.db import StoreError
from contactsync.storage.models import (
    VIRTUAL_ADDRESSBOOK_PATH,
    Addressbook,
    AddressbookInfo,
    Contact,
    Source,
    SourceType,
)
from contactsync.storage.sources import ContactSourceStore, SourceNotFoundError
from contactsync.sync.locks import KeyedLock
from contactsync.sync.retry import (
    DEFAULT_BASE_DELAY,
    DEFAULT_MAX_RETRIES,
    retry_db_operation,
)

T = TypeVar("T")

# Factory signatures used to build protocol clients
CardDAVClientFactory = Callable[
    [str, str, str, Optional[threading.Event]], CardDAVClient
]
OAuthClientFactory = Callable[[str, Optional[threading.Event]], Any]

logger = logging.getLogger(__name__)


class SyncError(Exception):
    """
    Raised when a sync completes with errors.

    Attributes:
        report: Report of the failed source sync, if any
        reports: Reports of sources that synced successfully (sync_all_sources)
        failures: One message per failed source (sync_all_sources)
    """

    def __init__(
        self,
        message: str,
        report: Optional["SourceSyncReport"] = None,
        reports: Optional[list["SourceSyncReport"]] = None,
        failures: Optional[list[str]] = None,
    ):
        super().__init__(message)
        self.report = report
        self.reports = reports or []
        self.failures = failures or []


class SourceConfigError(SyncError):
    """Raised when a source cannot be synced because of its configuration."""

    pass


@dataclass
class SourceSyncReport:
    """
    Outcome of syncing one source.

    Attributes:
        source_id: Source identifier
        source_name: Source display name
        skipped: True when the source is disabled
        full_sync: True if any addressbook was fully replaced
        addressbooks_synced: Addressbooks whose changes were stored
        contacts_updated: Contact rows written
        contacts_deleted: Contact rows removed by incremental deletions
        errors: Per-addressbook error messages
    """

    source_id: str
    source_name: str = ""
    skipped: bool = False
    full_sync: bool = False
    addressbooks_synced: int = 0
    contacts_updated: int = 0
    contacts_deleted: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def summary(self) -> str:
        """One-line human readable summary."""
        label = self.source_name or self.source_id
        if self.skipped:
            return f"{label}: skipped (disabled)"
        mode = "full" if self.full_sync else "incremental"
        text = (
            f"{label}: {mode} sync of {self.addressbooks_synced} addressbook(s), "
            f"{self.contacts_updated} updated, {self.contacts_deleted} deleted"
        )
        if self.errors:
            text += f", {len(self.errors)} error(s)"
        return text


def _default_carddav_factory(
    timeout: float, sync_timeout: float
) -> CardDAVClientFactory:
    def factory(
        url: str,
        username: str,
        password: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> CardDAVClient:
        return CardDAVClient(
            url,
            username,
            password,
            timeout=timeout,
            sync_timeout=sync_timeout,
            cancel_event=cancel_event,
        )

    return factory


class SyncOrchestrator:
    """
    Coordinates syncing contact sources into the store.

    Usage:
        orchestrator = SyncOrchestrator(store, EnvCredentialProvider())

        report = orchestrator.sync_source(source_id)
        print(report.summary())

        # Sync every enabled source
        reports = orchestrator.sync_all_sources()
    """

    def __init__(
        self,
        store: ContactSourceStore,
        credentials: CredentialProvider,
        carddav_factory: Optional[CardDAVClientFactory] = None,
        google_factory: Optional[OAuthClientFactory] = None,
        microsoft_factory: Optional[OAuthClientFactory] = None,
        lock: Optional[KeyedLock] = None,
        http_timeout: float = DEFAULT_TIMEOUT,
        sync_timeout: float = DEFAULT_SYNC_TIMEOUT,
        google_page_size: int = DEFAULT_PAGE_SIZE,
        db_max_retries: int = DEFAULT_MAX_RETRIES,
        db_retry_base_delay: float = DEFAULT_BASE_DELAY,
    ):
        """
        Initialize the orchestrator.

        Args:
            store: Contact source store
            credentials: Provider of CardDAV passwords and OAuth tokens
            carddav_factory: Builds a CardDAV client from
                (url, username, password, cancel_event)
            google_factory: Builds a Google client from (token, cancel_event)
            microsoft_factory: Builds a Microsoft client from (token, cancel_event)
            lock: Keyed lock serializing syncs per source
            http_timeout: Timeout for discovery requests in seconds
            sync_timeout: Timeout for sync requests in seconds
            google_page_size: Connections per Google People page
            db_max_retries: Attempts for store writes on a busy database
            db_retry_base_delay: First retry delay for store writes in seconds
        """
        self.store = store
        self.credentials = credentials
        self.carddav_factory = carddav_factory or _default_carddav_factory(
            http_timeout, sync_timeout
        )
        self.google_factory = google_factory or (
            lambda token, cancel_event=None: GoogleContactsClient(
                token, page_size=google_page_size, cancel_event=cancel_event
            )
        )
        self.microsoft_factory = microsoft_factory or (
            lambda token, cancel_event=None: MicrosoftGraphClient(
                token, timeout=sync_timeout, cancel_event=cancel_event
            )
        )
        self.lock = lock or KeyedLock()
        self.db_max_retries = db_max_retries
        self.db_retry_base_delay = db_retry_base_delay

    def _retry(self, operation: Callable[[], T]) -> T:
        return retry_db_operation(
            operation,
            max_retries=self.db_max_retries,
            base_delay=self.db_retry_base_delay,
        )

    def _record_error(self, source: Source, message: str) -> None:
        logger.error(f"Sync of {source.name} ({source.id}) failed: {message}")
        try:
            self._retry(lambda: self.store.update_source_sync_status(source.id, message))
        except StoreError as e:
            logger.error(f"Could not record sync error for {source.id}: {e}")

    # =========================================================================
    # Source Sync
    # =========================================================================

    def sync_source(
        self, source_id: str, cancel_event: Optional[threading.Event] = None
    ) -> SourceSyncReport:
        """
        Sync one source.

        Overlapping calls for the same source run one after the other.

        Args:
            source_id: Source identifier
            cancel_event: Optional cancellation signal

        Returns:
            SourceSyncReport for the source

        Raises:
            SourceNotFoundError: If the source does not exist
            StoreError: If the source cannot be read
            SourceConfigError: If the source type or configuration is invalid
            SyncError: If any addressbook or request failed
            SyncCancelledError: If cancelled; no checkpoint is advanced for
                                unfinished work and no error is recorded
        """
        with self.lock.hold(source_id):
            source = self._retry(lambda: self.store.get_source(source_id))
            if source is None:
                raise SourceNotFoundError(f"source not found: {source_id}")

            report = SourceSyncReport(source_id=source.id, source_name=source.name)
            if not source.enabled:
                logger.info(f"Skipping disabled source {source.name}")
                report.skipped = True
                return report

            logger.info(f"Syncing source {source.name} ({source.type_value})")
            try:
                self._sync_source(source, report, cancel_event)
            except SyncCancelledError:
                logger.info(f"Sync of {source.name} cancelled")
                raise
            except SourceConfigError as e:
                e.report = report
                self._record_error(source, str(e))
                raise
            except CredentialError as e:
                message = f"failed to get credentials: {e}"
                self._record_error(source, message)
                raise SyncError(message, report=report) from e
            except (ProtocolError, StoreError) as e:
                message = f"failed to sync: {e}"
                self._record_error(source, message)
                raise SyncError(message, report=report) from e
            except Exception as e:
                logger.exception(f"Unexpected error syncing {source.name}")
                message = f"unexpected error: {e}"
                self._record_error(source, message)
                raise SyncError(message, report=report) from e

            if report.errors:
                message = f"sync errors: {'; '.join(report.errors)}"
                self._record_error(source, message)
                raise SyncError(message, report=report)

            try:
                self._retry(lambda: self.store.update_source_sync_status(source.id, ""))
            except StoreError as e:
                message = f"failed to record sync status: {e}"
                logger.error(f"Sync of {source.name} ({source.id}) failed: {message}")
                raise SyncError(message, report=report) from e
            logger.info(report.summary())
            return report

    def _sync_source(
        self,
        source: Source,
        report: SourceSyncReport,
        cancel_event: Optional[threading.Event],
    ) -> None:
        if source.type == SourceType.CARDDAV:
            self._sync_carddav(source, report, cancel_event)
        elif source.type in (SourceType.GOOGLE, SourceType.MICROSOFT):
            self._sync_oauth(source, report, cancel_event)
        else:
            raise SourceConfigError(f"unknown source type: {source.type_value}")

    def _sync_carddav(
        self,
        source: Source,
        report: SourceSyncReport,
        cancel_event: Optional[threading.Event],
    ) -> None:
        if not source.url or not source.username:
            raise SourceConfigError("CardDAV source requires a url and username")

        password = self.credentials.get_carddav_password(source.id)
        client = self.carddav_factory(
            source.url, source.username, password, cancel_event
        )

        addressbooks = self.store.list_enabled_addressbooks(source.id)
        if not addressbooks:
            logger.warning(f"No enabled addressbooks for source {source.name}")
            return

        for addressbook in addressbooks:
            try:
                batch = client.sync_addressbook(addressbook.path, addressbook.sync_token)
                self._apply_batch(addressbook, batch, report, cancel_event)
            except SyncCancelledError:
                raise
            except (ProtocolError, StoreError) as e:
                logger.error(f"Failed to sync addressbook {addressbook.name}: {e}")
                report.errors.append(f"{addressbook.name}: {e}")

    def _get_oauth_token(self, source: Source) -> str:
        """Token of the linked account, or the source's own grant."""
        if source.account_id:
            return self.credentials.get_account_token(source.account_id)
        return self.credentials.get_source_token(source.id)

    def _get_or_create_oauth_addressbook(self, source: Source) -> Addressbook:
        for addressbook in self.store.list_addressbooks(source.id):
            if addressbook.path == VIRTUAL_ADDRESSBOOK_PATH:
                return addressbook
        logger.debug(f"Creating virtual addressbook for source {source.name}")
        return self._retry(
            lambda: self.store.create_addressbook(
                source.id, VIRTUAL_ADDRESSBOOK_PATH, source.name, True
            )
        )

    def _sync_oauth(
        self,
        source: Source,
        report: SourceSyncReport,
        cancel_event: Optional[threading.Event],
    ) -> None:
        if source.url:
            raise SourceConfigError(f"{source.type_value} source must not have a url")

        token = self._get_oauth_token(source)
        addressbook = self._get_or_create_oauth_addressbook(source)

        if source.type == SourceType.GOOGLE:
            client = self.google_factory(token, cancel_event)
        else:
            client = self.microsoft_factory(token, cancel_event)

        batch = client.sync_contacts(addressbook.sync_token)
        self._apply_batch(addressbook, batch, report, cancel_event)

    def _apply_batch(
        self,
        addressbook: Addressbook,
        batch: RemoteContactBatch,
        report: SourceSyncReport,
        cancel_event: Optional[threading.Event],
    ) -> None:
        """
        Store a batch, then advance the addressbook's checkpoint.

        A full batch replaces the addressbook's contacts. An incremental
        batch deletes then upserts. Both run in a single transaction.
        """
        check_cancelled(cancel_event)

        contacts = [
            Contact(
                addressbook_id=addressbook.id,
                email=remote.email.strip(),
                display_name=remote.display_name,
                href=remote.href,
                etag=remote.etag,
            )
            for remote in batch.updated
            if remote.email.strip()
        ]

        deleted = 0
        if batch.is_full_sync:
            written = self._retry(
                lambda: self.store.replace_addressbook_contacts(addressbook.id, contacts)
            )
        else:
            deleted, written = self._retry(
                lambda: self.store.apply_contact_changes(
                    addressbook.id, batch.deleted, contacts
                )
            )

        self._retry(
            lambda: self.store.update_addressbook_sync_token(
                addressbook.id, batch.next_checkpoint
            )
        )

        report.addressbooks_synced += 1
        report.contacts_updated += written
        report.contacts_deleted += deleted
        report.full_sync = report.full_sync or batch.is_full_sync
        logger.debug(
            f"Stored {batch.provider} batch for {addressbook.name}: "
            f"{written} written, {deleted} deleted, full={batch.is_full_sync}"
        )

    def sync_all_sources(
        self, cancel_event: Optional[threading.Event] = None
    ) -> list[SourceSyncReport]:
        """
        Sync every enabled source.

        A failing source does not stop the others.

        Returns:
            Reports of every synced source

        Raises:
            SyncError: After all sources ran, if any failed. Carries the
                       successful reports and one message per failure.
            SyncCancelledError: If cancelled
        """
        reports: list[SourceSyncReport] = []
        failures: list[str] = []

        for source in self.store.list_sources():
            if not source.enabled:
                continue
            try:
                reports.append(self.sync_source(source.id, cancel_event))
            except SyncCancelledError:
                raise
            except (SyncError, StoreError) as e:
                failures.append(f"{source.name}: {e}")
            except Exception as e:
                logger.exception(f"Unexpected error syncing {source.name}")
                failures.append(f"{source.name}: {e}")

        if failures:
            raise SyncError(
                f"{len(failures)} source(s) failed: {'; '.join(failures)}",
                reports=reports,
                failures=failures,
            )
        return reports

    # =========================================================================
    # CardDAV Helpers
    # =========================================================================

    def discover_addressbooks(
        self, url: str, username: str, password: str
    ) -> list[AddressbookInfo]:
        """Discover addressbooks on a CardDAV server without saving anything."""
        return self.carddav_factory(url, username, password, None).discover_addressbooks()

    def test_connection(
        self, url: str, username: str, password: str
    ) -> list[AddressbookInfo]:
        """Check CardDAV connectivity and credentials."""
        return self.carddav_factory(url, username, password, None).test_connection()
