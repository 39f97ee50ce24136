"""
Microsoft Graph client for delta contact sync.
"""

import logging
import threading
from typing import Any, Optional

import requests

from contactsync.api.batch import (
    CheckpointExpiredError,
    ProtocolError,
    RemoteContact,
    RemoteContactBatch,
    check_cancelled,
)
from contactsync.storage.models import SourceType

# Initial delta query; subsequent runs GET the stored deltaLink verbatim
DELTA_URL = "https://graph.microsoft.com/v1.0/me/contacts/delta"

DEFAULT_TIMEOUT = 60.0

logger = logging.getLogger(__name__)


class MicrosoftGraphError(ProtocolError):
    """Raised when a Microsoft Graph request fails."""

    pass


class MicrosoftGraphClient:
    """
    Microsoft Graph contacts client for one access token.

    The checkpoint is the @odata.deltaLink URL returned at the end of a
    delta round.

    Usage:
        client = MicrosoftGraphClient(access_token)
        batch = client.sync_contacts(delta_link="")
    """

    def __init__(
        self,
        access_token: str,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.access_token = access_token
        self.timeout = timeout
        self.session = session or requests.Session()
        self.cancel_event = cancel_event

    def _get(self, url: str, is_full_sync: bool) -> dict[str, Any]:
        check_cancelled(self.cancel_event)
        try:
            response = self.session.get(
                url,
                headers={"Authorization": f"Bearer {self.access_token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise MicrosoftGraphError(f"Microsoft Graph API request failed: {e}") from e

        status = response.status_code
        if status == 410 or (status == 404 and not is_full_sync):
            raise CheckpointExpiredError(f"Microsoft delta link expired (HTTP {status})")
        if status == 401:
            raise MicrosoftGraphError(f"Microsoft API authentication failed: {response.text}")
        if status == 403:
            raise MicrosoftGraphError(f"Microsoft API access denied: {response.text}")
        if status == 429:
            raise MicrosoftGraphError("Microsoft API rate limit exceeded")
        if status != 200:
            raise MicrosoftGraphError(
                f"Microsoft Graph API error {status}: {response.text}"
            )

        try:
            return response.json()
        except ValueError as e:
            raise MicrosoftGraphError(
                f"failed to parse Microsoft API response: {e}"
            ) from e

    def _fetch(self, delta_link: str) -> RemoteContactBatch:
        is_full_sync = not delta_link
        batch = RemoteContactBatch(
            provider=SourceType.MICROSOFT.value, is_full_sync=is_full_sync
        )
        next_link: Optional[str] = delta_link or DELTA_URL

        while next_link:
            page = self._get(next_link, is_full_sync)
            entries = page.get("value", [])

            for entry in entries:
                if "@removed" in entry:
                    batch.deleted.append(entry.get("id", ""))
                    continue
                contact_id = entry.get("id", "")
                display_name = entry.get("displayName") or ""
                emails = [
                    (address.get("address") or "").strip()
                    for address in entry.get("emailAddresses") or []
                ]
                emails = [email for email in emails if email]
                if not emails:
                    batch.deleted.append(contact_id)
                    continue
                for email in emails:
                    batch.updated.append(
                        RemoteContact(
                            href=contact_id,
                            email=email,
                            display_name=display_name,
                        )
                    )

            logger.debug(
                f"Fetched Microsoft contacts page: {len(entries)} entries, "
                f"{len(batch.updated)} contacts so far"
            )

            next_link = page.get("@odata.nextLink")
            if not next_link:
                batch.next_checkpoint = page.get("@odata.deltaLink", "") or ""

        return batch

    def sync_contacts(self, delta_link: str = "") -> RemoteContactBatch:
        """
        Fetch contact changes since delta_link.

        404 or 410 on an incremental run triggers exactly one full sync.
        410 during a full sync is an error.

        Raises:
            MicrosoftGraphError: If a request fails
            SyncCancelledError: If cancelled
        """
        link = delta_link
        fell_back = False
        while True:
            logger.info(
                f"Starting Microsoft contacts {'incremental' if link else 'full'} sync"
            )
            try:
                batch = self._fetch(link)
            except CheckpointExpiredError as e:
                if not link or fell_back:
                    raise MicrosoftGraphError(
                        f"Microsoft delta query rejected during full sync: {e}"
                    ) from e
                logger.warning("Microsoft delta link expired, falling back to full sync")
                link = ""
                fell_back = True
                continue

            if batch.is_full_sync:
                logger.info(
                    f"Microsoft contacts full sync completed: "
                    f"{len(batch.updated)} contacts"
                )
            else:
                logger.info(
                    f"Microsoft contacts incremental sync completed: "
                    f"{len(batch.updated)} updated, {len(batch.deleted)} deleted"
                )
            return batch
