"""
Provider-neutral change batch returned by every protocol client.
"""

import threading
from dataclasses import dataclass, field
from typing import Optional


class ProtocolError(Exception):
    """Raised when a remote contact provider request fails."""

    pass


class CheckpointExpiredError(ProtocolError):
    """Raised when the provider rejects a stored sync checkpoint."""

    pass


class SyncCancelledError(Exception):
    """Raised when a sync is cancelled before it completes."""

    pass


@dataclass
class RemoteContact:
    """
    One email address of a remote contact.

    A remote entity with several addresses yields several RemoteContacts
    sharing href and etag.
    """

    href: str
    email: str
    display_name: str = ""
    etag: str = ""


@dataclass
class RemoteContactBatch:
    """
    Changes fetched from a provider in one sync run.

    Attributes:
        provider: Provider name ("carddav", "google", "microsoft")
        updated: Added or modified contact rows
        deleted: Hrefs (or resource ids) removed on the provider
        next_checkpoint: Checkpoint to store for the next incremental run.
                         Empty means the next run is a full sync.
        is_full_sync: True when updated is a complete snapshot that replaces
                      everything stored for the addressbook
    """

    provider: str
    updated: list[RemoteContact] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    next_checkpoint: str = ""
    is_full_sync: bool = False


def check_cancelled(cancel_event: Optional[threading.Event]) -> None:
    """
    Raise SyncCancelledError if the cancellation signal is set.

    Clients call this before every network request.
    """
    if cancel_event is not None and cancel_event.is_set():
        raise SyncCancelledError("sync cancelled")
