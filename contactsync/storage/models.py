"""
Data model for configured contact sources and the contacts synced from them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

# Path of the single addressbook that holds an OAuth source's checkpoint
VIRTUAL_ADDRESSBOOK_PATH = "/"


class SourceType(str, Enum):
    """Kind of remote contact provider."""

    CARDDAV = "carddav"
    GOOGLE = "google"
    MICROSOFT = "microsoft"

    @property
    def is_oauth(self) -> bool:
        """True for providers authenticated with an OAuth bearer token."""
        return self in (SourceType.GOOGLE, SourceType.MICROSOFT)


VALID_SOURCE_TYPES = {t.value for t in SourceType}


@dataclass
class Source:
    """
    A configured remote contact provider.

    Attributes:
        id: Unique identifier (uuid string)
        name: Display name
        type: Provider kind
        url: CardDAV server URL (empty for OAuth sources)
        username: CardDAV username (empty for OAuth sources)
        account_id: Linked email account for OAuth sources. None means the
                    source owns its own OAuth grant.
        enabled: Whether the source takes part in sync and search
        sync_interval: Minutes between scheduled syncs (0 = manual only)
        last_synced_at: Time of the last successful sync
        last_error: Message of the last failed sync, cleared on success
        last_error_at: Time of the last failed sync
        created_at: Creation time
    """

    id: str
    name: str
    # Raw string when the stored type is not a known SourceType
    type: SourceType | str
    url: str = ""
    username: str = ""
    account_id: Optional[str] = None
    enabled: bool = True
    sync_interval: int = 0
    last_synced_at: Optional[datetime] = None
    last_error: str = ""
    last_error_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    # Populated on request only
    addressbooks: list[Addressbook] = field(default_factory=list)

    @property
    def has_error(self) -> bool:
        return bool(self.last_error)

    @property
    def type_value(self) -> str:
        return self.type.value if isinstance(self.type, SourceType) else self.type

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON friendly dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type_value,
            "url": self.url,
            "username": self.username,
            "account_id": self.account_id,
            "enabled": self.enabled,
            "sync_interval": self.sync_interval,
            "last_synced_at": _iso(self.last_synced_at),
            "last_error": self.last_error,
            "last_error_at": _iso(self.last_error_at),
            "created_at": _iso(self.created_at),
        }


@dataclass
class SourceConfig:
    """
    Payload used to create or update a source.

    The password is only handed to the credential collaborator by the
    caller; the store never persists it.
    """

    name: str
    type: SourceType | str
    url: str = ""
    username: str = ""
    password: str = ""
    account_id: str = ""
    enabled: bool = True
    sync_interval: int = 0
    enabled_addressbooks: list[str] = field(default_factory=list)


@dataclass
class Addressbook:
    """
    A sync unit within a source.

    CardDAV sources have one per discovered collection. OAuth sources have
    exactly one virtual addressbook at path "/" holding the delta checkpoint.
    An empty sync_token means the next sync is a full sync.
    """

    id: str
    source_id: str
    path: str
    name: str
    enabled: bool = True
    sync_token: str = ""
    last_synced_at: Optional[datetime] = None


@dataclass
class AddressbookInfo:
    """An addressbook found by discovery, before it is saved."""

    path: str
    name: str
    description: str = ""


@dataclass
class Contact:
    """
    A contact row synced from a remote source.

    One row exists per (addressbook, href, email): a remote entity with
    several email addresses is stored as several rows sharing href and etag.
    """

    addressbook_id: str
    email: str
    display_name: str
    href: str
    etag: str = ""
    id: str = ""
    synced_at: Optional[datetime] = None


@dataclass
class SourceError:
    """A source whose last sync failed."""

    source_id: str
    source_name: str
    error: str
    error_at: Optional[datetime] = None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# Source labels carried by autocomplete results
SOURCE_LOCAL = "local"
SOURCE_VCARD = "vcard"
SOURCE_CARDDAV = SourceType.CARDDAV.value
SOURCE_GOOGLE = SourceType.GOOGLE.value
SOURCE_MICROSOFT = SourceType.MICROSOFT.value


@dataclass
class AutocompleteContact:
    """
    A recipient suggestion gathered from one of the contact sources.

    Attributes:
        email: Email address as found in the source
        display_name: Name to show next to the address
        source: Label of the source that produced it ("local", "vcard",
                "carddav", "google", "microsoft")
        send_count: Number of times the user sent mail to this address
        last_used: Last time the user sent mail to this address
        created_at: When the address was first recorded locally
    """

    email: str
    display_name: str = ""
    source: str = SOURCE_LOCAL
    send_count: int = 0
    last_used: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON friendly dictionary."""
        return {
            "email": self.email,
            "display_name": self.display_name,
            "source": self.source,
            "send_count": self.send_count,
            "last_used": _iso(self.last_used),
        }
