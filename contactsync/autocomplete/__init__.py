"""Recipient autocomplete: send history, vCard files and merge ranking."""

from contactsync.autocomplete.merge import merge_results, source_priority
from contactsync.autocomplete.store import ContactSearcher, LocalContactStore
from contactsync.autocomplete.vcard_scanner import VCardScanner, default_vcard_paths

__all__ = [
    "ContactSearcher",
    "LocalContactStore",
    "VCardScanner",
    "default_vcard_paths",
    "merge_results",
    "source_priority",
]
