"""
Merge ranker for autocomplete results gathered from several sources.
"""

from collections.abc import Iterable
from datetime import datetime, timezone

from contactsync.storage.models import (
    SOURCE_CARDDAV,
    SOURCE_GOOGLE,
    SOURCE_LOCAL,
    SOURCE_VCARD,
    AutocompleteContact,
)
from contactsync.utils.normalization import normalize_email

# Tie-break between sources reporting the same address
SOURCE_PRIORITY = {
    SOURCE_LOCAL: 4,
    SOURCE_VCARD: 3,
    SOURCE_CARDDAV: 2,
    SOURCE_GOOGLE: 1,
}

_NEVER = datetime.min.replace(tzinfo=timezone.utc)


def source_priority(source: str) -> int:
    """Priority of a source label; unknown labels rank lowest."""
    return SOURCE_PRIORITY.get(source, 0)


def _last_used(contact: AutocompleteContact) -> datetime:
    value = contact.last_used
    if value is None:
        return _NEVER
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _rank_key(contact: AutocompleteContact) -> tuple[int, datetime, int]:
    return (contact.send_count, _last_used(contact), source_priority(contact.source))


def merge_results(
    *result_lists: Iterable[AutocompleteContact],
) -> list[AutocompleteContact]:
    """
    Merge per-source results into one deduplicated, ranked list.

    Entries are grouped by lowercased email. Within a group the entry with
    the higher send count wins, then the more recent last use, then the
    higher source priority (local > vcard > carddav > google > others).
    On a full tie the first entry seen is kept.

    The result is sorted by send count descending, last use descending,
    then email ascending.

    Args:
        *result_lists: Result lists in any order

    Returns:
        Merged contacts
    """
    by_email: dict[str, AutocompleteContact] = {}

    for results in result_lists:
        for contact in results:
            key = normalize_email(contact.email)
            if not key:
                continue
            existing = by_email.get(key)
            if existing is None or _rank_key(contact) > _rank_key(existing):
                by_email[key] = contact

    merged = sorted(by_email.values(), key=lambda c: c.email.lower())
    merged.sort(key=lambda c: (c.send_count, _last_used(c)), reverse=True)
    return merged
