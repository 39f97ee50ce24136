"""
String normalization helpers for email addresses and collection paths.
"""

from __future__ import annotations

import unicodedata


def normalize_email(value: str | None) -> str:
    """
    Normalize an email address for use as a deduplication key.

    Applies NFKC unicode normalization, trims surrounding whitespace and
    lowercases the result. A leading "mailto:" (as found in some vCards)
    is stripped.

    Args:
        value: Raw email address, may be None

    Returns:
        Normalized email, or an empty string for empty input
    """
    if not value:
        return ""

    normalized = unicodedata.normalize("NFKC", value).strip().lower()
    if normalized.startswith("mailto:"):
        normalized = normalized[len("mailto:") :]
    return normalized.strip()


def last_path_segment(path: str) -> str:
    """
    Return the last non-empty segment of a slash separated path.

    Used to derive a display name for an addressbook from its collection
    path, e.g. "/dav/addressbooks/users/bob/contacts/" -> "contacts".

    Args:
        path: Collection path or URL path

    Returns:
        The last segment, or the path itself if it has no segments
    """
    parts = [p for p in path.strip("/").split("/") if p]
    if parts:
        return parts[-1]
    return path
