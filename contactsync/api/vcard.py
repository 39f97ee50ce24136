"""
vCard parsing shared by the CardDAV client and the filesystem scanner.
"""

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

import vobject
from vobject.base import ParseError

logger = logging.getLogger(__name__)


@dataclass
class ParsedCard:
    """Display name and email addresses extracted from one vCard."""

    display_name: str = ""
    emails: list[str] = field(default_factory=list)


def _display_name(card: Any) -> str:
    fn = getattr(card, "fn", None)
    if fn is not None and str(fn.value).strip():
        return str(fn.value).strip()

    n = getattr(card, "n", None)
    if n is not None and isinstance(n.value, vobject.vcard.Name):
        parts = [
            str(part).strip()
            for part in (n.value.given, n.value.family)
            if part and str(part).strip()
        ]
        return " ".join(parts)
    return ""


def card_to_parsed(card: Any) -> ParsedCard:
    """
    Extract the display name and non-empty emails of a vobject card.

    The display name comes from FN, falling back to the given and family
    names of N.
    """
    emails = []
    for line in card.contents.get("email", []):
        value = str(line.value).strip()
        if value:
            emails.append(value)
    return ParsedCard(display_name=_display_name(card), emails=emails)


def parse_vcards(text: str) -> Iterator[ParsedCard]:
    """
    Parse every vCard in a text blob.

    Unreadable input stops the iteration with a warning; cards parsed
    before the error are still yielded.

    Args:
        text: One or more BEGIN:VCARD ... END:VCARD blocks

    Yields:
        ParsedCard for each card found
    """
    if not text or not text.strip():
        return
    try:
        for component in vobject.readComponents(text, ignoreUnreadable=True):
            if component.name.upper() != "VCARD":
                continue
            yield card_to_parsed(component)
    except (ParseError, UnicodeError) as e:
        logger.warning(f"Failed to parse vCard data: {e}")


def parse_vcard(text: str) -> ParsedCard:
    """Parse the first vCard in text, or return an empty ParsedCard."""
    for card in parse_vcards(text):
        return card
    return ParsedCard()
