"""
Tests for vCard parsing and the vCard file scanner.
"""

import time
from unittest.mock import patch

from contactsync.api.vcard import parse_vcard, parse_vcards
from contactsync.autocomplete.vcard_scanner import VCardScanner, default_vcard_paths

ALICE = """BEGIN:VCARD
VERSION:3.0
FN:Alice Example
N:Example;Alice;;;
EMAIL;TYPE=HOME:alice@example.com
EMAIL;TYPE=WORK:alice@work.example.com
END:VCARD
"""

BOB_NO_FN = """BEGIN:VCARD
VERSION:3.0
N:Builder;Bob;;;
EMAIL:bob@example.com
END:VCARD
"""

NO_EMAIL = """BEGIN:VCARD
VERSION:3.0
FN:Carol
TEL:+1 555 0100
END:VCARD
"""


class TestParseVCards:
    """Tests for the vCard parser."""

    def test_parse_single_card(self):
        """Test extracting the display name and every email."""
        card = parse_vcard(ALICE)
        assert card.display_name == "Alice Example"
        assert card.emails == ["alice@example.com", "alice@work.example.com"]

    def test_name_falls_back_to_n(self):
        """Test that N is used when FN is missing."""
        assert parse_vcard(BOB_NO_FN).display_name == "Bob Builder"

    def test_card_without_email(self):
        """Test that a card without EMAIL yields no addresses."""
        card = parse_vcard(NO_EMAIL)
        assert card.display_name == "Carol"
        assert card.emails == []

    def test_parse_multiple_cards(self):
        """Test that every card in a blob is parsed."""
        cards = list(parse_vcards(ALICE + BOB_NO_FN))
        assert [c.display_name for c in cards] == ["Alice Example", "Bob Builder"]

    def test_empty_input(self):
        """Test that empty input yields nothing."""
        assert list(parse_vcards("")) == []
        assert parse_vcard("   ").emails == []

    def test_garbage_input_does_not_raise(self):
        """Test that unreadable input is tolerated."""
        assert parse_vcard("BEGIN:VCARD\nthis is not a vcard").emails == []


class TestVCardScanner:
    """Tests for the filesystem scanner."""

    def test_default_paths_in_home(self):
        """Test the default scan locations."""
        paths = default_vcard_paths()
        assert len(paths) == 6
        assert all(str(p).startswith(str(p.home())) for p in paths)

    def test_scan_directory_recursively(self, tmp_path):
        """Test that .vcf files in nested directories are found."""
        (tmp_path / "nested").mkdir()
        (tmp_path / "alice.vcf").write_text(ALICE)
        (tmp_path / "nested" / "bob.VCF").write_text(BOB_NO_FN)
        (tmp_path / "notes.txt").write_text(ALICE.replace("alice", "ignored"))

        contacts = VCardScanner([tmp_path]).scan()

        emails = sorted(c.email for c in contacts)
        assert emails == [
            "alice@example.com",
            "alice@work.example.com",
            "bob@example.com",
        ]
        assert all(c.source == "vcard" for c in contacts)

    def test_scan_single_file_path(self, tmp_path):
        """Test that a path may point at a single .vcf file."""
        path = tmp_path / "contacts.vcf"
        path.write_text(BOB_NO_FN)

        contacts = VCardScanner([path]).scan()

        assert [c.email for c in contacts] == ["bob@example.com"]

    def test_duplicate_emails_are_merged(self, tmp_path):
        """Test that the first occurrence of an email wins."""
        (tmp_path / "a.vcf").write_text(ALICE)
        (tmp_path / "b.vcf").write_text(
            ALICE.replace("Alice Example", "Other Name").replace(
                "alice@example.com", "ALICE@example.com"
            )
        )

        contacts = VCardScanner([tmp_path]).scan()

        matching = [c for c in contacts if c.email.lower() == "alice@example.com"]
        assert len(matching) == 1
        assert matching[0].display_name == "Alice Example"

    def test_missing_paths_are_ignored(self, tmp_path):
        """Test that nonexistent paths are skipped."""
        assert VCardScanner([tmp_path / "missing"]).scan() == []

    def test_empty_path_list_scans_nothing(self):
        """Test that an explicit empty list disables the defaults."""
        scanner = VCardScanner([])
        assert scanner.paths == []
        assert scanner.scan() == []

    def test_search_matches_email_and_name(self, tmp_path):
        """Test case-insensitive search over cached contacts."""
        (tmp_path / "a.vcf").write_text(ALICE + BOB_NO_FN)
        scanner = VCardScanner([tmp_path])

        assert [c.email for c in scanner.search("BUILDER")] == ["bob@example.com"]
        assert len(scanner.search("alice")) == 2
        assert len(scanner.search("alice", limit=1)) == 1

    def test_blank_query_returns_nothing(self, tmp_path):
        """Test that a blank query does not scan."""
        scanner = VCardScanner([tmp_path])
        assert scanner.search("  ") == []
        assert scanner.is_cache_valid() is False

    def test_search_uses_cache_within_ttl(self, tmp_path):
        """Test that searches within the TTL do not rescan."""
        (tmp_path / "a.vcf").write_text(ALICE)
        scanner = VCardScanner([tmp_path], ttl=300)
        scanner.search("alice")

        (tmp_path / "b.vcf").write_text(BOB_NO_FN)

        assert scanner.search("bob") == []
        assert scanner.cache_size == 2

    def test_stale_cache_is_rescanned(self, tmp_path):
        """Test that an expired cache is rebuilt on search."""
        (tmp_path / "a.vcf").write_text(ALICE)
        scanner = VCardScanner([tmp_path], ttl=300)
        scanner.search("alice")
        (tmp_path / "b.vcf").write_text(BOB_NO_FN)

        with patch(
            "contactsync.autocomplete.vcard_scanner.time.monotonic",
            return_value=time.monotonic() + 301,
        ):
            assert [c.email for c in scanner.search("bob")] == ["bob@example.com"]

    def test_get_cached_contacts_returns_copy(self, tmp_path):
        """Test that callers cannot mutate the cache."""
        (tmp_path / "a.vcf").write_text(ALICE)
        scanner = VCardScanner([tmp_path])
        scanner.scan()

        cached = scanner.get_cached_contacts()
        cached.clear()

        assert scanner.cache_size == 2

    def test_refresh_if_needed(self, tmp_path):
        """Test background refresh only when the cache is stale."""
        (tmp_path / "a.vcf").write_text(ALICE)
        scanner = VCardScanner([tmp_path])

        thread = scanner.refresh_if_needed()
        assert thread is not None
        thread.join(timeout=5)

        assert scanner.is_cache_valid()
        assert scanner.cache_size == 2
        assert scanner.refresh_if_needed() is None
