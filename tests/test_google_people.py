"""
Tests for the Google People API client.

The API service is replaced with a MagicMock; responses are plain dicts
shaped like people.connections.list results.
"""

import json
import socket
import threading
from unittest.mock import MagicMock, patch

import pytest
from googleapiclient.errors import HttpError

from contactsync.api.batch import SyncCancelledError
from contactsync.api.google_people import (
    MAX_PAGE_SIZE,
    PERSON_FIELDS,
    GoogleContactsClient,
    GoogleContactsError,
    GoogleOtherContactsSearcher,
    is_expired_token_error,
)


def http_error(status, reason=None):
    """Build an HttpError with an optional error.details reason."""
    resp = MagicMock()
    resp.status = status
    resp.reason = "Error"
    body = {"error": {"code": status, "message": "failure"}}
    if reason:
        body["error"]["details"] = [{"reason": reason}]
    return HttpError(resp, json.dumps(body).encode("utf-8"))


def person(resource, name="", emails=(), deleted=False):
    data = {"resourceName": resource}
    if name:
        data["names"] = [{"displayName": name}]
    if emails:
        data["emailAddresses"] = [{"value": e} for e in emails]
    if deleted:
        data["metadata"] = {"deleted": True}
    return data


@pytest.fixture
def client():
    """Create a client with a mocked service."""
    client = GoogleContactsClient(credentials=MagicMock())
    client._service = MagicMock()
    return client


def list_mock(client):
    return client._service.people.return_value.connections.return_value.list


class TestExpiredTokenDetection:
    """Tests for is_expired_token_error."""

    def test_gone_is_expired(self):
        """Test that 410 means the token expired."""
        assert is_expired_token_error(http_error(410))

    def test_bad_request_with_reason_is_expired(self):
        """Test that 400 EXPIRED_SYNC_TOKEN means the token expired."""
        assert is_expired_token_error(http_error(400, "EXPIRED_SYNC_TOKEN"))

    def test_plain_bad_request_is_not_expired(self):
        """Test that other 400 errors are not expiry."""
        assert not is_expired_token_error(http_error(400, "INVALID_ARGUMENT"))
        assert not is_expired_token_error(http_error(400))


class TestClientSetup:
    """Tests for client construction."""

    def test_page_size_is_capped(self):
        """Test that the page size never exceeds the API maximum."""
        client = GoogleContactsClient(credentials=MagicMock(), page_size=5000)
        assert client.page_size == MAX_PAGE_SIZE

    def test_access_token_wrapped_in_credentials(self):
        """Test that a bare token becomes OAuth2 credentials."""
        client = GoogleContactsClient("ya29.token")
        assert client.credentials.token == "ya29.token"

    @patch("contactsync.api.google_people.build")
    def test_service_is_built_lazily(self, mock_build):
        """Test that the service is built once on first use."""
        client = GoogleContactsClient(credentials=MagicMock())
        mock_build.assert_not_called()

        service1 = client.service
        service2 = client.service

        assert service1 is service2
        mock_build.assert_called_once()
        assert mock_build.call_args[0][:2] == ("people", "v1")

    @patch("contactsync.api.google_people.build")
    def test_service_creation_failure(self, mock_build):
        """Test that service creation failure raises GoogleContactsError."""
        mock_build.side_effect = Exception("Connection failed")
        client = GoogleContactsClient(credentials=MagicMock())

        with pytest.raises(GoogleContactsError, match="Failed to create API service"):
            _ = client.service


class TestFullSync:
    """Tests for full syncs."""

    def test_single_page(self, client):
        """Test a full sync with one page."""
        list_mock(client).return_value.execute.return_value = {
            "connections": [
                person("people/c1", "Alice", ["alice@example.com", "a@work.com"]),
                person("people/c2", "No Email"),
            ],
            "nextSyncToken": "sync-1",
        }

        batch = client.sync_contacts("")

        assert batch.provider == "google"
        assert batch.is_full_sync is True
        assert batch.next_checkpoint == "sync-1"
        assert [(c.href, c.email, c.display_name) for c in batch.updated] == [
            ("people/c1", "alice@example.com", "Alice"),
            ("people/c1", "a@work.com", "Alice"),
        ]
        kwargs = list_mock(client).call_args.kwargs
        assert kwargs["resourceName"] == "people/me"
        assert kwargs["personFields"] == PERSON_FIELDS
        assert kwargs["requestSyncToken"] is True
        assert "syncToken" not in kwargs

    def test_pagination_uses_last_sync_token(self, client):
        """Test that pages are followed and the final token is kept."""
        list_mock(client).return_value.execute.side_effect = [
            {
                "connections": [person("people/c1", "A", ["a@example.com"])],
                "nextPageToken": "page-2",
            },
            {
                "connections": [person("people/c2", "B", ["b@example.com"])],
                "nextSyncToken": "sync-2",
            },
        ]

        batch = client.sync_contacts("")

        assert [c.email for c in batch.updated] == ["a@example.com", "b@example.com"]
        assert batch.next_checkpoint == "sync-2"
        second_call = list_mock(client).call_args_list[1].kwargs
        assert second_call["pageToken"] == "page-2"

    def test_empty_account(self, client):
        """Test a full sync with no connections."""
        list_mock(client).return_value.execute.return_value = {"nextSyncToken": "s"}

        batch = client.sync_contacts("")

        assert batch.updated == []
        assert batch.next_checkpoint == "s"


class TestIncrementalSync:
    """Tests for incremental syncs."""

    def test_sync_token_on_first_page_only(self, client):
        """Test that the stored token is sent on the first page only."""
        list_mock(client).return_value.execute.side_effect = [
            {"connections": [], "nextPageToken": "p2"},
            {"connections": [], "nextSyncToken": "sync-3"},
        ]

        batch = client.sync_contacts("sync-2")

        calls = list_mock(client).call_args_list
        assert calls[0].kwargs["syncToken"] == "sync-2"
        assert "syncToken" not in calls[1].kwargs
        assert calls[1].kwargs["pageToken"] == "p2"
        assert batch.is_full_sync is False
        assert batch.next_checkpoint == "sync-3"

    def test_deleted_contacts(self, client):
        """Test that deleted persons are reported by resource name."""
        list_mock(client).return_value.execute.return_value = {
            "connections": [
                person("people/c1", deleted=True),
                person("people/c2", "Bob", ["bob@example.com"]),
            ],
            "nextSyncToken": "sync-4",
        }

        batch = client.sync_contacts("sync-3")

        assert batch.deleted == ["people/c1"]
        assert [c.href for c in batch.updated] == ["people/c2"]

    def test_person_without_emails_is_deleted(self, client):
        """Test that a person whose addresses were all removed is reported deleted."""
        list_mock(client).return_value.execute.return_value = {
            "connections": [
                person("people/c1", "Alice"),
                {"resourceName": "people/c2", "emailAddresses": [{"value": "  "}]},
            ],
            "nextSyncToken": "sync-5",
        }

        batch = client.sync_contacts("sync-4")

        assert batch.updated == []
        assert batch.deleted == ["people/c1", "people/c2"]

    def test_expired_token_falls_back_once(self, client):
        """Test that an expired token triggers a single full sync."""
        list_mock(client).return_value.execute.side_effect = [
            http_error(400, "EXPIRED_SYNC_TOKEN"),
            {
                "connections": [person("people/c1", "A", ["a@example.com"])],
                "nextSyncToken": "fresh",
            },
        ]

        batch = client.sync_contacts("stale")

        assert batch.is_full_sync is True
        assert batch.next_checkpoint == "fresh"
        assert "syncToken" not in list_mock(client).call_args_list[1].kwargs

    def test_expiry_during_full_sync_is_error(self, client):
        """Test that expiry on the fallback run is not retried again."""
        list_mock(client).return_value.execute.side_effect = [
            http_error(410),
            http_error(410),
        ]

        with pytest.raises(GoogleContactsError, match="rejected during full sync"):
            client.sync_contacts("stale")
        assert list_mock(client).return_value.execute.call_count == 2


class TestErrors:
    """Tests for error mapping."""

    @pytest.mark.parametrize(
        "status,message",
        [
            (401, "authentication failed"),
            (403, "access denied"),
            (429, "rate limit exceeded"),
            (500, "error 500"),
        ],
    )
    def test_status_mapping(self, client, status, message):
        """Test that HTTP errors map to GoogleContactsError."""
        list_mock(client).return_value.execute.side_effect = http_error(status)

        with pytest.raises(GoogleContactsError, match=message):
            client.sync_contacts("")

    def test_cancelled_before_request(self, client):
        """Test that a set cancel event stops the sync."""
        cancel = threading.Event()
        cancel.set()
        client.cancel_event = cancel

        with pytest.raises(SyncCancelledError):
            client.sync_contacts("")
        list_mock(client).return_value.execute.assert_not_called()

    def test_transport_error_is_wrapped(self, client):
        """Test that socket timeouts surface as GoogleContactsError."""
        list_mock(client).return_value.execute.side_effect = socket.timeout("timed out")

        with pytest.raises(GoogleContactsError, match="request failed: timed out"):
            client.sync_contacts("")


def search_result(name="", emails=()):
    return {"person": person("otherContacts/c1", name, emails)}


@pytest.fixture
def searcher():
    """Create an other-contacts searcher with a mocked service."""
    searcher = GoogleOtherContactsSearcher(credentials=MagicMock())
    searcher._service = MagicMock()
    return searcher


def search_mock(searcher):
    return searcher._service.otherContacts.return_value.search


class TestOtherContactsSearch:
    """Tests for GoogleOtherContactsSearcher."""

    def test_results_are_labelled_google(self, searcher):
        """Test that every address of every result becomes a suggestion."""
        search_mock(searcher).return_value.execute.return_value = {
            "results": [
                search_result("Dana", ["dana@example.com", "d@work.com"]),
                search_result("Nobody"),
            ]
        }

        results = searcher.search_contacts("da", 5)

        assert [(c.email, c.display_name, c.source) for c in results] == [
            ("dana@example.com", "Dana", "google"),
            ("d@work.com", "Dana", "google"),
        ]
        search_mock(searcher).assert_called_once_with(
            query="da", readMask="names,emailAddresses", pageSize=5
        )

    def test_page_size_is_capped(self, searcher):
        """Test that the page size never exceeds 30."""
        search_mock(searcher).return_value.execute.return_value = {}

        searcher.search_contacts("da", 100)
        searcher.search_contacts("db", 0)

        calls = search_mock(searcher).call_args_list
        assert calls[0].kwargs["pageSize"] == 30
        assert calls[1].kwargs["pageSize"] == 10

    def test_empty_query_makes_no_request(self, searcher):
        """Test that a blank query returns nothing."""
        assert searcher.search_contacts("  ", 5) == []
        search_mock(searcher).assert_not_called()

    def test_results_are_cached(self, searcher):
        """Test that a repeated query is answered from the cache."""
        execute = search_mock(searcher).return_value.execute
        execute.return_value = {"results": [search_result("Dana", ["dana@example.com"])]}

        first = searcher.search_contacts("Dana", 5)
        second = searcher.search_contacts("dana", 5)

        assert [c.email for c in second] == [c.email for c in first]
        assert execute.call_count == 1

    @patch("contactsync.api.google_people.time")
    def test_cache_expires(self, mock_time, searcher):
        """Test that cached results are refetched after the TTL."""
        execute = search_mock(searcher).return_value.execute
        execute.return_value = {}
        mock_time.monotonic.return_value = 1000.0
        searcher.search_contacts("dana", 5)

        mock_time.monotonic.return_value = 1000.0 + 15 * 60 - 1
        searcher.search_contacts("dana", 5)
        assert execute.call_count == 1

        mock_time.monotonic.return_value = 1000.0 + 15 * 60
        searcher.search_contacts("dana", 5)
        assert execute.call_count == 2

    def test_clear_cache(self, searcher):
        """Test that clearing the cache forces a new request."""
        execute = search_mock(searcher).return_value.execute
        execute.return_value = {}
        searcher.search_contacts("dana", 5)
        searcher.clear_cache()
        searcher.search_contacts("dana", 5)
        assert execute.call_count == 2

    def test_forbidden_returns_empty(self, searcher):
        """Test that a missing contacts.other.readonly scope yields no results."""
        search_mock(searcher).return_value.execute.side_effect = http_error(403)

        assert searcher.search_contacts("dana", 5) == []

    @pytest.mark.parametrize(
        "error,message",
        [
            (http_error(401), "authentication failed"),
            (http_error(429), "rate limit exceeded"),
            (http_error(500), "error 500"),
            (socket.timeout("timed out"), "request failed"),
        ],
    )
    def test_other_errors_raise(self, searcher, error, message):
        """Test that failures other than 403 raise GoogleContactsError."""
        search_mock(searcher).return_value.execute.side_effect = error

        with pytest.raises(GoogleContactsError, match=message):
            searcher.search_contacts("dana", 5)

    def test_errors_are_not_cached(self, searcher):
        """Test that a failed search is retried on the next call."""
        execute = search_mock(searcher).return_value.execute
        execute.side_effect = [http_error(500), {}]

        with pytest.raises(GoogleContactsError):
            searcher.search_contacts("dana", 5)
        assert searcher.search_contacts("dana", 5) == []
        assert execute.call_count == 2
