"""
Tests for the Microsoft Graph delta client.
"""

import threading
from unittest.mock import MagicMock

import pytest
import requests

from contactsync.api.batch import SyncCancelledError
from contactsync.api.microsoft_graph import (
    DELTA_URL,
    MicrosoftGraphClient,
    MicrosoftGraphError,
)


def make_response(status_code=200, payload=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload or {}
    return response


def make_client(*responses, **kwargs):
    session = MagicMock()
    session.get.side_effect = list(responses)
    return MicrosoftGraphClient("graph-token", session=session, **kwargs), session


def contact(contact_id, name, *emails):
    return {
        "id": contact_id,
        "displayName": name,
        "emailAddresses": [{"address": e, "name": name} for e in emails],
    }


class TestFullSync:
    """Tests for the initial delta round."""

    def test_full_sync_follows_next_links(self):
        """Test that pages are followed until the deltaLink."""
        client, session = make_client(
            make_response(
                payload={
                    "value": [contact("id-1", "Alice", "alice@example.com")],
                    "@odata.nextLink": "https://graph/next",
                }
            ),
            make_response(
                payload={
                    "value": [contact("id-2", "Bob", "bob@example.com", "b@work.com")],
                    "@odata.deltaLink": "https://graph/delta?token=1",
                }
            ),
        )

        batch = client.sync_contacts("")

        assert batch.provider == "microsoft"
        assert batch.is_full_sync is True
        assert batch.next_checkpoint == "https://graph/delta?token=1"
        assert [(c.href, c.email) for c in batch.updated] == [
            ("id-1", "alice@example.com"),
            ("id-2", "bob@example.com"),
            ("id-2", "b@work.com"),
        ]
        urls = [c.args[0] for c in session.get.call_args_list]
        assert urls == [DELTA_URL, "https://graph/next"]

    def test_bearer_token_header(self):
        """Test that requests carry the access token."""
        client, session = make_client(
            make_response(payload={"value": [], "@odata.deltaLink": "d"})
        )

        client.sync_contacts("")

        headers = session.get.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer graph-token"

    def test_contacts_without_address_are_skipped(self):
        """Test that entries without usable emails produce no rows."""
        client, _ = make_client(
            make_response(
                payload={
                    "value": [
                        {"id": "id-1", "displayName": "Nobody", "emailAddresses": []},
                        {"id": "id-2", "displayName": "Blank",
                         "emailAddresses": [{"address": " "}]},
                    ],
                    "@odata.deltaLink": "d",
                }
            )
        )

        assert client.sync_contacts("").updated == []


class TestIncrementalSync:
    """Tests for delta rounds from a stored deltaLink."""

    def test_incremental_uses_delta_link(self):
        """Test that the stored link is requested verbatim."""
        client, session = make_client(
            make_response(
                payload={
                    "value": [
                        {"id": "id-1", "@removed": {"reason": "deleted"}},
                        contact("id-2", "Bob", "bob@example.com"),
                    ],
                    "@odata.deltaLink": "https://graph/delta?token=2",
                }
            )
        )

        batch = client.sync_contacts("https://graph/delta?token=1")

        assert session.get.call_args.args[0] == "https://graph/delta?token=1"
        assert batch.is_full_sync is False
        assert batch.deleted == ["id-1"]
        assert [c.email for c in batch.updated] == ["bob@example.com"]
        assert batch.next_checkpoint == "https://graph/delta?token=2"

    def test_contact_without_emails_is_deleted(self):
        """Test that a contact whose addresses were all removed is reported deleted."""
        client, _ = make_client(
            make_response(
                payload={
                    "value": [
                        contact("id-1", "Alice"),
                        {"id": "id-2", "displayName": "Bob", "emailAddresses": None},
                    ],
                    "@odata.deltaLink": "https://graph/delta?token=3",
                }
            )
        )

        batch = client.sync_contacts("https://graph/delta?token=2")

        assert batch.updated == []
        assert batch.deleted == ["id-1", "id-2"]

    @pytest.mark.parametrize("status", [404, 410])
    def test_expired_link_falls_back_to_full_sync(self, status):
        """Test that a rejected deltaLink triggers one full sync."""
        client, session = make_client(
            make_response(status),
            make_response(payload={"value": [], "@odata.deltaLink": "fresh"}),
        )

        batch = client.sync_contacts("https://graph/delta?token=old")

        assert batch.is_full_sync is True
        assert batch.next_checkpoint == "fresh"
        assert session.get.call_args.args[0] == DELTA_URL

    def test_gone_during_full_sync_is_error(self):
        """Test that 410 on the initial round is not retried."""
        client, session = make_client(make_response(410))

        with pytest.raises(MicrosoftGraphError, match="rejected during full sync"):
            client.sync_contacts("")
        assert session.get.call_count == 1

    def test_fallback_happens_once(self):
        """Test that a second expiry after fallback raises."""
        client, session = make_client(make_response(410), make_response(410))

        with pytest.raises(MicrosoftGraphError):
            client.sync_contacts("https://graph/delta?token=old")
        assert session.get.call_count == 2


class TestErrors:
    """Tests for error mapping."""

    @pytest.mark.parametrize(
        "status,message",
        [
            (401, "authentication failed"),
            (403, "access denied"),
            (429, "rate limit exceeded"),
            (500, "error 500"),
            (404, "error 404"),
        ],
    )
    def test_status_mapping(self, status, message):
        """Test that HTTP errors map to MicrosoftGraphError."""
        client, _ = make_client(make_response(status, text="oops"))
        with pytest.raises(MicrosoftGraphError, match=message):
            client.sync_contacts("")

    def test_transport_error(self):
        """Test that connection failures map to MicrosoftGraphError."""
        client, _ = make_client(requests.ConnectionError("unreachable"))
        with pytest.raises(MicrosoftGraphError, match="unreachable"):
            client.sync_contacts("")

    def test_invalid_json(self):
        """Test that an unparseable body raises MicrosoftGraphError."""
        client, _ = make_client(make_response(200, payload=ValueError("bad json")))
        with pytest.raises(MicrosoftGraphError, match="failed to parse"):
            client.sync_contacts("")

    def test_cancelled_before_request(self):
        """Test that a set cancel event stops the sync."""
        cancel = threading.Event()
        cancel.set()
        client, session = make_client(cancel_event=cancel)

        with pytest.raises(SyncCancelledError):
            client.sync_contacts("")
        session.get.assert_not_called()
