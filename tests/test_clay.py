"""
Tests for the Clay CRM client.
"""
import pytest

pytestmark = pytest.mark.unit

from unittest.mock import MagicMock, patch

import httpx

from api.services.clay import ClayClient, ClayContact
from api.services.resilience import SourceUnavailableError

SEARCH_PAYLOAD = {
    "hits": {
        "hits": [
            {
                "_id": 42,
                "_source": {
                    "displayName": "Amanda Chen",
                    "organization": "Acme",
                    "information": [
                        {"type": "phone", "value": "+15559876543"},
                        {"type": "email", "value": "amanda@work.com"},
                        {"type": "website", "value": "https://example.com"},
                    ],
                    "notes": [{"content": "Goes by Mandy"}, {"content": ""}],
                },
            },
        ],
    },
}


def response(status_code=200, payload=None, text=""):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = payload or {}
    resp.text = text
    return resp


class TestClayContact:

    def test_from_api(self):
        contact = ClayContact.from_api(42, SEARCH_PAYLOAD["hits"]["hits"][0]["_source"])
        assert contact.contact_id == "42"
        assert contact.name == "Amanda Chen"
        assert contact.handles == ["+15559876543", "amanda@work.com"]
        assert contact.notes == ["Goes by Mandy"]
        assert contact.organization == "Acme"

    def test_name_fallback(self):
        contact = ClayContact.from_api("1", {"firstName": "Amanda", "lastName": "Chen"})
        assert contact.name == "Amanda Chen"
        assert contact.handles == []


class TestClayClient:
    """HTTP behavior with httpx.get mocked."""

    def test_search_contacts(self):
        client = ClayClient(api_key="key", base_url="https://clay.test/")
        with patch("api.services.clay.httpx.get", return_value=response(payload=SEARCH_PAYLOAD)) as get:
            [contact] = client.search_contacts("mandy", limit=5)

        assert contact.name == "Amanda Chen"
        url = get.call_args.args[0]
        kwargs = get.call_args.kwargs
        assert url == "https://clay.test/search"
        assert kwargs["params"] == {"term": "mandy", "limit": 5}
        assert kwargs["headers"]["Authorization"] == "ApiKey key"

    def test_missing_api_key(self):
        with patch("api.services.clay.httpx.get") as get:
            with pytest.raises(SourceUnavailableError):
                ClayClient(api_key="").search_contacts("mandy")
        get.assert_not_called()

    def test_client_error_not_retried(self):
        with patch("api.services.clay.httpx.get", return_value=response(401, text="bad key")) as get:
            with pytest.raises(SourceUnavailableError) as exc:
                ClayClient(api_key="key").search_contacts("mandy")

        assert get.call_count == 1
        assert "401" in exc.value.message

    def test_server_error_retried(self):
        responses = [response(502), response(payload=SEARCH_PAYLOAD)]
        with patch("api.services.clay.httpx.get", side_effect=responses) as get, \
                patch("api.services.resilience.time.sleep"):
            contacts = ClayClient(api_key="key").search_contacts("mandy")

        assert get.call_count == 2
        assert len(contacts) == 1

    def test_timeout_retried_then_raises(self):
        with patch("api.services.clay.httpx.get", side_effect=httpx.ReadTimeout("slow")) as get, \
                patch("api.services.resilience.time.sleep"):
            with pytest.raises(SourceUnavailableError):
                ClayClient(api_key="key").search_contacts("mandy")

        # 1 initial + 2 retries
        assert get.call_count == 3

    def test_get_contact(self):
        detail = {"id": 42, "displayName": "Amanda Chen", "notes": ["Mandy"]}
        with patch("api.services.clay.httpx.get", return_value=response(payload=detail)) as get:
            contact = ClayClient(api_key="key", base_url="https://clay.test").get_contact("42")

        assert get.call_args.args[0] == "https://clay.test/contact/42"
        assert contact.notes == ["Mandy"]

    def test_get_contact_failure_returns_none(self):
        with patch("api.services.clay.httpx.get", return_value=response(404)):
            assert ClayClient(api_key="key").get_contact("nope") is None
