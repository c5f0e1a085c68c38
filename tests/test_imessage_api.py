"""
Tests for the iMessage API endpoints and health check.
"""
import pytest

# These tests use TestClient which initializes the app (slow)
pytestmark = pytest.mark.slow

from unittest.mock import MagicMock, patch

from fastapi.testclient import TestClient

from api.main import app
from api.services.imessage import IMessageDatabase
from api.services.message_search import MessageSearchEngine
from api.services.resilience import SourceUnavailableError

JOHN = "+15551234567"


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def engine(imessage_db, contact_index):
    search_engine = MessageSearchEngine(imessage_db, contact_index)
    with patch("api.routes.imessage.get_message_search_engine", return_value=search_engine), \
            patch("api.routes.imessage.get_contact_index", return_value=contact_index):
        yield search_engine


class TestSearchEndpoint:

    def test_search(self, client, chat_db, engine):
        chat_db.add_message("your flight confirmation is ABC123", handle=JOHN)
        chat_db.add_message("flight delayed", handle=JOHN)

        response = client.get("/api/imessage/search", params={"q": "flight confirmation"})

        assert response.status_code == 200
        data = response.json()
        assert data["total_results"] == 1
        result = data["results"][0]
        assert result["highlighted_text"] == "your **flight** **confirmation** is ABC123"
        assert result["contact_name"] == "John Smith"
        assert result["context"] is None

    def test_contact_and_context(self, client, chat_db, engine):
        chat_db.add_message("where are you?", handle=JOHN, is_from_me=True)
        chat_db.add_message("at the gate", handle=JOHN)

        data = client.get(
            "/api/imessage/search",
            params={"q": "gate", "contact": "John Smith", "context_messages": 2},
        ).json()

        assert data["contact"]["method"] == "contacts"
        assert data["contact"]["resolved"] == "John Smith"
        assert data["results"][0]["context"]["before"][0]["text"] == "where are you?"

    def test_repeated_handle_params(self, client, chat_db, engine):
        chat_db.add_message("hello", handle=JOHN)
        chat_db.add_message("hello", handle="+15559876543")

        data = client.get(
            "/api/imessage/search",
            params=[("q", "hello"), ("handle", JOHN), ("handle", "+15559876543")],
        ).json()

        assert data["total_results"] == 2

    def test_empty_query(self, client, engine):
        data = client.get("/api/imessage/search").json()
        assert data["empty_query"] is True
        assert data["results"] == []

    def test_after_filter(self, client, chat_db, engine):
        data = client.get("/api/imessage/search", params={"q": "x", "after": "2024-01-01"}).json()
        assert data["filters"]["since"].startswith("2024-01-01")

    def test_bad_after(self, client, engine):
        response = client.get("/api/imessage/search", params={"q": "x", "after": "last tuesday"})
        assert response.status_code == 400

    def test_bad_direction(self, client, engine):
        response = client.get("/api/imessage/search", params={"q": "x", "direction": "sideways"})
        assert response.status_code == 400

    def test_max_results_bounds(self, client, engine):
        response = client.get("/api/imessage/search", params={"q": "x", "max_results": 500})
        assert response.status_code == 400

    def test_database_unavailable(self, client, tmp_path, contact_index):
        broken = MessageSearchEngine(IMessageDatabase(tmp_path / "missing.db"), contact_index)
        with patch("api.routes.imessage.get_message_search_engine", return_value=broken):
            response = client.get("/api/imessage/search", params={"q": "hello"})

        assert response.status_code == 503
        assert "imessage unavailable" in response.json()["detail"]


class TestContextEndpoint:

    def test_conversation_around(self, client, chat_db, engine):
        chat_db.add_message("before", handle=JOHN)
        chat_db.add_message("the gate code is 4321", handle=JOHN)
        chat_db.add_message("after", handle=JOHN)

        data = client.get("/api/imessage/context", params={"contact": "John", "around": "gate code"}).json()

        assert data["match_found"] is True
        assert [m["text"] for m in data["conversation"]] == ["before", "the gate code is 4321", "after"]
        assert [m["is_match"] for m in data["conversation"]] == [False, True, False]

    def test_unknown_contact(self, client, engine):
        data = client.get("/api/imessage/context", params={"contact": "Nobody Known"}).json()
        assert data["conversation"] == []
        assert "Could not find" in data["message"]

    def test_contact_required(self, client, engine):
        assert client.get("/api/imessage/context").status_code == 400


class TestHealth:

    def test_health_reports_sources(self, client, mock_settings, contact_index):
        with patch("api.main.settings", mock_settings), \
                patch("api.services.contact_index.get_contact_index", return_value=contact_index):
            data = client.get("/health").json()

        assert data["service"] == "identity-search"
        assert data["status"] == "degraded"
        assert data["checks"]["messages_db"] is False
        assert data["checks"]["clay"] is False
        assert data["contact_index"]["built"] is False

    def test_root(self, client):
        assert client.get("/").json()["message"] == "Identity Search API"
