"""
Tests for the identity API endpoints.
"""
import pytest

# These tests use TestClient which initializes the app (slow)
pytestmark = pytest.mark.slow

from unittest.mock import MagicMock, patch

from fastapi.testclient import TestClient

from api.main import app
from api.services.contact_index import ContactIndex
from api.services.identity_resolver import IdentityResolver


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def resolver(contact_index):
    with patch("api.routes.identity.get_identity_resolver", return_value=IdentityResolver(contact_index)):
        yield


@pytest.fixture
def index(contact_index):
    with patch("api.routes.identity.get_contact_index", return_value=contact_index):
        yield contact_index


class TestResolveEndpoint:

    def test_resolve_contact(self, client, resolver):
        response = client.get("/api/identity/resolve", params={"name": "Mandy"})

        assert response.status_code == 200
        data = response.json()
        assert data["best_match"]["name"] == "Amanda Chen"
        assert data["best_match"]["confidence"] == "high"
        assert data["handles"] == ["555-987-6543"]
        assert "Amanda Chen" in data["summary"]

    def test_not_found(self, client, resolver):
        response = client.get("/api/identity/resolve", params={"name": "Zed"})

        assert response.status_code == 200
        data = response.json()
        assert data["best_match"] is None
        assert data["matches"] == []

    def test_fast_mode_flag_passed(self, client):
        mock_resolver = MagicMock()
        mock_resolver.resolve.return_value = IdentityResolver(ContactIndex([])).resolve("Mandy")
        with patch("api.routes.identity.get_identity_resolver", return_value=mock_resolver):
            client.get("/api/identity/resolve", params={"name": "Mandy", "search_all_sources": "false"})

        mock_resolver.resolve.assert_called_once_with("Mandy", search_all_sources=False)

    def test_blank_name_rejected(self, client, resolver):
        response = client.get("/api/identity/resolve", params={"name": "  "})
        assert response.status_code == 400

    def test_missing_name_is_validation_error(self, client):
        response = client.get("/api/identity/resolve")
        assert response.status_code == 400
        assert response.json()["error"] == "Validation error"


class TestContactEndpoints:

    def test_lookup(self, client, index):
        response = client.get("/api/identity/contacts/lookup", params={"q": "smith"})

        assert response.status_code == 200
        data = response.json()
        assert data["handles"] == ["+1 (555) 123-4567", "john@example.com"]
        assert data["name"] == "John Smith"
        assert data["count"] == 2

    def test_lookup_no_match(self, client, index):
        data = client.get("/api/identity/contacts/lookup", params={"q": "zed"}).json()
        assert data["handles"] == []
        assert data["name"] is None

    def test_name(self, client, index):
        data = client.get("/api/identity/contacts/name", params={"handle": "5551234567"}).json()
        assert data == {"handle": "5551234567", "name": "John Smith", "found": True}

    def test_invalidate(self, client, index):
        index.build()
        response = client.post("/api/identity/contacts/invalidate")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "invalidated"
        assert data["stats"]["built"] is False
