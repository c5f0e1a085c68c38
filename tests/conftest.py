"""
Pytest configuration and shared fixtures for Identity Search tests.

Test Categories:
- unit: Fast tests with no external dependencies (< 100ms each)
- slow: Tests that start the FastAPI app or spin up thread pools

Run categories:
- pytest -m unit              # Fast unit tests only
- pytest -m "not slow"        # Skip slow tests
- pytest                      # All tests

Nothing here touches the real ~/Library databases, Clay or Gmail: every store
is a synthetic SQLite file under tmp_path and every HTTP client is mocked.
"""
import pytest

from tests.fixtures.message_fixtures import ChatDbBuilder, create_address_book_dir
from tests.reset_singletons import reset_all_singletons


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "slow: Slow tests (app startup, thread pools)")


@pytest.fixture(autouse=True)
def reset_singletons_after_test():
    """Drop module-level singletons so no test sees another's wiring."""
    yield
    reset_all_singletons()


@pytest.fixture
def chat_db(tmp_path):
    """Empty chat.db builder; add messages in the test."""
    builder = ChatDbBuilder(tmp_path / "chat.db")
    yield builder
    builder.close()


@pytest.fixture
def imessage_db(chat_db):
    """Read-only IMessageDatabase over the chat_db builder's file."""
    from api.services.imessage import IMessageDatabase
    return IMessageDatabase(chat_db.path)


@pytest.fixture
def address_book_dir(tmp_path):
    """
    AddressBook directory with a main database and one synced account.

    - John Smith: +1 (555) 123-4567, john@example.com (main)
    - Amanda Chen, nickname Mandy: 555-987-6543 (iCloud account)
    - Acme Corp (organization only): (555) 222-3333 (main)
    """
    return create_address_book_dir(
        tmp_path / "AddressBook",
        main=[
            {
                "first": "John",
                "last": "Smith",
                "phones": ["+1 (555) 123-4567"],
                "emails": ["john@example.com"],
            },
            {
                "organization": "Acme Corp",
                "phones": ["(555) 222-3333"],
            },
        ],
        accounts={
            "ICLOUD-ACCOUNT": [
                {
                    "first": "Amanda",
                    "last": "Chen",
                    "nickname": "Mandy",
                    "phones": ["555-987-6543"],
                },
            ],
        },
    )


@pytest.fixture
def contact_index(address_book_dir):
    """ContactIndex over the address_book_dir fixture."""
    from api.services.address_book import get_address_book_sources
    from api.services.contact_index import ContactIndex
    return ContactIndex(lambda: get_address_book_sources(address_book_dir))


@pytest.fixture
def empty_contact_index():
    """ContactIndex with no sources."""
    from api.services.contact_index import ContactIndex
    return ContactIndex([])


@pytest.fixture(scope="function")
def mock_settings(tmp_path, monkeypatch):
    """
    Settings pointed at temporary paths.

    Clay and Gmail are disabled (no key, no token file).
    """
    from config.settings import Settings

    mock = Settings(
        messages_db_path=tmp_path / "chat.db",
        address_book_dir=tmp_path / "AddressBook",
        gmail_token_path=tmp_path / "gmail-token.json",
        clay_api_key="",
    )

    # Patch the global settings
    monkeypatch.setattr("config.settings.settings", mock)
    return mock
