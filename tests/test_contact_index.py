"""
Tests for the AddressBook reader and ContactIndex.
"""
import pytest

pytestmark = pytest.mark.unit

import threading
import time

from api.services.address_book import (
    AddressBookSource,
    DirectoryRecord,
    discover_address_book_databases,
    get_address_book_sources,
)
from api.services.contact_index import ContactIndex
from api.services.resilience import SourceUnavailableError
from tests.fixtures.message_fixtures import (
    FailingDirectorySource,
    StaticDirectorySource,
    create_address_book,
)


class TestDirectoryRecord:

    def test_display_name(self):
        assert DirectoryRecord(first_name="John", last_name="Smith").display_name == "John Smith"
        assert DirectoryRecord(first_name="Cher").display_name == "Cher"
        assert DirectoryRecord(organization="Acme Corp").display_name == "Acme Corp"
        assert DirectoryRecord().display_name is None

    def test_search_terms(self):
        record = DirectoryRecord(first_name="John", last_name="Smith", nickname="Jack", organization="Acme")
        assert set(record.search_terms()) == {
            "john", "smith", "jack", "acme", "john smith", "smith john",
        }


class TestAddressBookSource:
    """Tests for reading AddressBook databases."""

    def test_reads_records_with_handles(self, tmp_path):
        path = create_address_book(tmp_path / "ab.abcddb", [
            {"first": "John", "last": "Smith", "phones": ["+1 (555) 123-4567"], "emails": ["john@example.com"]},
        ])

        [record] = list(AddressBookSource(path).iter_records())

        assert record.display_name == "John Smith"
        assert record.handles == ["+1 (555) 123-4567", "john@example.com"]
        assert record.source == str(path)

    def test_missing_database(self, tmp_path):
        with pytest.raises(SourceUnavailableError):
            list(AddressBookSource(tmp_path / "missing.abcddb").iter_records())

    def test_discovers_main_and_account_databases(self, address_book_dir):
        paths = discover_address_book_databases(address_book_dir)
        assert len(paths) == 2
        assert paths[0].parent == address_book_dir
        assert paths[1].parent.name == "ICLOUD-ACCOUNT"

    def test_discover_empty_dir(self, tmp_path):
        assert discover_address_book_databases(tmp_path) == []
        assert get_address_book_sources(tmp_path) == []


class TestContactIndexLookups:
    """Forward and reverse lookups over the address_book_dir fixture."""

    def test_get_name_any_format(self, contact_index):
        for handle in ("+15551234567", "5551234567", "(555) 123-4567", "1-555-123-4567"):
            assert contact_index.get_name(handle) == "John Smith"

    def test_get_name_email_case_insensitive(self, contact_index):
        assert contact_index.get_name("JOHN@example.com") == "John Smith"

    def test_get_name_unknown(self, contact_index):
        assert contact_index.get_name("+15550000000") is None
        assert contact_index.get_name("") is None

    def test_find_by_last_name(self, contact_index):
        assert contact_index.find_handles("smith") == ["+1 (555) 123-4567", "john@example.com"]

    def test_find_by_full_name_either_order(self, contact_index):
        assert contact_index.find_handles("John Smith") == contact_index.find_handles("smith john")

    def test_find_by_nickname_from_account_database(self, contact_index):
        assert contact_index.find_handles("Mandy") == ["555-987-6543"]
        assert contact_index.get_name("+15559876543") == "Amanda Chen"

    def test_find_by_organization(self, contact_index):
        assert contact_index.find_handles("acme corp") == ["(555) 222-3333"]

    def test_partial_match(self, contact_index):
        """Substrings in either direction contribute handles."""
        assert "555-987-6543" in contact_index.find_handles("aman")
        assert "+1 (555) 123-4567" in contact_index.find_handles("mr smith")

    def test_blank_query(self, contact_index):
        assert contact_index.find_handles("") == []
        assert contact_index.find_handles("   ") == []
        assert contact_index.find_handles(None) == []


class TestContactIndexBuild:
    """Build-once, invalidation and failure handling."""

    def test_short_handles_not_indexed(self):
        source = StaticDirectorySource([
            DirectoryRecord(first_name="Front", last_name="Desk", handles=["x1234"]),
            DirectoryRecord(first_name="Jane", last_name="Doe", handles=["555-1234", "jane@example.com"]),
        ])
        index = ContactIndex([source])

        assert index.find_handles("front desk") == []
        assert index.find_handles("jane") == ["jane@example.com"]
        assert index.get_name("555-1234") is None

    def test_first_source_wins_names(self):
        first = StaticDirectorySource([DirectoryRecord(first_name="Johnny", handles=["5551234567"])], "a")
        second = StaticDirectorySource([DirectoryRecord(first_name="John", last_name="Smith", handles=["+15551234567"])], "b")
        index = ContactIndex([first, second])

        assert index.get_name("+15551234567") == "Johnny"
        # Reverse index still carries both spellings
        assert index.find_handles("john smith") == ["+15551234567"]

    def test_lazy_and_built_once(self):
        source = StaticDirectorySource([DirectoryRecord(first_name="Jane", handles=["jane@example.com"])])
        index = ContactIndex([source])
        assert not index.is_built
        assert source.reads == 0

        index.find_handles("jane")
        index.get_name("jane@example.com")
        index.find_handles("jane")

        assert index.is_built
        assert source.reads == 1

    def test_concurrent_first_use_builds_once(self):
        class SlowSource(StaticDirectorySource):
            def iter_records(self):
                time.sleep(0.05)
                yield from super().iter_records()

        source = SlowSource([DirectoryRecord(first_name="Jane", handles=["jane@example.com"])])
        index = ContactIndex([source])
        results = []

        def lookup():
            results.append(index.find_handles("jane"))

        threads = [threading.Thread(target=lookup) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert source.reads == 1
        assert results == [["jane@example.com"]] * 8
        assert index.stats()["build_count"] == 1

    def test_invalidate_rebuilds(self):
        source = StaticDirectorySource([DirectoryRecord(first_name="Jane", handles=["jane@example.com"])])
        index = ContactIndex([source])
        index.build()

        source.records.append(DirectoryRecord(first_name="Bob", handles=["bob@example.com"]))
        assert index.find_handles("bob") == []

        index.invalidate()
        assert not index.is_built
        assert index.find_handles("bob") == ["bob@example.com"]
        assert source.reads == 2

    def test_failing_source_skipped(self):
        good = StaticDirectorySource([DirectoryRecord(first_name="Jane", handles=["jane@example.com"])])
        index = ContactIndex([FailingDirectorySource(), good])

        assert index.find_handles("jane") == ["jane@example.com"]
        stats = index.stats()
        assert stats["failed_sources"] == ["broken"]
        assert stats["sources"] == 2

    def test_callable_sources_reevaluated_on_rebuild(self):
        calls = []

        def provider():
            calls.append(1)
            return [StaticDirectorySource([])]

        index = ContactIndex(provider)
        index.build()
        index.build()
        index.invalidate()
        index.build()

        assert len(calls) == 2

    def test_stats(self, contact_index):
        contact_index.build()
        stats = contact_index.stats()
        assert stats["built"] is True
        assert stats["records"] == 3
        assert stats["sources"] == 2
        assert stats["handles"] == 4
