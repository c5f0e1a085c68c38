"""
Tests for handle normalization utilities.
"""
import pytest

pytestmark = pytest.mark.unit

from api.services.handle_utils import (
    HandleKind,
    classify_handle,
    evidence_key,
    format_phone_display,
    handle_key,
    is_chat_identifier,
    is_indexable,
    is_matchable,
    matchable_keys,
    normalize_email,
    normalize_handle,
    normalize_phone,
    parse_handle,
)


class TestNormalizePhone:
    """Tests for normalize_phone function."""

    def test_formatting_variants_collapse(self):
        """Every common US format reduces to the same 10 digits."""
        variants = [
            "+15551234567",
            "15551234567",
            "5551234567",
            "(555) 123-4567",
            "555-123-4567",
            "555.123.4567",
            "+1 555 123 4567",
            "1-555-123-4567",
        ]
        assert {normalize_phone(v) for v in variants} == {"5551234567"}

    def test_international_keeps_last_ten(self):
        """Longer numbers keep their last 10 digits."""
        assert normalize_phone("+447700900123") == "7700900123"

    def test_short_fragment_kept(self):
        """Fragments are returned as their digits."""
        assert normalize_phone("555-1234") == "5551234"
        assert normalize_phone("123") == "123"

    def test_empty(self):
        """Test empty string returns empty string."""
        assert normalize_phone("") == ""
        assert normalize_phone(None) == ""
        assert normalize_phone("no digits") == ""


class TestNormalizeHandle:
    """Tests for normalize_handle and classification."""

    def test_email_lowercased_and_trimmed(self):
        assert normalize_email("  Alice@Example.COM ") == "alice@example.com"
        assert normalize_handle("  Alice@Example.COM ") == "alice@example.com"

    def test_classify(self):
        assert classify_handle("a@b.com") == HandleKind.EMAIL
        assert classify_handle("+15551234567") == HandleKind.PHONE
        assert classify_handle(None) == HandleKind.PHONE

    @pytest.mark.parametrize("raw", [
        "+1 (555) 123-4567",
        "Alice@Example.com",
        "555-1234",
        "",
        "chat123456789",
    ])
    def test_idempotent(self, raw):
        """Normalizing a normalized handle changes nothing."""
        once = normalize_handle(raw)
        assert normalize_handle(once) == once

    def test_never_raises_on_garbage(self):
        assert normalize_handle("???") == ""
        assert normalize_handle(None) == ""

    def test_parse_handle(self):
        handle = parse_handle("+1 (555) 123-4567")
        assert handle.kind == HandleKind.PHONE
        assert handle.normalized == "5551234567"
        assert handle.is_matchable


class TestMatchability:
    """Tests for is_matchable / is_indexable."""

    def test_matchable(self):
        assert is_matchable("5551234567")
        assert is_matchable("5551234")
        assert is_matchable("alice@example.com")

    def test_not_matchable(self):
        """Fewer than 7 digits is too short to compare."""
        assert not is_matchable("123456")
        assert not is_matchable("")

    def test_indexable_needs_full_phone(self):
        assert is_indexable("+1 (555) 123-4567")
        assert is_indexable("alice@example.com")
        assert not is_indexable("555-1234")
        assert not is_indexable("")


class TestEvidenceKeys:
    """Tests for keys used to merge evidence across handle formats."""

    def test_phone_formats_share_key(self):
        assert evidence_key("+15551234567") == evidence_key("(555) 123-4567")

    def test_chat_identifier_kept_verbatim(self):
        """Group chat ids are mostly digits but never merge with phones."""
        assert is_chat_identifier("chat123456789012")
        assert evidence_key("chat1234567890") == "chat1234567890"
        assert matchable_keys(["chat1234567890"]) == set()

    def test_short_fragment_kept_verbatim(self):
        assert evidence_key("12345") == "12345"
        assert evidence_key("  ") == ""

    def test_matchable_keys(self):
        keys = matchable_keys(["+15551234567", "Mandy@Example.com", "123"])
        assert keys == {"5551234567", "mandy@example.com"}

    def test_handle_key_is_sorted_normalized_set(self):
        """Dedup key ignores formatting and order."""
        a = handle_key(["+15551234567", "mandy@example.com"])
        b = handle_key(["MANDY@example.com", "555-123-4567", "5551234567"])
        assert a == b == ("5551234567", "mandy@example.com")

    def test_handle_key_keeps_chat_identifiers(self):
        """A group chat ending in a phone's digits is not that phone."""
        chat = handle_key(["chat9995551234567"])
        assert chat == ("chat9995551234567",)
        assert chat != handle_key(["+15551234567"])


class TestFormatPhoneDisplay:
    """Tests for format_phone_display function."""

    def test_formats_us_numbers(self):
        assert format_phone_display("+15551234567") == "(555) 123-4567"
        assert format_phone_display("5551234567") == "(555) 123-4567"

    def test_email_passthrough(self):
        assert format_phone_display("alice@example.com") == "alice@example.com"

    def test_other_passthrough(self):
        assert format_phone_display("+447700900123") == "+447700900123"
        assert format_phone_display("") == ""
