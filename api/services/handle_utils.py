"""
Handle utilities for Identity Search.

Canonicalizes phone numbers and email addresses into a comparable form so the
same person can be recognized across sources that format handles differently
("+1 (555) 123-4567", "5551234567", "Alice@Example.com ").
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

# Phones compare on their last 10 digits (absorbs country-code variance)
PHONE_DIGITS = 10

# Below this many digits a phone fragment is too short to compare
MIN_MATCHABLE_PHONE_DIGITS = 7

_NON_DIGITS = re.compile(r"\D")


class HandleKind(str, Enum):
    """Kinds of communication handle."""
    PHONE = "phone"
    EMAIL = "email"


@dataclass(frozen=True)
class Handle:
    """A raw handle with its classification and normalized form."""
    raw: str
    kind: HandleKind
    normalized: str

    @property
    def is_matchable(self) -> bool:
        """Whether the normalized form is reliable enough to compare."""
        return is_matchable(self.normalized)


def classify_handle(raw: Optional[str]) -> HandleKind:
    """
    Classify a handle as email or phone.

    Anything containing "@" is an email; everything else is treated as a phone.
    """
    if raw and "@" in raw:
        return HandleKind.EMAIL
    return HandleKind.PHONE


def normalize_phone(raw: Optional[str]) -> str:
    """
    Normalize a phone number to its last 10 digits.

    Examples:
        >>> normalize_phone("+1 (555) 123-4567")
        '5551234567'
        >>> normalize_phone("555-1234")
        '5551234'
        >>> normalize_phone("")
        ''
    """
    if not raw:
        return ""
    digits = _NON_DIGITS.sub("", raw)
    return digits[-PHONE_DIGITS:]


def normalize_email(raw: Optional[str]) -> str:
    """Normalize an email address (lowercase, trimmed)."""
    if not raw:
        return ""
    return raw.strip().lower()


def normalize_handle(raw: Optional[str]) -> str:
    """
    Normalize any handle for comparison.

    Never raises; malformed input normalizes to an empty or short string which
    callers should treat as non-matchable (see is_matchable).
    """
    if classify_handle(raw) == HandleKind.EMAIL:
        return normalize_email(raw)
    return normalize_phone(raw)


def parse_handle(raw: Optional[str]) -> Handle:
    """Build a Handle from a raw string."""
    raw = raw or ""
    return Handle(raw=raw, kind=classify_handle(raw), normalized=normalize_handle(raw))


def is_matchable(normalized: str) -> bool:
    """
    Check whether a normalized handle can be compared against others.

    Emails need an "@"; phones need at least 7 digits.
    """
    if not normalized:
        return False
    if "@" in normalized:
        return True
    return normalized.isdigit() and len(normalized) >= MIN_MATCHABLE_PHONE_DIGITS


def is_indexable(raw: Optional[str]) -> bool:
    """
    Check whether a raw handle is reliable enough to insert into the contact index.

    Phones need a full 10 digits; emails need an "@".
    """
    handle = parse_handle(raw)
    if handle.kind == HandleKind.EMAIL:
        return "@" in handle.normalized
    return len(handle.normalized) == PHONE_DIGITS


def is_chat_identifier(raw: Optional[str]) -> bool:
    """
    Check for a group chat identifier ("chat123456789012345").

    These stand in for a handle on group messages but are not phone numbers,
    even though they are mostly digits.
    """
    return bool(raw) and raw.strip().lower().startswith("chat")


def evidence_key(raw: Optional[str]) -> str:
    """
    Key under which evidence for a handle is accumulated.

    Handles collapse onto their normalized form; group chat identifiers and
    fragments too short to compare are kept verbatim so they never merge with
    an unrelated phone number.
    """
    if not raw or not raw.strip():
        return ""
    if is_chat_identifier(raw):
        return raw.strip().lower()
    normalized = normalize_handle(raw)
    if is_matchable(normalized):
        return normalized
    return raw.strip().lower()


def matchable_keys(handles: Iterable[str]) -> set[str]:
    """Normalized forms of the handles that are safe to compare."""
    keys = set()
    for raw in handles:
        if is_chat_identifier(raw):
            continue
        normalized = normalize_handle(raw)
        if is_matchable(normalized):
            keys.add(normalized)
    return keys


def handle_key(handles: Iterable[str]) -> tuple[str, ...]:
    """
    Deduplication key for a set of handles: the sorted set of normalized forms.

    Two candidates whose handles normalize to the same set are the same entity
    regardless of how the raw strings were formatted. Group chat identifiers
    stay verbatim so they never collide with a phone number.
    """
    return tuple(sorted({
        h.strip().lower() if is_chat_identifier(h) else normalize_handle(h)
        for h in handles
    }))


def format_phone_display(handle: str) -> str:
    """
    Format a handle for display.

    Examples:
        >>> format_phone_display("+15551234567")
        '(555) 123-4567'
        >>> format_phone_display("alice@example.com")
        'alice@example.com'
    """
    if not handle:
        return ""
    if classify_handle(handle) == HandleKind.EMAIL:
        return handle.strip()

    digits = _NON_DIGITS.sub("", handle)
    if len(digits) == 10 or (len(digits) == 11 and digits[0] == "1"):
        digits = digits[-10:]
        return f"({digits[:3]}) {digits[3:6]}-{digits[6:]}"

    # International or fragment: just return as-is
    return handle.strip()
