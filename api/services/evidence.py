"""
Evidence collection for identity resolution.

Given a term like "Mandy", an evidence source scans its records for two kinds of
signal and attributes them to the handles involved:

- mention: the term appears as a whole word in something you wrote
  ("hey mandy, running late") -> the recipient is probably Mandy
- self-reference: something you received introduces its sender by the term
  ("hi, it's Mandy", "see you then -Mandy") -> the sender is probably Mandy

Each source owns an EvidenceCollector for the duration of one collect() call.
Collectors share no state, so sources can run concurrently.
"""
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Optional

from api.services.handle_utils import evidence_key
from api.services.resilience import SourceUnavailableError
from api.utils.datetime_utils import format_iso
from config.identity_weights import (
    MENTION_WEIGHT,
    SELF_REFERENCE_TAG,
    SELF_REFERENCE_WEIGHT,
)

logger = logging.getLogger(__name__)

KIND_MENTION = "mention"
KIND_SELF_REFERENCE = "self_reference"

DEFAULT_MAX_EXAMPLES = 5
DEFAULT_SNIPPET_LENGTH = 200


@dataclass
class EvidenceRecord:
    """
    A source-neutral piece of text to scan for evidence.

    With single_entity set, every handle belongs to the same person (a CRM
    contact's phones and emails) and the record is credited once to one entry
    carrying all of them. Otherwise each handle is credited separately, as for
    the several recipients of one sent email.
    """
    text: str
    timestamp: Optional[datetime]
    is_outbound: bool
    handles: list[str]
    contact_name: Optional[str] = None
    label: Optional[str] = None  # e.g. "note", "subject"
    single_entity: bool = False


@dataclass
class EvidenceExample:
    text: str
    date: Optional[str]
    kind: str

    def to_dict(self) -> dict:
        return {"text": self.text, "date": self.date, "kind": self.kind}


@dataclass
class EvidenceMatch:
    """Weighted evidence that a handle belongs to the person behind a term."""
    handle: str
    source: str  # "imessage", "clay", "gmail"
    handles: list[str] = field(default_factory=list)
    count: int = 0  # weighted
    mention_count: int = 0
    self_reference_count: int = 0
    contact_name: Optional[str] = None
    examples: list[EvidenceExample] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "handle": self.handle,
            "handles": list(self.handles),
            "source": self.source,
            "count": self.count,
            "mention_count": self.mention_count,
            "self_reference_count": self.self_reference_count,
            "contact_name": self.contact_name,
            "examples": [e.to_dict() for e in self.examples],
        }


def mention_pattern(term: str) -> re.Pattern:
    """Whole-word, case-insensitive match for term (terms may contain punctuation)."""
    return re.compile(rf"(?<!\w){re.escape(term.strip())}(?!\w)", re.IGNORECASE)


def self_reference_patterns(term: str) -> list[re.Pattern]:
    """
    Patterns for a sender introducing themselves by term.

    "this is Mandy", "it's Mandy" / "it’s Mandy", "Mandy here" at the start of
    a line, and a trailing "-Mandy" signature at the end of a line.
    """
    t = re.escape(term.strip())
    flags = re.IGNORECASE | re.MULTILINE
    return [
        re.compile(rf"\bthis is\s+{t}(?!\w)", flags),
        re.compile(rf"\bit['’]s\s+{t}(?!\w)", flags),
        re.compile(rf"^\s*{t}\s+here\b", flags),
        re.compile(rf"-\s*{t}\s*$", flags),
    ]


class EvidenceCollector:
    """
    Accumulates weighted hits per handle for one term within one source.

    Hits are keyed by normalized handle so "+1 (555) 123-4567" and "5551234567"
    land on the same entry; every raw form seen is kept in EvidenceMatch.handles.
    """

    def __init__(
        self,
        term: str,
        source: str,
        max_examples: int = DEFAULT_MAX_EXAMPLES,
        snippet_length: int = DEFAULT_SNIPPET_LENGTH,
        name_lookup: Optional[Callable[[str], Optional[str]]] = None,
    ):
        self.term = term.strip()
        self.source = source
        self.max_examples = max_examples
        self.snippet_length = snippet_length
        self.name_lookup = name_lookup
        self._mention = mention_pattern(self.term)
        self._self_refs = self_reference_patterns(self.term)
        self._matches: dict[str, EvidenceMatch] = {}

    def _entry(self, raws: list[str], contact_name: Optional[str]) -> Optional[EvidenceMatch]:
        keyed = [(evidence_key(raw), raw) for raw in raws]
        keyed = [(k, raw) for k, raw in keyed if k]
        if not keyed:
            return None
        key = "|".join(sorted({k for k, _ in keyed}))

        entry = self._matches.get(key)
        if entry is None:
            entry = EvidenceMatch(handle=keyed[0][1], source=self.source)
            self._matches[key] = entry

        for _, raw in keyed:
            if raw not in entry.handles:
                entry.handles.append(raw)

        if not entry.contact_name:
            entry.contact_name = contact_name
            if not entry.contact_name and self.name_lookup:
                entry.contact_name = self.name_lookup(keyed[0][1])

        return entry

    def _add_example(self, entry: EvidenceMatch, record: EvidenceRecord, kind: str) -> None:
        if len(entry.examples) >= self.max_examples:
            return
        snippet = record.text[:self.snippet_length]
        if kind == KIND_SELF_REFERENCE:
            snippet = f"{SELF_REFERENCE_TAG} {snippet}"
        entry.examples.append(
            EvidenceExample(text=snippet, date=format_iso(record.timestamp), kind=kind)
        )

    def _credit(self, record: EvidenceRecord, kind: str, weight: int) -> int:
        raws = list(dict.fromkeys(h for h in record.handles if h))
        groups = [raws] if record.single_entity else [[raw] for raw in raws]

        credited = 0
        for group in groups:
            entry = self._entry(group, record.contact_name)
            if entry is None:
                continue
            entry.count += weight
            if kind == KIND_MENTION:
                entry.mention_count += 1
            else:
                entry.self_reference_count += 1
            self._add_example(entry, record, kind)
            credited += 1
        return credited

    def add_mentions(self, records: Iterable[EvidenceRecord]) -> int:
        """
        Credit recipients of outbound records that mention the term.

        Returns:
            Number of records that matched
        """
        matched = 0
        for record in records:
            if not record.is_outbound or not record.text:
                continue
            if not self._mention.search(record.text):
                continue
            if self._credit(record, KIND_MENTION, MENTION_WEIGHT):
                matched += 1
        return matched

    def add_self_references(self, records: Iterable[EvidenceRecord]) -> int:
        """
        Credit senders of inbound records that introduce themselves by the term.

        Returns:
            Number of records that matched
        """
        matched = 0
        for record in records:
            if record.is_outbound or not record.text:
                continue
            if not any(p.search(record.text) for p in self._self_refs):
                continue
            if self._credit(record, KIND_SELF_REFERENCE, SELF_REFERENCE_WEIGHT):
                matched += 1
        return matched

    def results(self) -> list[EvidenceMatch]:
        """Matches sorted by weighted count descending, ties by handle."""
        return sorted(self._matches.values(), key=lambda m: (-m.count, m.handle))


class EvidenceSource(ABC):
    """
    A pluggable source of identity evidence.

    Subclasses implement _collect(); collect() wraps it so an unavailable or
    failing source contributes nothing instead of failing the resolution.
    """

    name: str = "unknown"

    def collect(self, term: str) -> list[EvidenceMatch]:
        """
        Scan this source for evidence about term.

        Returns:
            Matches sorted by count descending ([] for a blank term or on failure)
        """
        term = (term or "").strip()
        if not term:
            return []

        try:
            matches = self._collect(term)
        except SourceUnavailableError as e:
            logger.warning(f"Evidence source {self.name} unavailable: {e.message}")
            return []
        except Exception as e:
            logger.error(f"Evidence source {self.name} failed: {e}", exc_info=True)
            return []

        logger.debug(f"Evidence source {self.name}: {len(matches)} matches for '{term}'")
        return matches

    @abstractmethod
    def _collect(self, term: str) -> list[EvidenceMatch]:
        ...
