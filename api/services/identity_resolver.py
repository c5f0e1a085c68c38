"""
Identity resolution: "who is Mandy?"

Combines a direct Contacts lookup with weighted evidence from every configured
source into a ranked, deduplicated list of candidates.

Resolution steps:
1. Contacts: names, nicknames and organizations in the local address book.
2. Evidence: who you call by this name (mentions in what you write) and who
   calls themselves by it (self-references in what you receive), per source.
3. Merge: evidence whose handles overlap an existing candidate is folded into
   it; everything else becomes a new candidate.
4. Rank by confidence tier, then evidence count; drop duplicates.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Sequence, Union

from api.services.contact_index import ContactIndex
from api.services.evidence import EvidenceExample, EvidenceMatch, EvidenceSource
from api.services.handle_utils import format_phone_display, handle_key, matchable_keys
from config.identity_weights import (
    HIGH_CONFIDENCE_MIN_COUNT,
    MAX_CANDIDATE_EXAMPLES,
    MAX_MATCHES_PER_SOURCE,
    MEDIUM_CONFIDENCE_MIN_COUNT,
)

logger = logging.getLogger(__name__)

SOURCE_CONTACTS = "contacts"

SourcesProvider = Union[Sequence[EvidenceSource], Callable[[], Sequence[EvidenceSource]]]


class Confidence(str, Enum):
    """Confidence tiers, strongest first."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Sort rank: 0 is strongest."""
        return _CONFIDENCE_RANK[self]


_CONFIDENCE_RANK = {Confidence.HIGH: 0, Confidence.MEDIUM: 1, Confidence.LOW: 2}


def confidence_for_count(count: int) -> Confidence:
    """
    Confidence tier for a weighted evidence count.

    Monotonic: a larger count never yields a weaker tier.
    """
    if count > HIGH_CONFIDENCE_MIN_COUNT:
        return Confidence.HIGH
    if count > MEDIUM_CONFIDENCE_MIN_COUNT:
        return Confidence.MEDIUM
    return Confidence.LOW


def stronger(a: Confidence, b: Confidence) -> Confidence:
    return a if a.rank <= b.rank else b


@dataclass
class ContactCandidate:
    """A person the query might refer to."""
    name: str
    handles: list[str]
    source: str  # source that produced the candidate first
    confidence: Confidence
    sources: list[str] = field(default_factory=list)
    match_reasons: list[str] = field(default_factory=list)
    message_count: int = 0
    examples: list[EvidenceExample] = field(default_factory=list)

    @property
    def match_reason(self) -> str:
        return " + ".join(self.match_reasons)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "handles": list(self.handles),
            "source": self.source,
            "sources": list(self.sources),
            "confidence": self.confidence.value,
            "match_reason": self.match_reason,
            "match_reasons": list(self.match_reasons),
            "message_count": self.message_count,
            "examples": [e.to_dict() for e in self.examples],
        }


@dataclass
class ResolvedIdentity:
    """Result of resolving a query."""
    query: str
    matches: list[ContactCandidate] = field(default_factory=list)
    summary: str = ""
    sources_searched: list[str] = field(default_factory=list)

    @property
    def best_match(self) -> Optional[ContactCandidate]:
        return self.matches[0] if self.matches else None

    @property
    def handles(self) -> list[str]:
        """Every handle attributed to the best match."""
        return list(self.best_match.handles) if self.best_match else []

    def to_dict(self) -> dict:
        best = self.best_match
        return {
            "query": self.query,
            "matches": [m.to_dict() for m in self.matches],
            "best_match": best.to_dict() if best else None,
            "handles": self.handles,
            "summary": self.summary,
            "sources_searched": list(self.sources_searched),
        }


def describe_match(query: str, match: EvidenceMatch) -> str:
    """Human-readable reason for an evidence match."""
    parts = []
    if match.source == "clay":
        parts.append(f'"{query}" appears in Clay for this contact')
    elif match.source == "gmail":
        if match.mention_count:
            parts.append(f'"{query}" appears in {match.mention_count} emails you sent this contact')
        if match.self_reference_count:
            parts.append(f'Signs {match.self_reference_count} emails as "{query}"')
    else:
        if match.mention_count:
            parts.append(f'You use "{query}" in {match.mention_count} messages to this contact')
        if match.self_reference_count:
            parts.append(f'Refers to themselves as "{query}" in {match.self_reference_count} messages')
    return "; ".join(parts) or f'"{query}" found in {match.source}'


def build_summary(query: str, matches: list[ContactCandidate], sources: list[str]) -> str:
    """One-line summary of a resolution."""
    if not matches:
        searched = ", ".join(sources) if sources else "no sources"
        return f'Could not find anyone matching "{query}" (searched {searched}).'

    best = matches[0]
    summary = f'"{query}" most likely refers to {best.name}'
    if best.confidence == Confidence.HIGH:
        summary += f" (high confidence: {best.match_reason})"
    else:
        summary += f" ({best.confidence.value} confidence)"
    if len(matches) > 1:
        summary += f". Found {len(matches)} possible matches."
    return summary


class IdentityResolver:
    """
    Resolve informal names to people.

    Usage:
        resolver = IdentityResolver(contact_index, [imessage_source, clay_source])
        identity = resolver.resolve("Mandy")
        identity.best_match.name   # "Amanda Chen"
    """

    def __init__(
        self,
        contact_index: ContactIndex,
        sources: SourcesProvider = (),
        max_workers: Optional[int] = None,
    ):
        """
        Args:
            contact_index: Index used for the direct Contacts lookup
            sources: Evidence sources in merge order, or a callable returning them
            max_workers: Thread cap for concurrent collection (default: one per source)
        """
        self.contact_index = contact_index
        self._sources = sources
        self.max_workers = max_workers

    @property
    def sources(self) -> list[EvidenceSource]:
        if callable(self._sources):
            return list(self._sources())
        return list(self._sources)

    def resolve(self, query: str, search_all_sources: bool = True) -> ResolvedIdentity:
        """
        Resolve a name, nickname or handle fragment.

        Args:
            query: What to resolve ("Mandy", "Dr. Lee", "555-1234")
            search_all_sources: Consult every source concurrently; if False,
                stop at the first source that produces a confident answer

        Returns:
            ResolvedIdentity (best_match is None when nothing was found)
        """
        query = (query or "").strip()
        if not query:
            return ResolvedIdentity(query="", summary="Nothing to resolve: empty query.")

        candidates: list[ContactCandidate] = []
        searched: list[str] = [SOURCE_CONTACTS]

        direct = self._contacts_candidate(query)
        if direct:
            candidates.append(direct)
            if not search_all_sources:
                return self._finish(query, candidates, searched)

        sources = self.sources
        if search_all_sources:
            results = self._collect_concurrently(sources, query)
            for source, matches in zip(sources, results):
                searched.append(source.name)
                self._merge(candidates, source.name, matches, query)
        else:
            for source in sources:
                searched.append(source.name)
                new = self._merge(candidates, source.name, source.collect(query), query)
                if any(c.confidence == Confidence.HIGH for c in new):
                    logger.debug(f"Stopping after {source.name}: confident match found")
                    break

        return self._finish(query, candidates, searched)

    def _contacts_candidate(self, query: str) -> Optional[ContactCandidate]:
        handles = self.contact_index.find_handles(query)
        if not handles:
            return None

        name = self.contact_index.get_name(handles[0]) or query
        return ContactCandidate(
            name=name,
            handles=list(handles),
            source=SOURCE_CONTACTS,
            sources=[SOURCE_CONTACTS],
            confidence=Confidence.HIGH,
            match_reasons=["Direct match in Contacts"],
        )

    def _collect_concurrently(self, sources: list[EvidenceSource], query: str) -> list[list[EvidenceMatch]]:
        """Run every source's collect() in parallel; results in source order."""
        if not sources:
            return []
        workers = self.max_workers or len(sources)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="evidence") as pool:
            futures = [pool.submit(source.collect, query) for source in sources]
            # collect() never raises; it degrades to []
            return [f.result() for f in futures]

    def _merge(
        self,
        candidates: list[ContactCandidate],
        source_name: str,
        matches: list[EvidenceMatch],
        query: str,
    ) -> list[ContactCandidate]:
        """
        Fold the strongest matches of one source into candidates (in place).

        Returns:
            Candidates created or updated by this source
        """
        touched: list[ContactCandidate] = []

        for match in matches[:MAX_MATCHES_PER_SOURCE]:
            handles = match.handles or [match.handle]
            keys = matchable_keys(handles)
            reason = describe_match(query, match)

            existing = None
            if keys:
                for candidate in candidates:
                    if keys & matchable_keys(candidate.handles):
                        existing = candidate
                        break

            if existing is not None:
                existing.message_count += match.count
                for raw in handles:
                    if raw not in existing.handles:
                        existing.handles.append(raw)
                if source_name not in existing.sources:
                    existing.sources.append(source_name)
                existing.match_reasons.append(reason)
                room = MAX_CANDIDATE_EXAMPLES - len(existing.examples)
                if room > 0:
                    existing.examples.extend(match.examples[:room])
                existing.confidence = stronger(existing.confidence, confidence_for_count(existing.message_count))
                if existing.name == format_phone_display(existing.handles[0]) and match.contact_name:
                    existing.name = match.contact_name
                touched.append(existing)
                continue

            candidate = ContactCandidate(
                name=match.contact_name or format_phone_display(match.handle),
                handles=list(handles),
                source=source_name,
                sources=[source_name],
                confidence=confidence_for_count(match.count),
                match_reasons=[reason],
                message_count=match.count,
                examples=list(match.examples[:MAX_CANDIDATE_EXAMPLES]),
            )
            candidates.append(candidate)
            touched.append(candidate)

        return touched

    def _finish(self, query: str, candidates: list[ContactCandidate], searched: list[str]) -> ResolvedIdentity:
        ranked = sorted(candidates, key=lambda c: (c.confidence.rank, -c.message_count))

        seen = set()
        deduped = []
        for candidate in ranked:
            key = handle_key(candidate.handles)
            if key in seen:
                continue
            seen.add(key)
            deduped.append(candidate)

        identity = ResolvedIdentity(
            query=query,
            matches=deduped,
            summary=build_summary(query, deduped, searched),
            sources_searched=searched,
        )
        logger.info(
            f"Resolved '{query}': {len(deduped)} candidates"
            + (f", best={deduped[0].name} ({deduped[0].confidence.value})" if deduped else "")
        )
        return identity


# Singleton instance
_identity_resolver: Optional[IdentityResolver] = None


def get_identity_resolver() -> IdentityResolver:
    """Get or create the IdentityResolver wired to the configured sources."""
    global _identity_resolver
    if _identity_resolver is None:
        from api.services.contact_index import get_contact_index
        from api.services.evidence_sources import get_evidence_sources
        _identity_resolver = IdentityResolver(get_contact_index(), get_evidence_sources)
    return _identity_resolver
