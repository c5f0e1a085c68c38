"""
Full-text search over iMessage history.

Queries are AND-of-terms, case-insensitive substring matches against the
message text (including text recovered from attributedBody). Double-quoted
spans are single phrase terms:

    flight "gate change"     -> ["flight", "gate change"]

Results can be scoped to a contact (resolved via Contacts, then identity
resolution, then a raw handle lookup), a time window, and a direction, and can
carry neighboring messages from the same chat for context.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from api.services.contact_index import ContactIndex
from api.services.handle_utils import HandleKind, parse_handle
from api.services.identity_resolver import IdentityResolver
from api.services.imessage import IMessageDatabase, MessageRecord
from api.services.resilience import graceful_degradation
from api.utils.datetime_utils import format_iso, resolve_since
from config.identity_weights import (
    CONTEXT_TEXT_LENGTH,
    DEFAULT_CONVERSATION_MESSAGES,
    DEFAULT_SEARCH_RESULTS,
    HIGHLIGHT_MARKER,
    MAX_CONTEXT_MESSAGES,
    MAX_SEARCH_RESULTS,
    RESULT_TEXT_LENGTH,
)

logger = logging.getLogger(__name__)

_QUERY_TOKEN = re.compile(r'"([^"]+)"|(\S+)')

DIRECTIONS = ("sent", "received")


def parse_search_query(query: Optional[str], quoted: bool = False) -> list[str]:
    """
    Split a query into terms.

    Examples:
        >>> parse_search_query('dinner "next friday"')
        ['dinner', 'next friday']
        >>> parse_search_query("next friday", quoted=True)
        ['next friday']
    """
    query = (query or "").strip()
    if not query:
        return []
    if quoted:
        phrase = query.strip('"').strip()
        return [phrase] if phrase else []

    terms = []
    for phrase, word in _QUERY_TOKEN.findall(query):
        # stray quotes from an unbalanced pair are dropped
        term = phrase.strip() if phrase else word.replace('"', "").strip()
        if term:
            terms.append(term)
    return terms


def matches_all_terms(text: Optional[str], terms: list[str]) -> bool:
    """Whether text contains every term (case-insensitive)."""
    if not text:
        return False
    lowered = text.lower()
    return all(term.lower() in lowered for term in terms)


def highlight_terms(text: str, terms: list[str], marker: str = HIGHLIGHT_MARKER) -> str:
    """
    Wrap every case-insensitive occurrence of any term in marker.

    A single pass with longer terms tried first, so overlapping terms never
    produce nested markup.
    """
    if not text or not terms:
        return text
    ordered = sorted({t for t in terms if t}, key=len, reverse=True)
    if not ordered:
        return text
    pattern = re.compile("|".join(re.escape(t) for t in ordered), re.IGNORECASE)
    return pattern.sub(lambda m: f"{marker}{m.group(0)}{marker}", text)


@dataclass
class SearchFilters:
    """Search constraints. Values are clamped by normalized()."""
    contact: Optional[str] = None
    handles: Optional[list[str]] = None
    since: Optional[datetime] = None
    days_back: Optional[int] = None
    direction: Optional[str] = None  # "sent", "received", or None for both
    quoted: bool = False
    max_results: int = DEFAULT_SEARCH_RESULTS
    context_messages: int = 0

    def normalized(self) -> "SearchFilters":
        if self.direction is not None and self.direction not in DIRECTIONS:
            raise ValueError(f"direction must be one of {DIRECTIONS}, got {self.direction!r}")
        return SearchFilters(
            contact=(self.contact or "").strip() or None,
            handles=[h for h in self.handles if h and h.strip()] if self.handles else None,
            since=self.since,
            days_back=self.days_back,
            direction=self.direction,
            quoted=self.quoted,
            max_results=max(1, min(self.max_results or DEFAULT_SEARCH_RESULTS, MAX_SEARCH_RESULTS)),
            context_messages=max(0, min(self.context_messages or 0, MAX_CONTEXT_MESSAGES)),
        )

    def to_dict(self) -> dict:
        return {
            "contact": self.contact,
            "handles": self.handles,
            "since": format_iso(self.since),
            "days_back": self.days_back,
            "direction": self.direction,
            "quoted": self.quoted,
            "max_results": self.max_results,
            "context_messages": self.context_messages,
        }


@dataclass
class ContactResolution:
    """How a contact filter was turned into handles."""
    query: Optional[str]
    handles: list[str] = field(default_factory=list)
    method: Optional[str] = None  # "handles", "handle", "contacts", "identity", "message_lookup"
    name: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return bool(self.handles)

    def to_dict(self) -> dict:
        return {
            "requested": self.query,
            "resolved": self.name,
            "handles": list(self.handles),
            "method": self.method,
        }


def _message_dict(msg: MessageRecord, contact_name: Optional[str], text_length: int) -> dict:
    data = msg.to_dict(text_length=text_length)
    data["contact_name"] = contact_name
    return data


@dataclass
class SearchResult:
    message: MessageRecord
    highlighted_text: str
    contact_name: Optional[str] = None
    context_before: list[MessageRecord] = field(default_factory=list)
    context_after: list[MessageRecord] = field(default_factory=list)
    has_context: bool = False

    def to_dict(self, name_lookup=None) -> dict:
        lookup = name_lookup or (lambda handle: None)
        data = _message_dict(self.message, self.contact_name, RESULT_TEXT_LENGTH)
        data["highlighted_text"] = self.highlighted_text
        if self.has_context:
            data["context"] = {
                "before": [_message_dict(m, lookup(m.handle), CONTEXT_TEXT_LENGTH) for m in self.context_before],
                "after": [_message_dict(m, lookup(m.handle), CONTEXT_TEXT_LENGTH) for m in self.context_after],
            }
        return data


@dataclass
class SearchResponse:
    query: str
    terms: list[str]
    filters: SearchFilters
    contact: Optional[ContactResolution] = None
    results: list[SearchResult] = field(default_factory=list)
    empty_query: bool = False
    message: Optional[str] = None
    scanned: int = 0

    @property
    def total_results(self) -> int:
        return len(self.results)

    def to_dict(self, name_lookup=None) -> dict:
        return {
            "query": self.query,
            "terms": self.terms,
            "filters": self.filters.to_dict(),
            "contact": self.contact.to_dict() if self.contact else None,
            "total_results": self.total_results,
            "results": [r.to_dict(name_lookup) for r in self.results],
            "empty_query": self.empty_query,
            "message": self.message,
        }


@dataclass
class ConversationResponse:
    contact: ContactResolution
    messages: list[MessageRecord] = field(default_factory=list)
    centered_around: Optional[str] = None
    match_found: bool = False
    match_id: Optional[int] = None
    message: Optional[str] = None

    def to_dict(self, name_lookup=None) -> dict:
        lookup = name_lookup or (lambda handle: None)
        conversation = []
        for msg in self.messages:
            data = _message_dict(msg, lookup(msg.handle), RESULT_TEXT_LENGTH)
            data["is_match"] = msg.message_id == self.match_id
            conversation.append(data)
        return {
            "contact": self.contact.to_dict(),
            "centered_around": self.centered_around,
            "match_found": self.match_found,
            "message_count": len(conversation),
            "conversation": conversation,
            "message": self.message,
        }


class MessageSearchEngine:
    """
    Search iMessage history with optional contact scoping and context.

    Usage:
        engine = MessageSearchEngine(db, contact_index, resolver)
        response = engine.search('flight "confirmation"', SearchFilters(days_back=7))
    """

    def __init__(
        self,
        db: IMessageDatabase,
        contact_index: ContactIndex,
        resolver: Optional[IdentityResolver] = None,
        scan_limit: int = 5000,
    ):
        self.db = db
        self.contact_index = contact_index
        self.resolver = resolver
        self.scan_limit = scan_limit

    @graceful_degradation("message handle lookup")
    def _lookup_handles_like(self, contact: str) -> list[str]:
        return self.db.find_handles_like(contact)

    def resolve_contact(self, contact: Optional[str], handles: Optional[list[str]] = None) -> ContactResolution:
        """
        Turn a contact filter into handles.

        Order: explicit handles, a handle-shaped contact string, Contacts,
        identity resolution, then a LIKE lookup over message handles and chat
        names.
        """
        if handles:
            return ContactResolution(query=contact, handles=list(handles), method="handles")

        contact = (contact or "").strip()
        if not contact:
            return ContactResolution(query=None)

        parsed = parse_handle(contact)
        looks_like_phone = parsed.kind == HandleKind.PHONE and not re.search(r"[A-Za-z]", contact)
        if parsed.is_matchable and (parsed.kind == HandleKind.EMAIL or looks_like_phone):
            return ContactResolution(
                query=contact,
                handles=[contact],
                method="handle",
                name=self.contact_index.get_name(contact),
            )

        found = self.contact_index.find_handles(contact)
        if found:
            return ContactResolution(
                query=contact,
                handles=found,
                method="contacts",
                name=self.contact_index.get_name(found[0]),
            )

        if self.resolver is not None:
            identity = self.resolver.resolve(contact, search_all_sources=False)
            if identity.best_match and identity.handles:
                return ContactResolution(
                    query=contact,
                    handles=identity.handles,
                    method="identity",
                    name=identity.best_match.name,
                )

        like = self._lookup_handles_like(contact)
        if like:
            return ContactResolution(query=contact, handles=like, method="message_lookup")

        return ContactResolution(query=contact)

    def search(self, query: Optional[str], filters: Optional[SearchFilters] = None) -> SearchResponse:
        """
        Search messages.

        Args:
            query: Terms to match (AND); quoted spans are phrases
            filters: Contact, time, direction, paging and context options

        Returns:
            SearchResponse; a blank query with no contact yields empty_query=True

        Raises:
            ValueError: On an invalid direction
            SourceUnavailableError: If the Messages database can't be read
        """
        filters = (filters or SearchFilters()).normalized()
        query = (query or "").strip()
        terms = parse_search_query(query, quoted=filters.quoted)

        if not terms and not filters.contact and not filters.handles:
            return SearchResponse(
                query=query,
                terms=[],
                filters=filters,
                empty_query=True,
                message="Nothing to search: provide a query or a contact.",
            )

        resolution = None
        handles = None
        if filters.contact or filters.handles:
            resolution = self.resolve_contact(filters.contact, filters.handles)
            if not resolution.resolved:
                return SearchResponse(
                    query=query,
                    terms=terms,
                    filters=filters,
                    contact=resolution,
                    message=f'Could not find a contact matching "{filters.contact}".',
                )
            handles = resolution.handles

        since = resolve_since(filters.since, filters.days_back)
        # Without terms every row matches, so only fetch what will be returned
        limit = self.scan_limit if terms else filters.max_results
        candidates = self.db.recent_messages(
            limit,
            direction=filters.direction,
            handles=handles,
            since=since,
        )

        results = []
        for msg in candidates:
            if not msg.resolved_text:
                continue
            if terms and not matches_all_terms(msg.resolved_text, terms):
                continue

            result = SearchResult(
                message=msg,
                highlighted_text=highlight_terms(msg.resolved_text, terms),
                contact_name=self.contact_index.get_name(msg.handle),
            )
            if filters.context_messages:
                result.context_before, result.context_after = self.db.get_neighbors(
                    msg, filters.context_messages
                )
                result.has_context = True
            results.append(result)

            if len(results) >= filters.max_results:
                break

        logger.info(
            f"Message search '{query}' terms={terms} contact={filters.contact!r}: "
            f"{len(results)} results from {len(candidates)} scanned"
        )

        return SearchResponse(
            query=query,
            terms=terms,
            filters=filters,
            contact=resolution,
            results=results,
            scanned=len(candidates),
        )

    def get_conversation(
        self,
        contact: str,
        around: Optional[str] = None,
        max_messages: int = DEFAULT_CONVERSATION_MESSAGES,
        days_back: Optional[int] = None,
    ) -> ConversationResponse:
        """
        A stretch of conversation with a contact.

        With `around`, the conversation is centered on the most recent message
        containing it; otherwise (or if nothing matches) it is the most recent
        messages, oldest first.
        """
        max_messages = max(1, min(max_messages or DEFAULT_CONVERSATION_MESSAGES, MAX_SEARCH_RESULTS))
        resolution = self.resolve_contact(contact)
        if not resolution.resolved:
            return ConversationResponse(
                contact=resolution,
                centered_around=around,
                message=f'Could not find a contact matching "{contact}".',
            )

        if around and around.strip():
            found = self.search(
                around,
                SearchFilters(handles=resolution.handles, days_back=days_back, max_results=1),
            )
            if found.results:
                anchor = found.results[0].message
                before, after = self.db.get_neighbors(anchor, max_messages // 2)
                return ConversationResponse(
                    contact=resolution,
                    messages=before + [anchor] + after,
                    centered_around=around,
                    match_found=True,
                    match_id=anchor.message_id,
                )

        recent = self.db.recent_messages(
            max_messages,
            handles=resolution.handles,
            since=resolve_since(days_back=days_back),
        )
        messages = [m for m in recent if m.resolved_text]
        messages.sort(key=lambda m: (m.date_raw or 0, m.message_id))

        return ConversationResponse(
            contact=resolution,
            messages=messages,
            centered_around=around,
            match_found=False,
        )


# Singleton instance
_search_engine: Optional[MessageSearchEngine] = None


def get_message_search_engine() -> MessageSearchEngine:
    """Get or create the MessageSearchEngine wired from settings."""
    global _search_engine
    if _search_engine is None:
        from api.services.contact_index import get_contact_index
        from api.services.identity_resolver import get_identity_resolver
        from api.services.imessage import get_imessage_db
        from config.settings import settings
        _search_engine = MessageSearchEngine(
            get_imessage_db(),
            get_contact_index(),
            get_identity_resolver(),
            scan_limit=settings.search_scan_limit,
        )
    return _search_engine
