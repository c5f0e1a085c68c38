"""
iMessage API endpoints for Identity Search.

Provides search and conversation retrieval over iMessage/SMS history.
"""
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from api.services.contact_index import get_contact_index
from api.services.message_search import SearchFilters, get_message_search_engine
from api.services.resilience import SourceUnavailableError

router = APIRouter(prefix="/api/imessage", tags=["imessage"])


class MessageResponse(BaseModel):
    """Response model for an iMessage/SMS message."""
    message_id: int
    text: str
    text_source: Optional[str] = None
    date: Optional[str] = None
    is_from_me: bool
    handle: Optional[str] = None
    chat_identifier: Optional[str] = None
    chat_name: Optional[str] = None
    contact_name: Optional[str] = None


class MessageContext(BaseModel):
    before: list[MessageResponse]
    after: list[MessageResponse]


class SearchResultResponse(MessageResponse):
    highlighted_text: str
    context: Optional[MessageContext] = None


class ContactResolutionResponse(BaseModel):
    requested: Optional[str] = None
    resolved: Optional[str] = None
    handles: list[str]
    method: Optional[str] = None


class SearchResponse(BaseModel):
    """Response for search endpoint."""
    query: str
    terms: list[str]
    filters: dict
    contact: Optional[ContactResolutionResponse] = None
    total_results: int
    results: list[SearchResultResponse]
    empty_query: bool
    message: Optional[str] = None


class ConversationMessage(MessageResponse):
    is_match: bool


class ConversationResponse(BaseModel):
    """Response for context endpoint."""
    contact: ContactResolutionResponse
    centered_around: Optional[str] = None
    match_found: bool
    message_count: int
    conversation: list[ConversationMessage]
    message: Optional[str] = None


def _parse_after(after: Optional[str]) -> Optional[datetime]:
    """Parse YYYY-MM-DD or ISO datetime into an aware UTC datetime."""
    if not after:
        return None
    try:
        parsed = datetime.fromisoformat(after.replace('Z', '+00:00'))
    except ValueError:
        try:
            # Try date-only format
            parsed = datetime.strptime(after, "%Y-%m-%d")
        except ValueError:
            raise HTTPException(
                status_code=400,
                detail="after must be YYYY-MM-DD or an ISO datetime"
            )
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _unavailable(e: SourceUnavailableError) -> HTTPException:
    return HTTPException(status_code=503, detail=f"{e.source} unavailable: {e.message}")


@router.get("/search", response_model=SearchResponse)
async def search_messages(
    q: Optional[str] = Query(default=None, description="Search terms (AND); use double quotes for phrases"),
    contact: Optional[str] = Query(default=None, description="Contact name, nickname, phone or email"),
    handle: Optional[list[str]] = Query(default=None, description="Explicit handle(s) to filter by"),
    days_back: Optional[int] = Query(default=None, ge=0, description="Only messages from the last N days"),
    after: Optional[str] = Query(default=None, description="Messages after date (YYYY-MM-DD or ISO format)"),
    direction: Optional[str] = Query(default=None, description="Filter by direction: 'sent' or 'received'"),
    quoted: bool = Query(default=False, description="Treat the whole query as one exact phrase"),
    max_results: int = Query(default=20, ge=1, le=100, description="Maximum results to return"),
    context_messages: int = Query(default=0, ge=0, le=10, description="Messages of context before/after each result"),
):
    """
    **Search iMessage/SMS history.**

    Results are returned newest first. Every term must appear in a message for
    it to match.

    **Search methods:**
    - Text search: `q=dinner` finds messages containing "dinner"
    - Phrases: `q="flight confirmation" united` (or `quoted=true`)
    - Contact filter: `contact=Mandy` resolves the name via Contacts and message history
    - Handle filter: `handle=+15551234567` (repeatable)
    - Time: `days_back=7` or `after=2024-01-01`
    - Direction: `direction=sent` or `direction=received`
    - Context: `context_messages=3` adds surrounding messages from the same chat

    Matches are highlighted with `**term**` in `highlighted_text`.
    """
    if direction and direction not in ("sent", "received"):
        raise HTTPException(
            status_code=400,
            detail="direction must be 'sent' or 'received'"
        )

    filters = SearchFilters(
        contact=contact,
        handles=handle,
        since=_parse_after(after),
        days_back=days_back,
        direction=direction,
        quoted=quoted,
        max_results=max_results,
        context_messages=context_messages,
    )

    try:
        response = get_message_search_engine().search(q, filters)
    except SourceUnavailableError as e:
        raise _unavailable(e) from e

    return SearchResponse(**response.to_dict(name_lookup=get_contact_index().get_name))


@router.get("/context", response_model=ConversationResponse)
async def get_context(
    contact: str = Query(..., description="Contact name, nickname, phone or email"),
    around: Optional[str] = Query(default=None, description="Keyword or phrase to center the conversation on"),
    max_messages: int = Query(default=30, ge=1, le=100, description="Maximum messages to return"),
    days_back: Optional[int] = Query(default=None, ge=0, description="Only messages from the last N days"),
):
    """
    **Get a stretch of conversation with a contact.**

    With `around`, returns the messages surrounding the most recent message
    containing that text (`match_found=true`, the anchor has `is_match=true`).
    Otherwise returns the most recent messages, oldest first.
    """
    if not contact.strip():
        raise HTTPException(status_code=400, detail="contact cannot be empty")

    try:
        conversation = get_message_search_engine().get_conversation(
            contact,
            around=around,
            max_messages=max_messages,
            days_back=days_back,
        )
    except SourceUnavailableError as e:
        raise _unavailable(e) from e

    return ConversationResponse(**conversation.to_dict(name_lookup=get_contact_index().get_name))
