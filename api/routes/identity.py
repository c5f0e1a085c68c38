"""
Identity API endpoints.

Resolve informal names ("Mandy", "Dr. Lee") to people and look up contacts.
"""
from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from api.services.contact_index import get_contact_index
from api.services.identity_resolver import get_identity_resolver

router = APIRouter(prefix="/api/identity", tags=["identity"])


class ExampleResponse(BaseModel):
    text: str
    date: Optional[str] = None
    kind: str


class CandidateResponse(BaseModel):
    """A person the query might refer to."""
    name: str
    handles: list[str]
    source: str
    sources: list[str]
    confidence: str
    match_reason: str
    match_reasons: list[str]
    message_count: int
    examples: list[ExampleResponse] = []


class ResolveResponse(BaseModel):
    """Response for the resolve endpoint."""
    query: str
    matches: list[CandidateResponse]
    best_match: Optional[CandidateResponse] = None
    handles: list[str]
    summary: str
    sources_searched: list[str]


class ContactLookupResponse(BaseModel):
    query: str
    handles: list[str]
    name: Optional[str] = None
    count: int


class ContactNameResponse(BaseModel):
    handle: str
    name: Optional[str] = None
    found: bool


class InvalidateResponse(BaseModel):
    status: str
    stats: dict


@router.get("/resolve", response_model=ResolveResponse)
async def resolve_identity(
    name: str = Query(..., description="Name, nickname or alias to resolve (e.g. 'Mandy', 'Mom')"),
    search_all_sources: bool = Query(
        default=True,
        description="Search every source; if false, stop at the first confident match",
    ),
):
    """
    **Resolve a name or nickname to a person.**

    Checks Contacts first, then looks for evidence in message history, Clay
    notes and Gmail: who you call by this name, and who signs their messages
    with it.

    Examples:
    - `name=Mandy` -> candidates ranked by confidence, with example messages
    - `name=Mandy&search_all_sources=false` -> stops at the first confident match

    Returns ranked candidates, the best match, its handles and a summary.
    """
    if not name.strip():
        raise HTTPException(status_code=400, detail="name cannot be empty")

    identity = get_identity_resolver().resolve(name, search_all_sources=search_all_sources)
    return ResolveResponse(**identity.to_dict())


@router.get("/contacts/lookup", response_model=ContactLookupResponse)
async def lookup_contact(
    q: str = Query(..., description="Name, partial name, nickname or organization"),
):
    """
    **Find handles for a name in Contacts.**

    Exact name matches win; otherwise any contact whose name contains the
    query (or is contained in it) is returned.
    """
    if not q.strip():
        raise HTTPException(status_code=400, detail="q cannot be empty")

    index = get_contact_index()
    handles = index.find_handles(q)
    return ContactLookupResponse(
        query=q,
        handles=handles,
        name=index.get_name(handles[0]) if handles else None,
        count=len(handles),
    )


@router.get("/contacts/name", response_model=ContactNameResponse)
async def contact_name(
    handle: str = Query(..., description="Phone number or email in any format"),
):
    """**Get the Contacts name for a phone number or email.**"""
    if not handle.strip():
        raise HTTPException(status_code=400, detail="handle cannot be empty")

    name = get_contact_index().get_name(handle)
    return ContactNameResponse(handle=handle, name=name, found=name is not None)


@router.post("/contacts/invalidate", response_model=InvalidateResponse)
async def invalidate_contacts():
    """
    **Drop the cached contact index.**

    The next lookup rebuilds it from the AddressBook databases. Use after
    editing contacts.
    """
    index = get_contact_index()
    index.invalidate()
    return InvalidateResponse(status="invalidated", stats=index.stats())
