"""
Clay CRM client for Identity Search.

Thin wrapper over the Clay search API: find contacts by term and read their
notes and contact information. Configure CLAY_API_KEY in .env.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

import httpx

from api.services.resilience import (
    SourceUnavailableError,
    TransientSourceError,
    HTTP_SOURCE_RETRY,
    is_retryable_status,
    retry_sync,
)

logger = logging.getLogger(__name__)

SOURCE_NAME = "clay"

HANDLE_INFO_TYPES = ("email", "phone")


@dataclass
class ClayContact:
    """A Clay contact with the fields identity resolution cares about."""
    contact_id: str
    name: str
    handles: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    organization: Optional[str] = None

    @classmethod
    def from_api(cls, contact_id: str, data: dict) -> "ClayContact":
        """Build from a search hit `_source` or a contact detail payload."""
        name = (
            data.get("displayName")
            or data.get("fullName")
            or f"{data.get('firstName') or ''} {data.get('lastName') or ''}".strip()
        )

        handles = []
        for info in data.get("information") or []:
            if info.get("type") in HANDLE_INFO_TYPES and info.get("value"):
                handles.append(info["value"])

        notes = []
        for note in data.get("notes") or []:
            content = note.get("content") if isinstance(note, dict) else note
            if content:
                notes.append(content)

        return cls(
            contact_id=str(contact_id),
            name=name,
            handles=handles,
            notes=notes,
            organization=data.get("organization"),
        )

    def to_dict(self) -> dict:
        return {
            "contact_id": self.contact_id,
            "name": self.name,
            "handles": self.handles,
            "notes": self.notes,
            "organization": self.organization,
        }


class ClayClient:
    """
    Client for the Clay search API.

    Usage:
        client = ClayClient(api_key="...")
        contacts = client.search_contacts("mandy", limit=10)
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://search.clay.earth",
        timeout: float = 15.0,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @retry_sync(HTTP_SOURCE_RETRY)
    def _get(self, endpoint: str, params: Optional[dict] = None) -> dict:
        if not self.api_key:
            raise SourceUnavailableError(SOURCE_NAME, "CLAY_API_KEY is not set")

        try:
            resp = httpx.get(
                f"{self.base_url}{endpoint}",
                params={k: v for k, v in (params or {}).items() if v not in (None, "")},
                headers={
                    "Authorization": f"ApiKey {self.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise TransientSourceError(SOURCE_NAME, f"Request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise SourceUnavailableError(SOURCE_NAME, f"Request failed: {e}") from e

        if resp.status_code != 200:
            message = f"Clay API error ({resp.status_code}): {resp.text[:200]}"
            if is_retryable_status(resp.status_code):
                raise TransientSourceError(SOURCE_NAME, message)
            raise SourceUnavailableError(SOURCE_NAME, message)

        return resp.json()

    def search_contacts(self, term: str, limit: int = 20) -> list[ClayContact]:
        """
        Search contacts by name, note content or contact info.

        Raises:
            SourceUnavailableError: If Clay is not configured or unreachable
        """
        data = self._get("/search", {"term": term, "limit": limit})
        hits = (data.get("hits") or {}).get("hits") or []
        return [ClayContact.from_api(hit.get("_id", ""), hit.get("_source") or {}) for hit in hits]

    def get_contact(self, contact_id: str) -> Optional[ClayContact]:
        """Full contact (including notes), or None if it can't be fetched."""
        try:
            data = self._get(f"/contact/{contact_id}")
        except SourceUnavailableError as e:
            logger.warning(f"Failed to get Clay contact {contact_id}: {e.message}")
            return None
        return ClayContact.from_api(data.get("id", contact_id), data)


# Singleton instance
_clay_client: Optional[ClayClient] = None


def get_clay_client() -> ClayClient:
    """Get or create the ClayClient from settings."""
    global _clay_client
    if _clay_client is None:
        from config.settings import settings
        _clay_client = ClayClient(
            api_key=settings.clay_api_key,
            base_url=settings.clay_search_url,
            timeout=settings.clay_timeout,
        )
    return _clay_client
