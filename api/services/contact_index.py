"""
Contact index for Identity Search.

Builds two lookups over the local Contacts directory:
- forward: normalized handle -> display name
- reverse: lowercased search term (name part, "first last", "last first",
  nickname, organization) -> raw handles

The index is built lazily on first use, exactly once, and stays immutable until
invalidate() is called. Reads after the build take no lock.
"""
import logging
import threading
import time
from typing import Callable, Optional, Sequence, Union

from api.services.address_book import DirectorySource, get_address_book_sources
from api.services.handle_utils import is_indexable, normalize_handle

logger = logging.getLogger(__name__)

SourceProvider = Union[Sequence[DirectorySource], Callable[[], Sequence[DirectorySource]]]


class ContactIndex:
    """
    Forward and reverse contact lookups built from directory sources.

    Usage:
        index = ContactIndex(get_address_book_sources)
        index.get_name("+1 (555) 123-4567")   # "John Smith"
        index.find_handles("smith")           # ["+15551234567"]
    """

    def __init__(self, sources: SourceProvider):
        """
        Args:
            sources: Directory sources, or a callable returning them. A callable
                is re-evaluated on every build so newly added accounts are seen
                after invalidate().
        """
        self._sources = sources
        self._lock = threading.Lock()
        self._built = False
        self._names: dict[str, str] = {}
        self._terms: dict[str, list[str]] = {}
        self._record_count = 0
        self._source_count = 0
        self._failed_sources: list[str] = []
        self._build_count = 0
        self._built_at: Optional[float] = None

    @property
    def is_built(self) -> bool:
        return self._built

    def _resolve_sources(self) -> Sequence[DirectorySource]:
        if callable(self._sources):
            return self._sources()
        return self._sources

    def build(self) -> None:
        """
        Build both indices if not already built.

        Concurrent first callers block on the lock and find the index already
        built when they get it.
        """
        if self._built:
            return

        with self._lock:
            if self._built:
                return

            start = time.time()
            names: dict[str, str] = {}
            terms: dict[str, list[str]] = {}
            record_count = 0
            failed = []

            sources = list(self._resolve_sources())
            for source in sources:
                source_name = getattr(source, "name", type(source).__name__)
                try:
                    for record in source.iter_records():
                        record_count += 1
                        self._add_record(record, names, terms)
                except Exception as e:
                    # One unreadable account shouldn't hide the others
                    logger.warning(f"Skipping contact source {source_name}: {e}")
                    failed.append(source_name)

            self._names = names
            self._terms = terms
            self._record_count = record_count
            self._source_count = len(sources)
            self._failed_sources = failed
            self._build_count += 1
            self._built_at = time.time()
            self._built = True

            logger.info(
                f"Built contact index: {len(names)} handles, {len(terms)} terms "
                f"from {record_count} records in {len(sources)} sources "
                f"({time.time() - start:.2f}s)"
            )

    @staticmethod
    def _add_record(record, names: dict[str, str], terms: dict[str, list[str]]) -> None:
        """Insert one record's indexable handles into both indices."""
        handles = [h for h in record.handles if h and is_indexable(h)]
        if not handles:
            return

        display_name = record.display_name
        if display_name:
            for raw in handles:
                # First writer wins across sources
                names.setdefault(normalize_handle(raw), display_name)

        for term in record.search_terms():
            bucket = terms.setdefault(term, [])
            for raw in handles:
                if raw not in bucket:
                    bucket.append(raw)

    def invalidate(self) -> None:
        """Drop both indices; the next lookup rebuilds from scratch."""
        with self._lock:
            self._names = {}
            self._terms = {}
            self._built = False
        logger.info("Contact index invalidated")

    def get_name(self, handle: Optional[str]) -> Optional[str]:
        """
        Display name for a handle, or None.

        Args:
            handle: Raw phone number or email in any format
        """
        normalized = normalize_handle(handle)
        if not normalized:
            return None
        self.build()
        return self._names.get(normalized)

    def find_handles(self, query: Optional[str]) -> list[str]:
        """
        Raw handles for a name query.

        Exact (lowercased) term match wins outright. Otherwise every term that
        contains the query, or is contained in it, contributes its handles.

        Args:
            query: Name, partial name, nickname or organization

        Returns:
            Deduplicated raw handles in index order ([] for a blank query)
        """
        q = (query or "").strip().lower()
        if not q:
            return []

        self.build()

        exact = self._terms.get(q)
        if exact:
            return list(exact)

        results: list[str] = []
        seen = set()
        for term, handles in self._terms.items():
            if term in q or q in term:
                for raw in handles:
                    if raw not in seen:
                        seen.add(raw)
                        results.append(raw)
        return results

    def stats(self) -> dict:
        """Index statistics for health and debugging endpoints."""
        return {
            "built": self._built,
            "handles": len(self._names),
            "terms": len(self._terms),
            "records": self._record_count,
            "sources": self._source_count,
            "failed_sources": list(self._failed_sources),
            "build_count": self._build_count,
            "built_at": self._built_at,
        }


# Singleton instance
_contact_index: Optional[ContactIndex] = None


def get_contact_index() -> ContactIndex:
    """
    Get or create the application-wide ContactIndex.

    Sources are discovered under settings.address_book_dir at build time.
    """
    global _contact_index
    if _contact_index is None:
        _contact_index = ContactIndex(get_address_book_sources)
    return _contact_index
