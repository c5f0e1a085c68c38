"""
Identity Search Services Package.

This package contains all business logic and data access services.
Use this module to import commonly-used services.

Example:
    from api.services import (
        get_contact_index,
        get_identity_resolver,
        get_message_search_engine,
    )

Key service modules:
- handle_utils: phone/email normalization
- attributed_body: text recovery from Messages attributedBody blobs
- imessage: read-only chat.db access
- contact_index: forward/reverse Contacts lookups
- evidence / evidence_sources: weighted identity evidence per source
- identity_resolver: ranked, deduplicated identity candidates
- message_search: full-text message search with context
"""

# ============================================================================
# Handles & Message Text
# ============================================================================

from api.services.handle_utils import (
    Handle,
    HandleKind,
    normalize_handle,
    parse_handle,
)

from api.services.attributed_body import (
    ExtractedText,
    extract_attributed_text,
    extract_text_from_attributed_body,
)

# ============================================================================
# Data Sources
# ============================================================================

from api.services.imessage import (
    IMessageDatabase,
    MessageRecord,
    get_imessage_db,
)

from api.services.contact_index import (
    ContactIndex,
    get_contact_index,
)

# ============================================================================
# Identity Resolution
# ============================================================================

from api.services.evidence import (
    EvidenceMatch,
    EvidenceRecord,
    EvidenceSource,
)

from api.services.identity_resolver import (
    Confidence,
    ContactCandidate,
    IdentityResolver,
    ResolvedIdentity,
    get_identity_resolver,
)

# ============================================================================
# Search
# ============================================================================

from api.services.message_search import (
    MessageSearchEngine,
    SearchFilters,
    get_message_search_engine,
)

from api.services.resilience import SourceUnavailableError


__all__ = [
    # Handles & message text
    "Handle",
    "HandleKind",
    "normalize_handle",
    "parse_handle",
    "ExtractedText",
    "extract_attributed_text",
    "extract_text_from_attributed_body",
    # Data sources
    "IMessageDatabase",
    "MessageRecord",
    "get_imessage_db",
    "ContactIndex",
    "get_contact_index",
    # Identity resolution
    "EvidenceMatch",
    "EvidenceRecord",
    "EvidenceSource",
    "Confidence",
    "ContactCandidate",
    "IdentityResolver",
    "ResolvedIdentity",
    "get_identity_resolver",
    # Search
    "MessageSearchEngine",
    "SearchFilters",
    "get_message_search_engine",
    # Errors
    "SourceUnavailableError",
]
