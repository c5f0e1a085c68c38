# Identity Search API Utilities
"""
Shared utility functions for Identity Search services.
"""

from api.utils.datetime_utils import format_iso, make_aware, resolve_since, utc_now

__all__ = ["format_iso", "make_aware", "resolve_since", "utc_now"]
