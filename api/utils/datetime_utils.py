"""
Datetime utilities for Identity Search services.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional


def make_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure datetime is timezone-aware (UTC if naive).

    Args:
        dt: A datetime object that may or may not have timezone info

    Returns:
        The same datetime with UTC timezone if it was naive,
        or the original timezone-aware datetime, or None if input was None
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def resolve_since(
    since: Optional[datetime] = None,
    days_back: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """
    Combine an explicit lower bound and a relative window into one cutoff.

    When both are given the later (more restrictive) bound wins.

    Args:
        since: Absolute lower bound
        days_back: Only the last N days (ignored if None or negative)
        now: Reference time (defaults to utc_now())

    Returns:
        Aware UTC cutoff, or None for no bound
    """
    bounds = []
    if since is not None:
        bounds.append(make_aware(since))
    if days_back is not None and days_back >= 0:
        bounds.append((make_aware(now) or utc_now()) - timedelta(days=days_back))
    return max(bounds) if bounds else None


def format_iso(dt: Optional[datetime]) -> Optional[str]:
    """ISO-8601 string for an aware datetime, or None."""
    return make_aware(dt).isoformat() if dt else None
