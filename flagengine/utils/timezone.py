"""
UTC timestamp helpers.

Flag and audit timestamps are always timezone-aware UTC. SQLite hands
back naive datetimes, which are read as UTC.
"""

from datetime import datetime, timezone

UTC = timezone.utc


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_utc(dt: datetime) -> datetime:
    """Normalize to aware UTC; naive input is taken to be UTC already."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)
