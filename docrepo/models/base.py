"""
Base declarations for the SQLAlchemy storage tables.

Provides the declarative base and timestamp helpers shared by the
tables that back the document containers.
"""

from datetime import datetime, timezone

from sqlalchemy.orm import declarative_base


# SQLAlchemy declarative base for all storage tables
Base = declarative_base()


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    """
    Get current UTC timestamp in ISO format.

    Returns:
        ISO format timestamp string (e.g., "2026-01-15T10:30:45.123456+00:00")
    """
    return utc_now().isoformat()


def to_storage_datetime(value: datetime) -> str:
    """
    Fixed-width UTC text for a datetime, so stored values sort chronologically.

    Naive datetimes are taken to be UTC.

    Returns:
        e.g. "2026-01-15T10:30:45.000000+00:00"
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")
