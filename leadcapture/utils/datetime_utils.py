"""
Datetime helpers for values read back from the database.

SQLite drops tzinfo on DateTime(timezone=True) columns, Postgres keeps it.
"""

from datetime import UTC, datetime


def iso_or_none(dt: datetime | None) -> str | None:
    """ISO string for dt, or None."""
    return dt.isoformat() if dt is not None else None


def as_utc(dt: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC so they compare with datetime.now(UTC)."""
    if dt is None:
        return None
    return dt.replace(tzinfo=UTC) if dt.tzinfo is None else dt
