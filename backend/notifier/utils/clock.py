from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.orm import Session


def dialect_name(db: Session) -> str:
    dialect = getattr(getattr(db, "bind", None), "dialect", None)
    return (getattr(dialect, "name", "") or "").lower()


def as_utc(dt: datetime | None) -> datetime | None:
    """Naive values are treated as UTC (SQLite drops the offset on storage)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def as_db_dt(db: Session, dt: datetime) -> datetime:
    dt_utc = as_utc(dt)
    if dialect_name(db) == "sqlite":
        return dt_utc.replace(tzinfo=None)
    return dt_utc


def db_now(db: Session) -> datetime:
    # SQLite stores timezone-aware datetimes as naive values; comparing the two crashes.
    return as_db_dt(db, datetime.now(timezone.utc))
