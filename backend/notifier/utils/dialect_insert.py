from __future__ import annotations

from sqlalchemy import Table
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from notifier.utils.clock import dialect_name

SUPPORTED_DIALECTS = ("postgresql", "sqlite")


def dialect_insert(db: Session, table: Table):
    """INSERT construct that supports ``on_conflict_do_nothing`` / ``on_conflict_do_update``.

    Only PostgreSQL and SQLite are supported. Any other backend would need a
    racy check-then-insert, so it is refused up front.
    """
    dialect = dialect_name(db)
    if dialect == "postgresql":
        return pg_insert(table)
    if dialect == "sqlite":
        return sqlite_insert(table)
    raise ValueError(f"Unsupported database dialect for conflict-aware inserts: {dialect or 'unknown'}")
