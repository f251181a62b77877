"""Dialect-aware INSERT ... ON CONFLICT construction.

PostgreSQL runs in production; SQLite backs the test suite. Both dialects
expose the same ``on_conflict_do_nothing`` / ``on_conflict_do_update`` API.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession


def insert_for(db: AsyncSession, table: Any) -> Any:
    """Return an ``Insert`` for ``table`` supporting ON CONFLICT on the session's dialect."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(table)
    if dialect == "sqlite":
        return sqlite_insert(table)
    msg = f"Unsupported database dialect for upserts: {dialect}"
    raise RuntimeError(msg)
