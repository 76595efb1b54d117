"""Dialect-aware INSERT ... ON CONFLICT helper."""

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def insert_for(session: AsyncSession, model: Any):
    """Return an ``insert()`` construct supporting ``on_conflict_*`` for the session's backend."""
    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        return sqlite.insert(model)
    if dialect == "postgresql":
        return postgresql.insert(model)
    raise ValueError(f"Upsert not supported on dialect {dialect!r}")
