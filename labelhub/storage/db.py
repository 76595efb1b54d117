"""Async database engine and session management.

PostgreSQL (asyncpg) is the production store; SQLite (aiosqlite) is used for
local development and tests. ``configure()`` swaps the engine so tests can
point the app at a throwaway database file.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from labelhub.config import get_settings
from labelhub.storage.models import Base

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def _set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
    """Enforce foreign keys (post cascades) on SQLite connections."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def configure(db_url: Optional[str] = None, echo: bool = False) -> AsyncEngine:
    """Create the engine and session factory for ``db_url`` (defaults to settings)."""
    global _engine, _session_factory

    url = db_url or get_settings().general.db_url
    connect_args: dict[str, Any] = {}
    if url.startswith("sqlite"):
        # Writers wait for each other instead of failing with "database is locked"
        connect_args["timeout"] = 30

    _engine = create_async_engine(url, echo=echo, connect_args=connect_args)
    if url.startswith("sqlite"):
        event.listen(_engine.sync_engine, "connect", _set_sqlite_pragma)

    _session_factory = async_sessionmaker(_engine, expire_on_commit=False, autoflush=False)
    logger.debug("Database configured: %s", _engine.url.render_as_string(hide_password=True))
    return _engine


def get_engine() -> AsyncEngine:
    if _engine is None:
        configure()
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        configure()
    return _session_factory


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    """Yield a session that commits on success and rolls back on error."""
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create all tables. Safe to call repeatedly."""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ready")


async def close_db() -> None:
    """Dispose of the engine's connection pool."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
