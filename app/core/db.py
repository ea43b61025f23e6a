"""
Database connection and session management.

Provides the async SQLAlchemy engine, session factory, and schema setup
for FastAPI endpoints. The gallery runs on SQLite through aiosqlite.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.config import settings
from app.core.telemetry import instrument_sqlalchemy

logger = logging.getLogger(__name__)

_telemetry_instrumented: bool = False

_async_engine: AsyncEngine | None = None
_async_sessionmaker: async_sessionmaker | None = None


def _set_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_fresh_async_engine(url: str | None = None) -> AsyncEngine:
    """Create a fresh async engine without caching.

    Args:
        url: Async database URL (defaults to ``settings.async_url``)
    """
    url = url or settings.async_url
    if not url:
        raise RuntimeError("DATABASE_URL is required")

    engine = create_async_engine(url, echo=False)
    if engine.dialect.name == "sqlite" and ":memory:" not in url:
        event.listen(engine.sync_engine, "connect", _set_sqlite_pragmas)
    return engine


def _instrument_sqlalchemy(engine: AsyncEngine) -> None:
    """Trace queries on the application engine; instrumented once per process."""
    global _telemetry_instrumented

    if _telemetry_instrumented:
        return
    instrument_sqlalchemy(engine.sync_engine)
    _telemetry_instrumented = True


def get_async_engine() -> AsyncEngine:
    """
    Create and configure the async SQLAlchemy engine.

    Uses the aiosqlite driver. SQLite connections get WAL journaling so
    readers are not blocked by uploads.

    Returns:
        Configured async SQLAlchemy engine
    """
    global _async_engine

    if _async_engine is not None:
        return _async_engine

    _async_engine = create_fresh_async_engine()
    if settings.otel_enabled:
        _instrument_sqlalchemy(_async_engine)

    return _async_engine


def get_async_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """
    Get or create the async sessionmaker.

    Returns:
        Async sessionmaker factory
    """
    global _async_sessionmaker
    if _async_sessionmaker is not None:
        return _async_sessionmaker

    engine = get_async_engine()
    _async_sessionmaker = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )
    return _async_sessionmaker


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Create missing tables.

    Args:
        engine: Engine to use (defaults to the application engine)
    """
    from app.db.models import Base

    engine = engine or get_async_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ready", extra={"dialect": engine.dialect.name})


async def reset_async_engine() -> None:
    """Reset the async database engine and sessionmaker.

    Useful for tests to ensure fresh connections on new event loops.
    """
    global _async_engine, _async_sessionmaker

    if _async_engine is not None:
        await _async_engine.dispose()
    _async_engine = None
    _async_sessionmaker = None


@asynccontextmanager
async def get_async_db_session() -> AsyncIterator[AsyncSession]:
    """Transactional async session for scripts and background work.

    Usage:
        async with get_async_db_session() as db:
            await db.execute(select(Image))

    Yields:
        Async database session, committed on success and rolled back on error
    """
    session_maker = get_async_sessionmaker()
    async with session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
