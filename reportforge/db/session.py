"""Async engine lifecycle and the per-request session dependency.

PostgreSQL (asyncpg) in deployment, SQLite (aiosqlite) in tests. The
engine is created by ``init_db`` during application startup and
disposed by ``close_db`` on shutdown.
"""

import logging
from collections.abc import AsyncGenerator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

from reportforge.core.config import Settings, get_settings
from reportforge.db import models  # noqa: F401  (registers the tables)

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def _open_engine(settings: Settings) -> async_sessionmaker[AsyncSession]:
    global _engine, _session_maker

    if _session_maker is None:
        url = settings.database_url
        logger.info(f"Opening database engine: {url.split('@')[-1]}")
        engine_kwargs = {"echo": settings.log_level == "DEBUG", "pool_pre_ping": True}
        # SQLite drivers don't take a sized pool
        if not url.startswith("sqlite"):
            engine_kwargs.update(pool_size=10, max_overflow=20)
        _engine = create_async_engine(url, **engine_kwargs)
        _session_maker = async_sessionmaker(_engine, expire_on_commit=False, autoflush=False)
    return _session_maker


async def init_db(settings: Settings | None = None) -> None:
    """Open the engine and create missing tables (there is no seed data)."""
    _open_engine(settings or get_settings())
    try:
        async with _engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
    except SQLAlchemyError as e:
        logger.error(f"Failed to initialize database: {e}", exc_info=True)
        raise
    logger.info("Database tables ready")


async def get_async_session(settings: Settings | None = None) -> AsyncGenerator[AsyncSession, None]:
    """Yield one session; database errors roll it back before propagating."""
    session_maker = _open_engine(settings or get_settings())
    async with session_maker() as session:
        try:
            yield session
        except SQLAlchemyError as e:
            logger.error(f"Database error: {e}", exc_info=True)
            await session.rollback()
            raise


async def close_db() -> None:
    """Dispose of the engine and all pooled connections."""
    global _engine, _session_maker

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_maker = None
        logger.info("Database engine closed")
