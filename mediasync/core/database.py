"""
Database Connection Management

Async SQLAlchemy engine and session factory for the credential store.
init_db() creates the engine once per process; close_db() disposes it.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from mediasync.config import get_settings
from mediasync.models.orm import Base

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


async def init_db(database_url: str | None = None) -> async_sessionmaker[AsyncSession]:
    """
    Create the engine and make sure all tables exist.

    Args:
        database_url: Override for the configured database URL

    Returns:
        Session factory bound to the engine
    """
    global _engine, _session_factory

    if _session_factory is not None:
        return _session_factory

    url = database_url or get_settings().database_url
    _engine = create_async_engine(url, echo=False, pool_pre_ping=True)
    _session_factory = async_sessionmaker(_engine, class_=AsyncSession, expire_on_commit=False)

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database initialized")
    return _session_factory


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the session factory created by init_db()."""
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """Session context that commits on success and rolls back on error."""
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def close_db() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        logger.info("Database connections closed")

    _engine = None
    _session_factory = None
