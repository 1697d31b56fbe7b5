"""Async sessions: one per request, one per background task."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from call_orchestrator.config import get_settings
from call_orchestrator.database.connection import check_connection, close_engine, get_engine

logger = logging.getLogger(__name__)

_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Session factory bound to the global engine.

    Objects stay usable after commit: services commit before handing call
    ids to background tasks and still read the committed rows afterwards.
    """
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(), class_=AsyncSession, expire_on_commit=False, autoflush=False
        )
    return _session_factory


@asynccontextmanager
async def get_session_context() -> AsyncIterator[AsyncSession]:
    """
    Session for work outside a request (background dispatch, recording fetch,
    Celery tasks). Commits on success, rolls back on any exception.
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(f"Session rolled back: {type(e).__name__}: {e}")
            raise


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: the request's session."""
    async with get_session_context() as session:
        yield session


async def init_db() -> None:
    """Create tables when ``DATABASE_AUTO_CREATE_TABLES`` is set, then check connectivity."""
    if get_settings().database.auto_create_tables:
        from call_orchestrator.database.models import Base

        async with get_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created")

    if not await check_connection():
        logger.warning("Database connection check failed at startup")


async def close_db() -> None:
    """Dispose of the engine; the next session gets a new one."""
    global _session_factory
    _session_factory = None
    await close_engine()
