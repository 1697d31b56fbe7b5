"""Database engine.

PostgreSQL (asyncpg) in deployment, SQLite (aiosqlite) for local runs and
tests. Sync driver URLs are rewritten to their async equivalents.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from call_orchestrator.config import get_settings

logger = logging.getLogger(__name__)

_ASYNC_DRIVERS = {
    "postgresql": "postgresql+asyncpg",
    "postgresql+psycopg2": "postgresql+asyncpg",
}

_engine: Optional[AsyncEngine] = None


def get_database_url() -> str:
    """The configured URL with an async driver."""
    url = make_url(get_settings().database.url)
    driver = _ASYNC_DRIVERS.get(url.drivername)
    if driver:
        url = url.set(drivername=driver)
    return url.render_as_string(hide_password=False)


def _engine_options() -> Dict[str, Any]:
    db = get_settings().database
    if db.is_sqlite_memory:
        # The database exists only as long as its one connection
        return {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    if db.is_sqlite:
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_size": db.pool_size,
        "max_overflow": db.max_overflow,
        "pool_timeout": db.pool_timeout,
        "pool_recycle": db.pool_recycle,
        "pool_pre_ping": True,
    }


def create_engine() -> AsyncEngine:
    url = get_database_url()
    engine = create_async_engine(url, echo=get_settings().database.echo, **_engine_options())
    logger.info(f"Database engine created for {engine.url.render_as_string(hide_password=True)}")
    return engine


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = create_engine()
    return _engine


async def close_engine() -> None:
    global _engine
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        logger.info("Database engine disposed")


async def check_connection() -> bool:
    """True if the database answers ``SELECT 1``."""
    try:
        async with get_engine().connect() as conn:
            return (await conn.execute(text("SELECT 1"))).scalar() == 1
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
