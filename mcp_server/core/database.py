import logging
from typing import Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from mcp_server.core.config import settings

logger = logging.getLogger(__name__)


def create_storage_engine(
    url: str,
    echo: bool = False,
    pool_size: int = 25,
    pool_recycle: int = 300,
) -> AsyncEngine:
    """
    Build the pooled async engine the query executor runs against.
    SQLite (used by the test suite) does not take pool sizing arguments.
    """
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=echo)

    return create_async_engine(
        url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=0,
        pool_recycle=pool_recycle,
        pool_pre_ping=True,
    )


async def connect_storage(url: Optional[str] = None) -> Optional[AsyncEngine]:
    """
    Connect to the telemetry database and verify it answers.

    Returns None when no URL is configured or the database is unreachable,
    which puts the server in schema-only mode.
    """
    url = url or settings.DATABASE_URL
    if not url:
        logger.warning("DATABASE_URL is not set - running in schema-only mode")
        return None

    engine = create_storage_engine(
        url,
        echo=settings.SQL_ECHO,
        pool_size=settings.DB_POOL_SIZE,
        pool_recycle=settings.DB_POOL_RECYCLE_SECONDS,
    )

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as error:
        logger.warning(
            f"Failed to connect to database - running in schema-only mode: {error}"
        )
        await engine.dispose()
        return None

    logger.info("Connected to database")
    return engine


# Telemetry tables are declared on this Base (see models.py)
class Base(DeclarativeBase):
    pass
