"""Async PostgreSQL engine and per-request sessions.

A request gets exactly one session and therefore one transaction. The
archive and restore cascades rely on that: every flag they flip is written
through the request's session and becomes visible only when the request
succeeds.
"""

import asyncio
import logging
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from .config import settings

logger = logging.getLogger(__name__)

engine = create_async_engine(
    settings.database_url,
    echo=settings.sql_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    # A request waiting longer than this gets a 503 (see main.py)
    pool_timeout=15,
    pool_pre_ping=True,
    pool_recycle=3600,
)

# expire_on_commit=False: routers serialize documents after committing
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    """Declarative base for Letra's tables."""
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding the request's session.

    Routers commit mutations themselves before broadcasting; the commit
    here covers anything left pending. Any exception raised by the handler
    (an ownership error, a cascade that is too deep, a driver error) rolls
    the whole transaction back, so a subtree is never left half archived.
    """
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def _open_warm_connection(index: int, total: int) -> bool:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Warmup connection {index + 1}/{total} failed: {e}")
        return False
    logger.debug(f"Warmup connection {index + 1}/{total} ready")
    return True


async def warmup_connection_pool(pool_size: Optional[int] = None) -> int:
    """
    Open pool connections before the first request arrives.

    The sidebar is the first thing every client loads after a deploy, so
    connections are opened up front, ten at a time.

    Returns:
        Number of connections that opened successfully
    """
    target = pool_size or settings.db_pool_size
    logger.info(f"Warming up database pool ({target} connections)")

    opened = 0
    for start in range(0, target, 10):
        results = await asyncio.gather(
            *(_open_warm_connection(i, target) for i in range(start, min(start + 10, target)))
        )
        opened += sum(results)

    logger.info(f"Database pool warm: {opened}/{target} connections")
    return opened
