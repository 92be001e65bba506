from __future__ import annotations

import logging
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import get_settings

logger = logging.getLogger(__name__)


class _Database:
    """Process-wide engine and session factory, created on first use."""

    def __init__(self) -> None:
        self.engine: Optional[AsyncEngine] = None
        self.sessions: Optional[async_sessionmaker[AsyncSession]] = None

    def open(self) -> async_sessionmaker[AsyncSession]:
        if self.sessions is None:
            settings = get_settings()
            self.engine = create_async_engine(settings.async_database_url, **settings.engine_options)
            # Read models built inside atomic() are used after it commits.
            self.sessions = async_sessionmaker(self.engine, expire_on_commit=False, autoflush=False)
            logger.info("Database engine created (pool_size=%d)", settings.DB_POOL_SIZE)
        return self.sessions

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
            logger.info("Database engine disposed")
        self.engine = None
        self.sessions = None


_database = _Database()


# PUBLIC_INTERFACE
async def dispose_engine() -> None:
    """Close pooled connections; called on application shutdown."""
    await _database.close()


# PUBLIC_INTERFACE
async def get_async_session() -> AsyncIterator[AsyncSession]:
    """
    Yield an AsyncSession for one request.

    No transaction stays open between units of work; each repository.atomic()
    block begins and commits its own.
    """
    async with _database.open()() as session:
        yield session
