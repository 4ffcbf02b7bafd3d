"""Async database engine and unit-of-work sessions."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from server_status_monitor.errors import StoreError
from server_status_monitor.storage.models import Base

logger = logging.getLogger(__name__)


def normalize_url(url: str) -> str:
    """Map a plain PostgreSQL URL onto the asyncpg driver."""
    if url.startswith("postgresql://"):
        return "postgresql+asyncpg://" + url[len("postgresql://") :]
    return url


class Database:
    """Owns the async engine and hands out transactional sessions.

    Example:
        ```python
        db = Database("sqlite+aiosqlite:///./monitor.db")
        await db.connect()

        async with db.session() as session:
            repo = TargetRepository(session)
            targets = await repo.list_active()

        await db.close()
        ```
    """

    def __init__(self, url: str, *, echo: bool = False) -> None:
        self.url = normalize_url(url)
        kwargs: dict[str, object] = {"echo": echo}
        if self.url.startswith("sqlite") and ":memory:" in self.url:
            # A single shared connection keeps the in-memory schema alive
            kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}
        self._engine: AsyncEngine = create_async_engine(self.url, **kwargs)
        self._sessionmaker = async_sessionmaker(self._engine, expire_on_commit=False)

    @property
    def engine(self) -> AsyncEngine:
        """The underlying async engine."""
        return self._engine

    async def connect(self) -> None:
        """Verify connectivity and create missing tables.

        Raises:
            StoreError: If the database cannot be reached.
        """
        try:
            async with self._engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
                await conn.run_sync(Base.metadata.create_all)
        except (SQLAlchemyError, OSError) as e:
            raise StoreError(f"Database connection failed: {e}") from e
        logger.info("Database ready")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Open a session that commits on success and rolls back on error.

        Raises:
            StoreError: If any SQLAlchemy error occurs inside the block.
        """
        async with self._sessionmaker() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise StoreError(str(e)) from e
            except BaseException:
                await session.rollback()
                raise

    async def close(self) -> None:
        """Dispose of the engine and its connection pool."""
        await self._engine.dispose()
        logger.info("Database connection closed")
