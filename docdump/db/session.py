"""
Database engine and session management.

The engine and session factory live on a Database object created once at
process startup (API lifespan, Celery task runtime) and handed to every
component that needs it. dispose() drains the pool at shutdown.

Sessions are transaction-scoped: `async with db.transaction() as session`
commits on clean exit and rolls back on any exception.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from docdump.core.config import Settings
from docdump.models.documents import Base

logger = logging.getLogger(__name__)


class Database:
    """Owns one AsyncEngine and its session factory."""

    def __init__(
        self,
        url: str,
        *,
        pool_size: int = 10,
        max_overflow: int = 20,
        echo: bool = False,
    ) -> None:
        engine_kwargs: dict = {"echo": echo}
        if not url.startswith("sqlite"):
            engine_kwargs.update(
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_pre_ping=True,   # detect stale connections before use
                pool_recycle=3600,    # recycle connections every hour
            )

        self.engine: AsyncEngine = create_async_engine(url, **engine_kwargs)

        # expire_on_commit=False keeps ORM objects usable after commit
        self.sessionmaker = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(
            settings.database_url,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            echo=settings.db_echo_sql,
        )

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session inside BEGIN … COMMIT (ROLLBACK on error)."""
        async with self.sessionmaker() as session:
            async with session.begin():
                yield session

    async def create_all(self) -> None:
        """Create missing tables. Local development and tests only."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()
        logger.info("Database pool disposed")

    async def check_health(self) -> dict:
        """Ping the database; used by /ready and at startup."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return {"status": "ok"}
        except Exception as exc:
            logger.error("DB health check failed: %s", exc)
            return {"status": "error", "detail": str(exc)}
