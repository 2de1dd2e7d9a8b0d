"""
Async SQLAlchemy engine and session handling for the SQL call record store.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from broadcaster.config import get_settings


class Base(DeclarativeBase):
    """Declarative base for the call and broadcast document tables."""


def engine_options(database_url: str) -> dict[str, Any]:
    """Engine keyword arguments for ``database_url``.

    SQLite (tests, local runs) does not take pool sizing arguments.
    """
    options: dict[str, Any] = {"echo": get_settings().debug, "pool_pre_ping": True}
    if not database_url.startswith("sqlite"):
        options["pool_size"] = 5
        options["max_overflow"] = 10
    return options


class DatabaseManager:
    """Owns one lazily created engine and its session factory."""

    def __init__(self, database_url: str | None = None) -> None:
        self.database_url = database_url or get_settings().database_url
        self._engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_async_engine(self.database_url, **engine_options(self.database_url))
        return self._engine

    def _session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._sessions is None:
            self._sessions = async_sessionmaker(
                bind=self.engine,
                expire_on_commit=False,
                autoflush=False,
            )
        return self._sessions

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """One unit of work: committed on exit, rolled back on error."""
        async with self._session_factory()() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            await session.commit()

    async def create_all(self) -> None:
        """Create the document tables if they are missing."""
        # Registers the ORM tables on Base.metadata.
        from broadcaster.calls import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessions = None


@lru_cache(maxsize=1)
def get_database_manager() -> DatabaseManager:
    """Process-wide manager for the configured database URL."""
    return DatabaseManager()


__all__ = [
    "Base",
    "DatabaseManager",
    "engine_options",
    "get_database_manager",
]
