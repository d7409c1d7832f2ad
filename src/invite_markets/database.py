"""Async database lifecycle owned by the application entry point.

The ``Database`` object is created and connected in the FastAPI lifespan,
stored on ``app.state`` and handed to request handlers through ``get_db``.
Tests construct their own instance against an in-memory SQLite engine.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import HTTPException, Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)


class Database:
    """Explicitly initialised engine + session factory."""

    def __init__(self, url: str, **engine_kwargs) -> None:
        self.url = url
        self._engine_kwargs = engine_kwargs
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database is not connected")
        return self._engine

    def connect(self) -> None:
        if self._engine is not None:
            return
        self._engine = create_async_engine(self.url, **self._engine_kwargs)
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def dispose(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._session_factory = None

    def session(self) -> AsyncSession:
        if self._session_factory is None:
            raise RuntimeError("Database is not connected")
        return self._session_factory()


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """Yield one session per request from the application's Database."""
    database: Database | None = getattr(request.app.state, "database", None)
    if database is None:
        raise HTTPException(status_code=503, detail="Database unavailable")
    async with database.session() as session:
        yield session
