"""Async database engine and session factories."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from backend.api.config import Settings

_settings = Settings()


def _engine_options(database_url: str, debug: bool) -> dict[str, Any]:
    """Pool options for server databases; SQLite (local runs) keeps its default pool."""
    options: dict[str, Any] = {"echo": debug}
    if make_url(database_url).get_backend_name() != "sqlite":
        options.update(pool_size=5, max_overflow=10, pool_pre_ping=True)
    return options


async_engine = create_async_engine(
    _settings.database_url, **_engine_options(_settings.database_url, _settings.debug)
)

async_session_factory = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a request-scoped session; committed on success, rolled back on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for work that opens one session per unit (batch runs, roster reads)."""
    return async_session_factory
