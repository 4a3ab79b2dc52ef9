"""Assemble the engine from SQL adapters and settings."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.api.config import Settings
from backend.api.services.achievement_batch import BatchRunner
from backend.api.services.achievement_engine import (
    MetricsCalculator,
    RevokePolicy,
    UnlockManager,
    today_in,
)
from backend.api.services.achievement_store import SqlAchievementStore
from backend.api.services.investment_ledger import (
    ClassBalanceProvider,
    SqlInvestmentLedger,
    SqlStudentRoster,
)


def build_unlock_manager(db: AsyncSession, settings: Settings) -> UnlockManager:
    """Unlock manager whose reads and writes all go through ``db``."""
    metrics = MetricsCalculator(
        SqlInvestmentLedger(db),
        ClassBalanceProvider(db, default_rate=settings.default_monthly_interest_rate),
        today=today_in(settings.achievement_timezone),
    )
    return UnlockManager(
        SqlAchievementStore(db),
        metrics,
        revoke_policy=RevokePolicy(settings.revoke_policy),
        savepoint=db.begin_nested,
    )


def unlock_manager_scope(
    session_factory: async_sessionmaker[AsyncSession], settings: Settings
) -> AbstractAsyncContextManager[UnlockManager]:
    """One session and transaction per student; rolled back if evaluation fails."""

    @asynccontextmanager
    async def _scope() -> AsyncIterator[UnlockManager]:
        async with session_factory() as session:
            try:
                yield build_unlock_manager(session, settings)
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return _scope()


def build_batch_runner(
    session_factory: async_sessionmaker[AsyncSession], settings: Settings
) -> BatchRunner:
    return BatchRunner(
        SqlStudentRoster(session_factory),
        lambda: unlock_manager_scope(session_factory, settings),
        concurrency=settings.batch_concurrency,
    )
