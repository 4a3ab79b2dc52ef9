"""Achievement evaluation engine.

Computes a student's metrics once, evaluates every active automatic
achievement against that snapshot, records new unlocks idempotently and keeps
progress rows current. Also exposes the manual award/revoke operations.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager, nullcontext
from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any
from zoneinfo import ZoneInfo

from backend.api.services.ports import AchievementStore, BalanceProvider, InvestmentLedger
from vcoin.achievements import AchievementDefinition, TriggerType, UnlockSource
from vcoin.metrics import MetricsMap, compute_metrics
from vcoin.triggers import Evaluation, evaluate_config

logger = logging.getLogger(__name__)


class RevokePolicy(StrEnum):
    """What a revoke means for automatic achievements whose condition still holds.

    ``allow_regrant``: the next evaluation unlocks it again.
    ``suppress_regrant``: a tombstone blocks automatic re-unlock until cleared.
    """

    ALLOW_REGRANT = "allow_regrant"
    SUPPRESS_REGRANT = "suppress_regrant"


def today_in(tz_name: str) -> Callable[[], date]:
    """Return a callable giving the current calendar day in ``tz_name``."""
    tz = ZoneInfo(tz_name)
    return lambda: datetime.now(tz).date()


def _utcnow() -> datetime:
    return datetime.now(UTC)


class MetricsCalculator:
    """Loads a student's history and builds the metrics map."""

    def __init__(
        self,
        ledger: InvestmentLedger,
        balance: BalanceProvider,
        today: Callable[[], date] | None = None,
    ) -> None:
        self._ledger = ledger
        self._balance = balance
        self._today = today or today_in("UTC")

    async def compute(self, student_id: int) -> MetricsMap:
        investments = await self._ledger.list_investments(student_id)
        # No accrual lookup for an empty history
        balance = (
            await self._balance.current_balance(student_id, investments) if investments else 0.0
        )
        return compute_metrics(investments, balance, self._today())


class UnlockManager:
    def __init__(
        self,
        store: AchievementStore,
        metrics: MetricsCalculator,
        revoke_policy: RevokePolicy = RevokePolicy.ALLOW_REGRANT,
        clock: Callable[[], datetime] = _utcnow,
        savepoint: Callable[[], AbstractAsyncContextManager[Any]] | None = None,
    ) -> None:
        self._store = store
        self._metrics = metrics
        self._revoke_policy = revoke_policy
        self._clock = clock
        self._savepoint = savepoint or nullcontext

    # -- automatic path ------------------------------------------------------

    async def process_student(
        self,
        student_id: int,
        source: UnlockSource = UnlockSource.SCHEDULED_BATCH,
        investment_id: int | None = None,
    ) -> list[AchievementDefinition]:
        """Evaluate all active automatic achievements for one student.

        Returns only the achievements unlocked by this call. Storage errors
        propagate to the caller.
        """
        achievements = await self._store.list_active_automatic()
        if not achievements:
            return []

        metrics = await self._metrics.compute(student_id)

        newly_unlocked: list[AchievementDefinition] = []
        for achievement in achievements:
            result = evaluate_config(achievement.trigger_config, metrics)

            # A tombstone blocks re-unlock under either policy
            if result.holds and not await self._store.is_revoked(student_id, achievement.id):
                metadata: dict[str, Any] = {
                    "source": source.value,
                    "metric": (achievement.trigger_config or {}).get("metric"),
                    "trigger_value": result.current_value,
                    "timestamp": self._clock().isoformat(),
                }
                if investment_id is not None:
                    metadata["investment_id"] = investment_id
                if await self._store.try_insert_unlock(student_id, achievement.id, metadata):
                    newly_unlocked.append(achievement)

            await self._store.upsert_progress(student_id, achievement.id, result.current_value)

        if newly_unlocked:
            logger.info(
                "Student %s unlocked: %s", student_id, [a.name for a in newly_unlocked]
            )
        return newly_unlocked

    async def check_student_safely(
        self,
        student_id: int,
        source: UnlockSource = UnlockSource.INVESTMENT,
        investment_id: int | None = None,
    ) -> list[AchievementDefinition]:
        """Like ``process_student`` but never raises; failures yield no unlocks.

        The evaluation runs inside ``savepoint`` so a failure part way through
        leaves none of its writes behind in the caller's transaction.
        """
        try:
            async with self._savepoint():
                return await self.process_student(student_id, source, investment_id)
        except Exception:
            logger.exception("Achievement check failed for student %s", student_id)
            return []

    async def inspect_student(
        self, student_id: int
    ) -> tuple[MetricsMap, list[tuple[AchievementDefinition, Evaluation, bool]]]:
        """Metrics map plus each active automatic trigger's verdict. Writes nothing.

        Each entry is ``(achievement, evaluation, already_unlocked)``.
        """
        metrics = await self._metrics.compute(student_id)
        verdicts = [
            (
                achievement,
                evaluate_config(achievement.trigger_config, metrics),
                await self._store.is_unlocked(student_id, achievement.id),
            )
            for achievement in await self._store.list_active_automatic()
        ]
        return metrics, verdicts

    # -- manual path ---------------------------------------------------------

    async def unlock_manual(
        self, student_id: int, achievement_id: int, admin_id: str | None = None
    ) -> AchievementDefinition | None:
        """Award a manual achievement. Returns None for missing or automatic ones."""
        achievement = await self._store.get_achievement(achievement_id)
        if achievement is None or achievement.trigger_type is not TriggerType.MANUAL:
            logger.warning(
                "Manual unlock refused: achievement %s is missing or not manual",
                achievement_id,
            )
            return None

        metadata: dict[str, Any] = {
            "source": UnlockSource.MANUAL.value,
            "admin_id": admin_id,
            "timestamp": self._clock().isoformat(),
        }
        if await self._store.try_insert_unlock(student_id, achievement_id, metadata):
            logger.info(
                "Admin %s awarded %s to student %s", admin_id, achievement.name, student_id
            )
        await self._store.clear_revocation(student_id, achievement_id)
        return achievement

    async def revoke(
        self,
        student_id: int,
        achievement_id: int,
        admin_id: str | None = None,
        suppress_regrant: bool | None = None,
    ) -> bool:
        """Remove an unlock of any trigger type. Returns whether a row was deleted.

        ``suppress_regrant`` overrides the configured policy for this call.
        """
        if suppress_regrant is None:
            suppress_regrant = self._revoke_policy is RevokePolicy.SUPPRESS_REGRANT

        removed = await self._store.delete_unlock(student_id, achievement_id)
        if suppress_regrant:
            await self._store.add_revocation(student_id, achievement_id, admin_id)
        logger.info(
            "Revoked achievement %s for student %s (removed=%s, suppress_regrant=%s)",
            achievement_id,
            student_id,
            removed,
            suppress_regrant,
        )
        return removed

    async def clear_revocation(self, student_id: int, achievement_id: int) -> bool:
        return await self._store.clear_revocation(student_id, achievement_id)
