"""SQL adapter for the achievement storage port.

Unlock inserts and progress writes are single ``INSERT ... ON CONFLICT``
statements against the (student_id, achievement_id) unique constraints, so
concurrent evaluations of the same student can never produce two rows.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.db.models import (
    Achievement,
    AchievementProgress,
    AchievementRevocation,
    StudentAchievement,
)
from vcoin.achievements import AchievementDefinition, Rarity, TriggerType

logger = logging.getLogger(__name__)

_PAIR = ["student_id", "achievement_id"]


def to_definition(row: Achievement) -> AchievementDefinition:
    """Convert an ORM row to the storage-independent definition."""
    return AchievementDefinition(
        id=row.id,
        name=row.name,
        description=row.description,
        category=row.category,
        rarity=Rarity(row.rarity),
        trigger_type=TriggerType(row.trigger_type),
        trigger_config=row.trigger_config,
        points=row.points,
        sort_order=row.sort_order,
        is_active=row.is_active,
    )


def _dialect_insert(db: AsyncSession):  # type: ignore[no-untyped-def]
    """Pick the dialect ``insert`` construct that supports ON CONFLICT."""
    if db.get_bind().dialect.name == "postgresql":
        return postgresql.insert
    return sqlite.insert


class SqlAchievementStore:
    """``AchievementStore`` backed by one async session.

    The caller owns the session and its transaction.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def list_active_automatic(self) -> list[AchievementDefinition]:
        result = await self._db.execute(
            select(Achievement)
            .where(
                Achievement.is_active.is_(True),
                Achievement.trigger_type == TriggerType.AUTOMATIC.value,
            )
            .order_by(Achievement.category, Achievement.sort_order, Achievement.points)
        )
        return [to_definition(row) for row in result.scalars().all()]

    async def get_achievement(self, achievement_id: int) -> AchievementDefinition | None:
        row = await self._db.get(Achievement, achievement_id)
        return to_definition(row) if row is not None else None

    async def is_unlocked(self, student_id: int, achievement_id: int) -> bool:
        result = await self._db.execute(
            select(StudentAchievement.id).where(
                StudentAchievement.student_id == student_id,
                StudentAchievement.achievement_id == achievement_id,
            )
        )
        return result.scalar_one_or_none() is not None

    async def try_insert_unlock(
        self, student_id: int, achievement_id: int, metadata: dict[str, Any]
    ) -> bool:
        table = StudentAchievement.__table__
        insert = _dialect_insert(self._db)
        stmt = (
            insert(table)
            .values(
                student_id=student_id,
                achievement_id=achievement_id,
                unlocked_at=datetime.now(UTC),
                seen=False,
                celebration_shown=False,
                metadata=metadata,
            )
            .on_conflict_do_nothing(index_elements=_PAIR)
            .returning(table.c.id)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def delete_unlock(self, student_id: int, achievement_id: int) -> bool:
        result = await self._db.execute(
            delete(StudentAchievement).where(
                StudentAchievement.student_id == student_id,
                StudentAchievement.achievement_id == achievement_id,
            )
        )
        return bool(result.rowcount)  # type: ignore[attr-defined]

    async def upsert_progress(
        self, student_id: int, achievement_id: int, current_value: float
    ) -> None:
        table = AchievementProgress.__table__
        insert = _dialect_insert(self._db)
        stmt = insert(table).values(
            student_id=student_id,
            achievement_id=achievement_id,
            current_value=current_value,
            last_updated=datetime.now(UTC),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=_PAIR,
            set_={
                "current_value": stmt.excluded.current_value,
                "last_updated": stmt.excluded.last_updated,
            },
        )
        await self._db.execute(stmt)

    async def is_revoked(self, student_id: int, achievement_id: int) -> bool:
        result = await self._db.execute(
            select(AchievementRevocation.id).where(
                AchievementRevocation.student_id == student_id,
                AchievementRevocation.achievement_id == achievement_id,
            )
        )
        return result.scalar_one_or_none() is not None

    async def add_revocation(
        self, student_id: int, achievement_id: int, revoked_by: str | None
    ) -> None:
        table = AchievementRevocation.__table__
        insert = _dialect_insert(self._db)
        stmt = insert(table).values(
            student_id=student_id,
            achievement_id=achievement_id,
            revoked_by=revoked_by,
            revoked_at=datetime.now(UTC),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=_PAIR,
            set_={"revoked_by": stmt.excluded.revoked_by, "revoked_at": stmt.excluded.revoked_at},
        )
        await self._db.execute(stmt)

    async def clear_revocation(self, student_id: int, achievement_id: int) -> bool:
        result = await self._db.execute(
            delete(AchievementRevocation).where(
                AchievementRevocation.student_id == student_id,
                AchievementRevocation.achievement_id == achievement_id,
            )
        )
        cleared = bool(result.rowcount)  # type: ignore[attr-defined]
        if cleared:
            logger.info(
                "Cleared revocation tombstone for student %s, achievement %s",
                student_id,
                achievement_id,
            )
        return cleared
