"""Achievement catalog: definitions CRUD and per-student read models."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.db.models import (
    Achievement,
    AchievementProgress,
    Student,
    StudentAchievement,
)
from vcoin.achievements import (
    ACHIEVEMENT_CATEGORIES,
    RARITY_ORDER,
    SEED_ACHIEVEMENTS,
    Rarity,
    TriggerType,
    progress_percentage,
)
from vcoin.triggers import parse_trigger_config

logger = logging.getLogger(__name__)


class AchievementInUseError(Exception):
    """Raised when deleting a definition that students have already unlocked."""


def _achievement_dict(defn: Achievement) -> dict[str, Any]:
    return {
        "id": defn.id,
        "name": defn.name,
        "description": defn.description,
        "category": defn.category,
        "rarity": defn.rarity,
        "trigger_type": defn.trigger_type,
        "trigger_config": defn.trigger_config,
        "points": defn.points,
        "sort_order": defn.sort_order,
        "is_active": defn.is_active,
    }


def _normalise_definition(data: dict[str, Any]) -> dict[str, Any]:
    """Validate enums and the trigger config. Raises ValueError on bad input."""
    out = dict(data)
    if "rarity" in out:
        out["rarity"] = Rarity(out["rarity"]).value
    if "trigger_type" in out:
        out["trigger_type"] = TriggerType(out["trigger_type"]).value

    trigger_type = out.get("trigger_type")
    if trigger_type == TriggerType.MANUAL.value:
        out["trigger_config"] = None
    elif trigger_type == TriggerType.AUTOMATIC.value or out.get("trigger_config") is not None:
        out["trigger_config"] = parse_trigger_config(out.get("trigger_config")).to_config()
    return out


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------


async def seed_achievements(db: AsyncSession) -> int:
    """Insert seed definitions whose name does not exist yet. Returns the count added."""
    existing = await db.execute(select(Achievement.name))
    existing_names = {row[0] for row in existing.all()}

    added = 0
    for defn in SEED_ACHIEVEMENTS:
        if defn["name"] not in existing_names:
            db.add(Achievement(**_normalise_definition(dict(defn))))
            added += 1

    await db.flush()
    if added:
        logger.info("Seeded %d achievement definition(s)", added)
    return added


async def list_achievements(db: AsyncSession, active_only: bool = False) -> list[dict[str, Any]]:
    stmt = select(Achievement).order_by(
        Achievement.category, Achievement.sort_order, Achievement.points
    )
    if active_only:
        stmt = stmt.where(Achievement.is_active.is_(True))
    result = await db.execute(stmt)
    return [_achievement_dict(a) for a in result.scalars().all()]


async def get_achievement(db: AsyncSession, achievement_id: int) -> dict[str, Any] | None:
    defn = await db.get(Achievement, achievement_id)
    return _achievement_dict(defn) if defn is not None else None


async def create_achievement(db: AsyncSession, data: dict[str, Any]) -> dict[str, Any]:
    defn = Achievement(**_normalise_definition(data))
    db.add(defn)
    await db.flush()
    await db.refresh(defn)
    logger.info("Created achievement %s (%s)", defn.id, defn.name)
    return _achievement_dict(defn)


async def update_achievement(
    db: AsyncSession, achievement_id: int, changes: dict[str, Any]
) -> dict[str, Any] | None:
    defn = await db.get(Achievement, achievement_id)
    if defn is None:
        return None

    merged = {"trigger_type": defn.trigger_type, **changes}
    if "trigger_config" not in changes and merged["trigger_type"] == TriggerType.AUTOMATIC.value:
        merged["trigger_config"] = defn.trigger_config
    for key, value in _normalise_definition(merged).items():
        setattr(defn, key, value)

    await db.flush()
    await db.refresh(defn)
    return _achievement_dict(defn)


async def delete_achievement(db: AsyncSession, achievement_id: int) -> bool:
    """Delete a definition. Refuses (never cascades) while any unlock references it."""
    defn = await db.get(Achievement, achievement_id)
    if defn is None:
        return False

    result = await db.execute(
        select(func.count())
        .select_from(StudentAchievement)
        .where(StudentAchievement.achievement_id == achievement_id)
    )
    if (result.scalar() or 0) > 0:
        raise AchievementInUseError(
            f"Cannot delete achievement {achievement_id}: it has been unlocked by students"
        )

    await db.delete(defn)
    await db.flush()
    return True


# ---------------------------------------------------------------------------
# Per-student views
# ---------------------------------------------------------------------------


async def student_exists(db: AsyncSession, student_id: int) -> bool:
    return await db.get(Student, student_id) is not None


async def get_student_achievements(db: AsyncSession, student_id: int) -> list[dict[str, Any]]:
    """All active achievements with unlock status and progress; unlocked first."""
    defn_result = await db.execute(
        select(Achievement)
        .where(Achievement.is_active.is_(True))
        .order_by(Achievement.category, Achievement.sort_order, Achievement.points)
    )
    definitions = list(defn_result.scalars().all())

    ua_result = await db.execute(
        select(StudentAchievement).where(StudentAchievement.student_id == student_id)
    )
    unlocked_map = {ua.achievement_id: ua for ua in ua_result.scalars().all()}

    progress_result = await db.execute(
        select(AchievementProgress.achievement_id, AchievementProgress.current_value).where(
            AchievementProgress.student_id == student_id
        )
    )
    progress_map: dict[int, float] = {row[0]: row[1] for row in progress_result.all()}

    achievements: list[dict[str, Any]] = []
    for defn in definitions:
        ua = unlocked_map.get(defn.id)
        current = progress_map.get(defn.id, 0.0)
        config = defn.trigger_config or {}
        required = config.get("value")
        achievements.append(
            {
                **_achievement_dict(defn),
                "unlocked": ua is not None,
                "unlocked_at": ua.unlocked_at.isoformat() if ua else None,
                "seen": ua.seen if ua else False,
                "celebration_shown": ua.celebration_shown if ua else False,
                "current_value": current,
                "required_value": required,
                "progress": progress_percentage(current, required, config.get("operator", ">=")),
            }
        )

    achievements.sort(key=lambda a: not a["unlocked"])
    return achievements


async def get_recent_achievements(db: AsyncSession, student_id: int) -> list[dict[str, Any]]:
    """Return unseen unlocks (newest first) and mark them as seen."""
    join_result = await db.execute(
        select(StudentAchievement, Achievement)
        .join(Achievement, StudentAchievement.achievement_id == Achievement.id)
        .where(StudentAchievement.student_id == student_id, StudentAchievement.seen.is_(False))
        .order_by(StudentAchievement.unlocked_at.desc())
    )
    rows = join_result.all()

    achievements: list[dict[str, Any]] = []
    for row in rows:
        ua: StudentAchievement = row[0]
        defn: Achievement = row[1]
        achievements.append(
            {
                **_achievement_dict(defn),
                "unlocked": True,
                "unlocked_at": ua.unlocked_at.isoformat(),
                "seen": False,
                "celebration_shown": ua.celebration_shown,
            }
        )
        ua.seen = True

    await db.flush()
    return achievements


async def mark_celebration_shown(db: AsyncSession, student_id: int, achievement_id: int) -> bool:
    result = await db.execute(
        update(StudentAchievement)
        .where(
            StudentAchievement.student_id == student_id,
            StudentAchievement.achievement_id == achievement_id,
        )
        .values(celebration_shown=True)
    )
    return bool(result.rowcount)  # type: ignore[attr-defined]


async def get_student_stats(db: AsyncSession, student_id: int) -> dict[str, Any]:
    """Points and unlock counts, broken down by category and rarity."""
    totals = await db.execute(
        select(func.coalesce(func.sum(Achievement.points), 0), func.count(StudentAchievement.id))
        .select_from(StudentAchievement)
        .join(Achievement, StudentAchievement.achievement_id == Achievement.id)
        .where(StudentAchievement.student_id == student_id)
    )
    total_points, unlocked_count = totals.one()

    available = await db.execute(
        select(func.count()).select_from(Achievement).where(Achievement.is_active.is_(True))
    )

    by_category = await db.execute(
        select(Achievement.category, func.count())
        .select_from(StudentAchievement)
        .join(Achievement, StudentAchievement.achievement_id == Achievement.id)
        .where(StudentAchievement.student_id == student_id)
        .group_by(Achievement.category)
    )
    by_rarity = await db.execute(
        select(Achievement.rarity, func.count())
        .select_from(StudentAchievement)
        .join(Achievement, StudentAchievement.achievement_id == Achievement.id)
        .where(StudentAchievement.student_id == student_id)
        .group_by(Achievement.rarity)
    )

    return {
        "total_points": int(total_points or 0),
        "achievements_unlocked": int(unlocked_count or 0),
        "achievements_total": int(available.scalar() or 0),
        "by_category": {
            **dict.fromkeys(ACHIEVEMENT_CATEGORIES, 0),
            **{row[0]: row[1] for row in by_category.all()},
        },
        "by_rarity": {
            **dict.fromkeys(RARITY_ORDER, 0),
            **{row[0]: row[1] for row in by_rarity.all()},
        },
    }


async def get_unlock_summary(db: AsyncSession, since: datetime) -> dict[str, Any]:
    """Roster-wide unlock activity since ``since`` (weekly report)."""
    students = await db.execute(select(func.count()).select_from(Student))
    recent = await db.execute(
        select(Achievement.rarity, func.count(), func.coalesce(func.sum(Achievement.points), 0))
        .select_from(StudentAchievement)
        .join(Achievement, StudentAchievement.achievement_id == Achievement.id)
        .where(StudentAchievement.unlocked_at >= since)
        .group_by(Achievement.rarity)
    )
    rows = recent.all()
    return {
        "since": since.isoformat(),
        "student_count": int(students.scalar() or 0),
        "unlocks": sum(row[1] for row in rows),
        "points_awarded": int(sum(row[2] for row in rows)),
        "by_rarity": {row[0]: row[1] for row in rows},
    }
