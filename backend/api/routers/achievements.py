"""Student-facing achievement endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.db.database import get_db
from backend.api.dependencies import AuthenticatedAdmin, get_current_admin, get_unlock_manager
from backend.api.schemas.achievement import (
    AchievementSchema,
    CheckRequest,
    CheckResponse,
    NewAchievementsResponse,
    StudentAchievementListResponse,
    StudentAchievementSchema,
    StudentStatsResponse,
)
from backend.api.services.achievement_catalog import (
    get_recent_achievements,
    get_student_achievements,
    get_student_stats,
    mark_celebration_shown,
    student_exists,
)
from backend.api.services.achievement_engine import UnlockManager
from vcoin.achievements import UnlockSource

router = APIRouter()


async def _require_student(db: AsyncSession, student_id: int) -> None:
    if not await student_exists(db, student_id):
        raise HTTPException(status_code=404, detail=f"Student {student_id} not found")


@router.get("/{student_id}/achievements", response_model=StudentAchievementListResponse)
async def list_student_achievements(
    student_id: int,
    current_admin: Annotated[AuthenticatedAdmin, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> StudentAchievementListResponse:
    """Return all active achievements with unlock status and progress."""
    await _require_student(db, student_id)
    rows = await get_student_achievements(db, student_id)
    return StudentAchievementListResponse(
        student_id=student_id,
        achievements=[StudentAchievementSchema(**r) for r in rows],
    )


@router.get("/{student_id}/achievements/recent", response_model=NewAchievementsResponse)
async def recent_achievements(
    student_id: int,
    current_admin: Annotated[AuthenticatedAdmin, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> NewAchievementsResponse:
    """Return newly unlocked achievements and mark them as seen."""
    await _require_student(db, student_id)
    rows = await get_recent_achievements(db, student_id)
    return NewAchievementsResponse(
        newly_unlocked=[StudentAchievementSchema(**r) for r in rows],
    )


@router.post("/{student_id}/achievements/{achievement_id}/celebrated")
async def celebrated(
    student_id: int,
    achievement_id: int,
    current_admin: Annotated[AuthenticatedAdmin, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> dict[str, bool]:
    """Record that the unlock animation has been shown."""
    if not await mark_celebration_shown(db, student_id, achievement_id):
        raise HTTPException(status_code=404, detail="Achievement not unlocked by student")
    return {"celebration_shown": True}


@router.get("/{student_id}/achievements/stats", response_model=StudentStatsResponse)
async def student_stats(
    student_id: int,
    current_admin: Annotated[AuthenticatedAdmin, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> StudentStatsResponse:
    await _require_student(db, student_id)
    return StudentStatsResponse(**await get_student_stats(db, student_id))


@router.post("/{student_id}/achievements/check", response_model=CheckResponse)
async def check_achievements(
    student_id: int,
    current_admin: Annotated[AuthenticatedAdmin, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    manager: Annotated[UnlockManager, Depends(get_unlock_manager)],
    body: Annotated[CheckRequest | None, Body()] = None,
) -> CheckResponse:
    """Investment-event hook: evaluate the student now and return new unlocks.

    Evaluation failures are logged and reported as no new unlocks so the
    caller's investment flow is never blocked.
    """
    await _require_student(db, student_id)
    unlocked = await manager.check_student_safely(
        student_id,
        UnlockSource.INVESTMENT,
        investment_id=body.investment_id if body else None,
    )
    return CheckResponse(
        student_id=student_id,
        newly_unlocked=[AchievementSchema(**a.as_dict()) for a in unlocked],
    )
