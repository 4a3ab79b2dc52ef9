"""Admin endpoints: achievement definitions, manual awards and batch runs."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.db.database import get_db
from backend.api.dependencies import (
    AuthenticatedAdmin,
    get_batch_runner,
    get_current_admin,
    get_unlock_manager,
)
from backend.api.schemas.achievement import (
    AchievementCreate,
    AchievementListResponse,
    AchievementSchema,
    AchievementUpdate,
    AwardRequest,
    BatchRunResponse,
    StudentMetricsResponse,
    TriggerVerdictSchema,
)
from backend.api.services import achievement_catalog as catalog
from backend.api.services.achievement_batch import BatchRunner
from backend.api.services.achievement_engine import UnlockManager

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=AchievementListResponse)
async def list_definitions(
    current_admin: Annotated[AuthenticatedAdmin, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    active_only: bool = False,
) -> AchievementListResponse:
    rows = await catalog.list_achievements(db, active_only=active_only)
    return AchievementListResponse(achievements=[AchievementSchema(**r) for r in rows])


@router.post("", response_model=AchievementSchema, status_code=status.HTTP_201_CREATED)
async def create_definition(
    body: AchievementCreate,
    current_admin: Annotated[AuthenticatedAdmin, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> AchievementSchema:
    """Create an achievement. Automatic ones need a valid ``trigger_config``."""
    row = await catalog.create_achievement(db, body.model_dump(mode="json"))
    return AchievementSchema(**row)


@router.patch("/{achievement_id}", response_model=AchievementSchema)
async def update_definition(
    achievement_id: int,
    body: AchievementUpdate,
    current_admin: Annotated[AuthenticatedAdmin, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> AchievementSchema:
    row = await catalog.update_achievement(
        db, achievement_id, body.model_dump(mode="json", exclude_unset=True)
    )
    if row is None:
        raise HTTPException(status_code=404, detail=f"Achievement {achievement_id} not found")
    return AchievementSchema(**row)


@router.delete("/{achievement_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_definition(
    achievement_id: int,
    current_admin: Annotated[AuthenticatedAdmin, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> None:
    """Delete a definition nobody has unlocked yet (409 otherwise)."""
    try:
        deleted = await catalog.delete_achievement(db, achievement_id)
    except catalog.AchievementInUseError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Achievement {achievement_id} not found")


@router.post("/{achievement_id}/award", response_model=AchievementSchema)
async def award(
    achievement_id: int,
    body: AwardRequest,
    current_admin: Annotated[AuthenticatedAdmin, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    manager: Annotated[UnlockManager, Depends(get_unlock_manager)],
) -> AchievementSchema:
    """Award a manual achievement. Awarding twice is a no-op."""
    if not await catalog.student_exists(db, body.student_id):
        raise HTTPException(status_code=404, detail=f"Student {body.student_id} not found")
    if await catalog.get_achievement(db, achievement_id) is None:
        raise HTTPException(status_code=404, detail=f"Achievement {achievement_id} not found")

    achievement = await manager.unlock_manual(
        body.student_id, achievement_id, admin_id=current_admin.admin_id
    )
    if achievement is None:
        raise HTTPException(
            status_code=409, detail="Only manual achievements can be awarded by hand"
        )
    return AchievementSchema(**achievement.as_dict())


@router.delete("/{achievement_id}/award/{student_id}")
async def revoke(
    achievement_id: int,
    student_id: int,
    current_admin: Annotated[AuthenticatedAdmin, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    manager: Annotated[UnlockManager, Depends(get_unlock_manager)],
    suppress_regrant: Annotated[bool | None, Query()] = None,
) -> dict[str, bool]:
    """Remove an unlock of any trigger type.

    ``suppress_regrant`` overrides the configured revoke policy for this call.
    """
    if not await catalog.student_exists(db, student_id):
        raise HTTPException(status_code=404, detail=f"Student {student_id} not found")
    if await catalog.get_achievement(db, achievement_id) is None:
        raise HTTPException(status_code=404, detail=f"Achievement {achievement_id} not found")

    removed = await manager.revoke(
        student_id,
        achievement_id,
        admin_id=current_admin.admin_id,
        suppress_regrant=suppress_regrant,
    )
    return {"removed": removed}


@router.delete("/{achievement_id}/revocations/{student_id}")
async def clear_revocation(
    achievement_id: int,
    student_id: int,
    current_admin: Annotated[AuthenticatedAdmin, Depends(get_current_admin)],
    manager: Annotated[UnlockManager, Depends(get_unlock_manager)],
) -> dict[str, bool]:
    """Allow automatic re-unlock after a suppressing revoke."""
    return {"cleared": await manager.clear_revocation(student_id, achievement_id)}


@router.post("/process", response_model=BatchRunResponse)
async def process_all(
    current_admin: Annotated[AuthenticatedAdmin, Depends(get_current_admin)],
    runner: Annotated[BatchRunner, Depends(get_batch_runner)],
    class_id: int | None = None,
) -> BatchRunResponse:
    """Evaluate every student now, or only the students of ``class_id``."""
    logger.info(
        "Batch run requested by admin %s (class_id=%s)", current_admin.admin_id, class_id
    )
    if class_id is None:
        result = await runner.run_for_all_students()
    else:
        result = await runner.run_for_class(class_id)
    return BatchRunResponse(**result.summary())  # type: ignore[arg-type]


@router.get("/students/{student_id}/metrics", response_model=StudentMetricsResponse)
async def student_metrics(
    student_id: int,
    current_admin: Annotated[AuthenticatedAdmin, Depends(get_current_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    manager: Annotated[UnlockManager, Depends(get_unlock_manager)],
) -> StudentMetricsResponse:
    """Show what the engine sees for a student without unlocking anything."""
    if not await catalog.student_exists(db, student_id):
        raise HTTPException(status_code=404, detail=f"Student {student_id} not found")

    metrics, verdicts = await manager.inspect_student(student_id)
    return StudentMetricsResponse(
        student_id=student_id,
        metrics=metrics,
        triggers=[
            TriggerVerdictSchema(
                achievement_id=achievement.id,
                name=achievement.name,
                trigger_config=achievement.trigger_config,
                holds=evaluation.holds,
                current_value=evaluation.current_value,
                unlocked=unlocked,
            )
            for achievement, evaluation, unlocked in verdicts
        ],
    )
