"""Pydantic schemas for achievement endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from vcoin.achievements import Rarity, TriggerType


class TriggerConfigSchema(BaseModel):
    """Flat trigger condition: one metric, one operator, one threshold."""

    metric: str = Field(..., min_length=1)
    operator: str = ">="
    value: float
    category_id: int | None = None


class AchievementSchema(BaseModel):
    """An achievement definition."""

    id: int
    name: str
    description: str
    category: str
    rarity: str
    trigger_type: str
    trigger_config: dict[str, Any] | None = None
    points: int
    sort_order: int = 0
    is_active: bool = True


class StudentAchievementSchema(AchievementSchema):
    """An achievement with a student's unlock status and progress."""

    unlocked: bool = False
    unlocked_at: str | None = None
    seen: bool = False
    celebration_shown: bool = False
    current_value: float = 0.0
    required_value: float | None = None
    progress: float = 0.0


class AchievementCreate(BaseModel):
    """Request body for creating an achievement."""

    name: str = Field(..., min_length=1, max_length=100)
    description: str = ""
    category: str = Field(..., min_length=1, max_length=50)
    rarity: Rarity = Rarity.COMMON
    trigger_type: TriggerType
    trigger_config: TriggerConfigSchema | None = None
    points: int = Field(default=0, ge=0)
    sort_order: int = 0
    is_active: bool = True


class AchievementUpdate(BaseModel):
    """Partial update; omitted fields are left unchanged."""

    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = None
    category: str | None = Field(default=None, min_length=1, max_length=50)
    rarity: Rarity | None = None
    trigger_type: TriggerType | None = None
    trigger_config: TriggerConfigSchema | None = None
    points: int | None = Field(default=None, ge=0)
    sort_order: int | None = None
    is_active: bool | None = None


class AchievementListResponse(BaseModel):
    achievements: list[AchievementSchema]


class StudentAchievementListResponse(BaseModel):
    student_id: int
    achievements: list[StudentAchievementSchema]


class NewAchievementsResponse(BaseModel):
    """Response for recently unlocked achievements."""

    newly_unlocked: list[StudentAchievementSchema]


class StudentStatsResponse(BaseModel):
    total_points: int
    achievements_unlocked: int
    achievements_total: int
    by_category: dict[str, int]
    by_rarity: dict[str, int]


class CheckRequest(BaseModel):
    """Body of the investment-event hook."""

    investment_id: int | None = None


class CheckResponse(BaseModel):
    student_id: int
    newly_unlocked: list[AchievementSchema]


class AwardRequest(BaseModel):
    student_id: int


class BatchRunResponse(BaseModel):
    processed_count: int
    error_count: int
    unlocked: dict[int, list[str]]
    duration_s: float


class TriggerVerdictSchema(BaseModel):
    achievement_id: int
    name: str
    trigger_config: dict[str, Any] | None = None
    holds: bool
    current_value: float
    unlocked: bool


class StudentMetricsResponse(BaseModel):
    """Computed metrics and trigger verdicts for one student (admin debugging)."""

    student_id: int
    metrics: dict[str, float]
    triggers: list[TriggerVerdictSchema]
