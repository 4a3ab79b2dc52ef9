"""Achievement definitions: rarities, trigger types, categories and seed badges."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import StrEnum
from typing import Any

from vcoin.triggers import Comparator


class Rarity(StrEnum):
    """Display rarity of a badge. Never evaluated by the engine."""

    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


class TriggerType(StrEnum):
    """How an achievement gets unlocked."""

    AUTOMATIC = "automatic"
    MANUAL = "manual"


class UnlockSource(StrEnum):
    """What caused an unlock row to be written (stored in its metadata)."""

    INVESTMENT = "investment"
    SCHEDULED_BATCH = "scheduled_batch"
    TIME_BASED = "time_based"
    CLASS_END = "class_end"
    MANUAL = "manual"


ACHIEVEMENT_CATEGORIES: list[str] = ["academic", "consistency", "milestone", "special"]

# Sort weight for rarities, rarest last
RARITY_ORDER: dict[str, int] = {r.value: i for i, r in enumerate(Rarity)}


@dataclass(frozen=True)
class AchievementDefinition:
    """Storage-independent view of an achievement row."""

    id: int
    name: str
    description: str
    category: str
    rarity: Rarity
    trigger_type: TriggerType
    trigger_config: dict[str, Any] | None = None
    points: int = 0
    sort_order: int = 0
    is_active: bool = True

    @property
    def is_automatic(self) -> bool:
        return self.trigger_type is TriggerType.AUTOMATIC

    @property
    def required_value(self) -> float | None:
        """Threshold from the trigger config, used to render progress bars."""
        if not self.trigger_config:
            return None
        value = self.trigger_config.get("value")
        if isinstance(value, (int, float)):
            return float(value)
        return None

    def as_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["rarity"] = self.rarity.value
        out["trigger_type"] = self.trigger_type.value
        return out


def progress_percentage(
    current_value: float | None,
    required_value: float | None,
    operator: object = Comparator.GTE,
) -> float:
    """Percentage toward the threshold, capped at 100.

    Achievements without a numeric threshold (manual ones) report 0. For
    ``<`` and ``<=`` triggers there is no partial progress: 100 while the
    condition holds, 0 otherwise.
    """
    if current_value is None or required_value is None:
        return 0.0
    comparator = Comparator.from_symbol(operator) or Comparator.GTE
    if comparator in (Comparator.LT, Comparator.LTE):
        return 100.0 if comparator.apply(current_value, required_value) else 0.0
    if not required_value:
        return 0.0
    return round(min(100.0, current_value / required_value * 100), 1)


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

SEED_ACHIEVEMENTS: list[dict[str, object]] = [
    {
        "name": "First Investment",
        "description": "Make your first investment",
        "category": "milestone",
        "rarity": "common",
        "trigger_type": "automatic",
        "trigger_config": {"metric": "investment_count", "operator": ">=", "value": 1},
        "points": 10,
        "sort_order": 1,
    },
    {
        "name": "Regular Investor",
        "description": "Make 10 investments",
        "category": "milestone",
        "rarity": "rare",
        "trigger_type": "automatic",
        "trigger_config": {"metric": "investment_count", "operator": ">=", "value": 10},
        "points": 25,
        "sort_order": 2,
    },
    {
        "name": "Growing Wealth",
        "description": "Reach a balance of 1000",
        "category": "milestone",
        "rarity": "epic",
        "trigger_type": "automatic",
        "trigger_config": {"metric": "total_invested", "operator": ">=", "value": 1000},
        "points": 50,
        "sort_order": 3,
    },
    {
        "name": "On a Roll",
        "description": "Invest three days in a row",
        "category": "consistency",
        "rarity": "common",
        "trigger_type": "automatic",
        "trigger_config": {"metric": "streak_days", "operator": ">=", "value": 3},
        "points": 15,
        "sort_order": 1,
    },
    {
        "name": "Dedicated Saver",
        "description": "Invest seven days in a row",
        "category": "consistency",
        "rarity": "legendary",
        "trigger_type": "automatic",
        "trigger_config": {"metric": "streak_days", "operator": ">=", "value": 7},
        "points": 100,
        "sort_order": 2,
    },
    {
        "name": "Teacher's Pick",
        "description": "Awarded by your teacher for outstanding work",
        "category": "special",
        "rarity": "epic",
        "trigger_type": "manual",
        "trigger_config": None,
        "points": 40,
        "sort_order": 1,
    },
]
