"""Storage ports consumed by the achievement engine.

The engine depends only on these protocols; the SQL adapters live in
``achievement_store`` and ``investment_ledger`` and tests use in-memory fakes.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol

from vcoin.achievements import AchievementDefinition
from vcoin.metrics import InvestmentRecord


class InvestmentLedger(Protocol):
    async def list_investments(self, student_id: int) -> list[InvestmentRecord]:
        """Return the student's investments ordered by date."""
        ...


class BalanceProvider(Protocol):
    async def current_balance(
        self, student_id: int, investments: Sequence[InvestmentRecord]
    ) -> float:
        """Return the student's current balance including accrued interest."""
        ...


class StudentRoster(Protocol):
    async def list_student_ids(self, class_id: int | None = None) -> list[int]:
        """Return student ids in id order, limited to one class when given."""
        ...


class AchievementStore(Protocol):
    async def list_active_automatic(self) -> list[AchievementDefinition]: ...

    async def get_achievement(self, achievement_id: int) -> AchievementDefinition | None: ...

    async def is_unlocked(self, student_id: int, achievement_id: int) -> bool: ...

    async def try_insert_unlock(
        self, student_id: int, achievement_id: int, metadata: dict[str, Any]
    ) -> bool:
        """Insert the unlock row unless one exists. Returns True when inserted."""
        ...

    async def delete_unlock(self, student_id: int, achievement_id: int) -> bool: ...

    async def upsert_progress(
        self, student_id: int, achievement_id: int, current_value: float
    ) -> None: ...

    async def is_revoked(self, student_id: int, achievement_id: int) -> bool: ...

    async def add_revocation(
        self, student_id: int, achievement_id: int, revoked_by: str | None
    ) -> None: ...

    async def clear_revocation(self, student_id: int, achievement_id: int) -> bool: ...
