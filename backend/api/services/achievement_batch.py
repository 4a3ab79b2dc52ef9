"""Roster-wide achievement processing.

Every student is evaluated in a unit of work of their own so that one bad
record (or a storage failure) costs that student only; the rest of the roster
is still evaluated and the failure shows up in ``error_count``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field

from backend.api.services.achievement_engine import UnlockManager
from backend.api.services.ports import StudentRoster
from vcoin.achievements import AchievementDefinition, UnlockSource

logger = logging.getLogger(__name__)

ManagerScope = Callable[[], AbstractAsyncContextManager[UnlockManager]]


@dataclass
class BatchResult:
    processed_count: int = 0
    error_count: int = 0
    unlocked: dict[int, list[AchievementDefinition]] = field(default_factory=dict)
    duration_s: float = 0.0

    @property
    def unlock_count(self) -> int:
        return sum(len(v) for v in self.unlocked.values())

    def students_unlocking(self, metric: str) -> list[int]:
        """Students whose new unlocks include an achievement on ``metric``."""
        return [
            student_id
            for student_id, achievements in self.unlocked.items()
            if any((a.trigger_config or {}).get("metric") == metric for a in achievements)
        ]

    def summary(self) -> dict[str, object]:
        return {
            "processed_count": self.processed_count,
            "error_count": self.error_count,
            "unlocked": {
                student_id: [a.name for a in achievements]
                for student_id, achievements in self.unlocked.items()
            },
            "duration_s": round(self.duration_s, 3),
        }


class BatchRunner:
    def __init__(
        self,
        roster: StudentRoster,
        manager_scope: ManagerScope,
        concurrency: int = 1,
    ) -> None:
        self._roster = roster
        self._manager_scope = manager_scope
        self._concurrency = max(1, concurrency)

    async def _process_one(
        self, student_id: int, source: UnlockSource, result: BatchResult
    ) -> None:
        try:
            async with self._manager_scope() as manager:
                unlocked = await manager.process_student(student_id, source)
        except Exception:
            logger.exception("Error processing achievements for student %s", student_id)
            result.error_count += 1
            return

        result.processed_count += 1
        if unlocked:
            result.unlocked[student_id] = unlocked

    async def run_for_all_students(
        self, source: UnlockSource = UnlockSource.SCHEDULED_BATCH
    ) -> BatchResult:
        """Evaluate every student on the roster and report aggregate counters."""
        return await self._run(await self._roster.list_student_ids(), source)

    async def run_for_class(
        self, class_id: int, source: UnlockSource = UnlockSource.CLASS_END
    ) -> BatchResult:
        """Evaluate the students of one class, e.g. when the class ends."""
        student_ids = await self._roster.list_student_ids(class_id=class_id)
        logger.info("Class %s: %d student(s) to evaluate", class_id, len(student_ids))
        return await self._run(student_ids, source)

    async def _run(self, student_ids: list[int], source: UnlockSource) -> BatchResult:
        started = time.perf_counter()
        logger.info(
            "Starting achievement processing for %d students (source=%s, concurrency=%d)",
            len(student_ids),
            source.value,
            self._concurrency,
        )

        result = BatchResult()
        if self._concurrency == 1:
            for student_id in student_ids:
                await self._process_one(student_id, source, result)
        else:
            semaphore = asyncio.Semaphore(self._concurrency)

            async def _bounded(student_id: int) -> None:
                async with semaphore:
                    await self._process_one(student_id, source, result)

            await asyncio.gather(*(_bounded(sid) for sid in student_ids))

        result.duration_s = time.perf_counter() - started
        logger.info(
            "Achievement processing finished in %.2fs: processed=%d errors=%d unlocks=%d",
            result.duration_s,
            result.processed_count,
            result.error_count,
            result.unlock_count,
        )
        return result

    async def run_time_based(self) -> BatchResult:
        """Daily pass for time-sensitive metrics (streaks decay without new investments)."""
        result = await self.run_for_all_students(UnlockSource.TIME_BASED)
        streakers = result.students_unlocking("streak_days")
        if streakers:
            logger.info("Students reaching streak milestones: %s", streakers)
        return result

    async def health_check(self) -> tuple[bool, int]:
        """Confirm the roster is reachable. Returns (healthy, student count)."""
        try:
            student_ids = await self._roster.list_student_ids()
        except Exception:
            logger.exception("Achievement health check failed")
            return False, 0
        return True, len(student_ids)
