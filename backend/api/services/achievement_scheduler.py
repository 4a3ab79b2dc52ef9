"""Background achievement processing.

A single loop wakes every ``interval`` and runs the roster batch. Daily
(time-based metrics) and weekly (report) jobs ride the same loop behind
gates, so there is no separate cron. A failing job is logged and the loop
keeps going.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.api.services.achievement_batch import BatchRunner
from backend.api.services.achievement_catalog import get_unlock_summary

logger = logging.getLogger(__name__)

WeeklyReport = Callable[[datetime], Awaitable[dict[str, Any]]]


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class PeriodGate:
    """Lets a job through at most once per ``window``."""

    window: timedelta
    last_run_at: datetime | None = None

    def due(self, now: datetime) -> bool:
        return self.last_run_at is None or now - self.last_run_at >= self.window

    def mark(self, now: datetime) -> None:
        self.last_run_at = now


def weekly_report_for(session_factory: async_sessionmaker[AsyncSession]) -> WeeklyReport:
    """Weekly unlock summary read through its own session."""

    async def _report(now: datetime) -> dict[str, Any]:
        async with session_factory() as session:
            summary = await get_unlock_summary(session, now - timedelta(days=7))
        logger.info(
            "Weekly achievement report: %d unlock(s), %d point(s) across %d student(s)",
            summary["unlocks"],
            summary["points_awarded"],
            summary["student_count"],
        )
        return summary

    return _report


@dataclass
class AchievementScheduler:
    runner: BatchRunner
    weekly_report: WeeklyReport | None = None
    interval: timedelta = timedelta(minutes=5)
    clock: Callable[[], datetime] = _utcnow
    daily_gate: PeriodGate = field(default_factory=lambda: PeriodGate(timedelta(days=1)))
    weekly_gate: PeriodGate = field(default_factory=lambda: PeriodGate(timedelta(days=7)))
    _stop: asyncio.Event = field(default_factory=asyncio.Event, init=False, repr=False)
    _task: asyncio.Task[None] | None = field(default=None, init=False, repr=False)

    async def tick(self) -> list[str]:
        """Run every job that is due. Returns the names of jobs that completed."""
        now = self.clock()
        completed: list[str] = []

        if await self._run_job("batch", self.runner.run_for_all_students):
            completed.append("batch")

        if self.daily_gate.due(now) and await self._run_job(
            "time_based", self.runner.run_time_based
        ):
            self.daily_gate.mark(now)
            completed.append("time_based")

        report = self.weekly_report
        if (
            report is not None
            and self.weekly_gate.due(now)
            and await self._run_job("weekly_report", lambda: report(now))
        ):
            self.weekly_gate.mark(now)
            completed.append("weekly_report")

        return completed

    async def _run_job(self, name: str, job: Callable[[], Awaitable[Any]]) -> bool:
        try:
            await job()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Scheduled job %s failed", name)
            return False
        return True

    async def run_forever(self) -> None:
        logger.info("Achievement scheduler started (interval=%s)", self.interval)
        while not self._stop.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval.total_seconds())
            except TimeoutError:
                pass
        logger.info("Achievement scheduler stopped")

    def start(self) -> asyncio.Task[None]:
        if self._task is None or self._task.done():
            self._stop.clear()
            self._task = asyncio.create_task(self.run_forever(), name="achievement-scheduler")
        return self._task

    async def stop(self) -> None:
        """Signal the loop to exit and wait; a tick in progress is cancelled."""
        self._stop.set()
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
