"""Read-only SQL adapters for the ledger, balance and roster ports."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.api.db.models import ClassRoom, Investment, Student
from vcoin.accrual import DEFAULT_MONTHLY_RATE, ClassSettings, current_balance
from vcoin.metrics import InvestmentRecord


class SqlInvestmentLedger:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def list_investments(self, student_id: int) -> list[InvestmentRecord]:
        result = await self._db.execute(
            select(Investment)
            .where(Investment.student_id == student_id)
            .order_by(Investment.date.asc(), Investment.id.asc())
        )
        return [
            InvestmentRecord(
                id=inv.id,
                date=inv.date,
                amount=inv.amount,
                category_id=inv.category_id,
            )
            for inv in result.scalars().all()
        ]


class ClassBalanceProvider:
    """Current balance from the interest settings of the student's class.

    Students without a class accrue at the default monthly rate with no end
    date.
    """

    def __init__(
        self,
        db: AsyncSession,
        default_rate: float = DEFAULT_MONTHLY_RATE,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._db = db
        self._default_rate = default_rate
        self._clock = clock or (lambda: datetime.now(UTC))

    async def class_settings(self, student_id: int) -> ClassSettings:
        result = await self._db.execute(
            select(ClassRoom.end_date, ClassRoom.current_monthly_interest_rate)
            .join(Student, Student.class_id == ClassRoom.id)
            .where(Student.id == student_id)
        )
        row = result.first()
        if row is None:
            return ClassSettings(end_date=None)
        return ClassSettings(end_date=row[0], monthly_interest_rate=row[1])

    async def current_balance(
        self, student_id: int, investments: Sequence[InvestmentRecord]
    ) -> float:
        settings = await self.class_settings(student_id)
        return current_balance(investments, settings, self._clock(), self._default_rate)


class SqlStudentRoster:
    """Roster reads in a short-lived session of their own."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def list_student_ids(self, class_id: int | None = None) -> list[int]:
        stmt = select(Student.id).order_by(Student.id)
        if class_id is not None:
            stmt = stmt.where(Student.class_id == class_id)
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return [row[0] for row in result.all()]
