"""Test fixtures for the backend test suite."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Generator
from datetime import date

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import JSON, event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from backend.api.db.database import get_db, get_session_factory
from backend.api.db.models import (
    Achievement,
    Base,
    ClassRoom,
    Investment,
    InvestmentCategory,
    Student,
)
from backend.api.dependencies import AuthenticatedAdmin, get_current_admin
from backend.api.main import app
from backend.tests.fakes import AchievementFactory, StudentFactory

# In-memory SQLite for test isolation; JSONB is mapped to JSON for SQLite
_test_engine = create_async_engine("sqlite+aiosqlite:///", echo=False)


@event.listens_for(_test_engine.sync_engine, "connect")
def _set_sqlite_pragma(dbapi_conn: object, connection_record: object) -> None:
    """Enable foreign keys for the SQLite test database."""
    cursor = dbapi_conn.cursor()  # type: ignore[union-attr]
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# Patch JSONB columns to use JSON for SQLite
for table in Base.metadata.tables.values():
    for column in table.columns:
        if isinstance(column.type, JSONB):
            column.type = JSON()
_test_session_factory = async_sessionmaker(
    bind=_test_engine, class_=AsyncSession, expire_on_commit=False
)

TEST_ADMIN = AuthenticatedAdmin(admin_id="teacher-42")


@pytest.fixture(autouse=True)
def _mock_auth() -> Generator[None, None, None]:
    """Override the auth dependency so all test requests are authenticated."""
    app.dependency_overrides[get_current_admin] = lambda: TEST_ADMIN
    yield
    app.dependency_overrides.pop(get_current_admin, None)


@pytest_asyncio.fixture(autouse=True)
async def _test_db() -> AsyncGenerator[None, None]:
    """Create tables in in-memory SQLite and override DB dependencies for each test."""
    async with _test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with _test_session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_session_factory] = lambda: _test_session_factory
    yield
    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_session_factory, None)

    async with _test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def session_factory() -> async_sessionmaker[AsyncSession]:
    return _test_session_factory


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    """A session on the test database; callers commit what other sessions must see."""
    async with _test_session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Yield an async HTTP test client wired to the FastAPI app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def make_student(db: AsyncSession) -> StudentFactory:
    """Create (and commit) a student, optionally with investments.

    ``investments`` is a list of ``(date, amount, category_id)`` tuples.
    """
    counter = 0

    async def _make(
        investments: list[tuple[date, float, int | None]] | None = None,
        classroom: ClassRoom | None = None,
    ) -> Student:
        nonlocal counter
        counter += 1
        student = Student(name=f"Student {counter}", email=f"student{counter}@example.com")
        if classroom is not None:
            student.classroom = classroom
        db.add(student)
        await db.flush()

        for day, amount, category_id in investments or []:
            if category_id is not None and await db.get(InvestmentCategory, category_id) is None:
                db.add(InvestmentCategory(id=category_id, name=f"Category {category_id}"))
                await db.flush()
            db.add(
                Investment(
                    student_id=student.id,
                    date=day,
                    amount=amount,
                    concept="test",
                    category_id=category_id,
                )
            )
        await db.commit()
        return student

    return _make


@pytest.fixture
def make_achievement(db: AsyncSession) -> AchievementFactory:
    """Create (and commit) an achievement definition."""

    async def _make(
        name: str,
        trigger_config: dict[str, object] | None = None,
        trigger_type: str = "automatic",
        **fields: object,
    ) -> Achievement:
        achievement = Achievement(
            name=name,
            description=fields.pop("description", ""),
            category=fields.pop("category", "milestone"),
            rarity=fields.pop("rarity", "common"),
            trigger_type=trigger_type,
            trigger_config=trigger_config,
            points=fields.pop("points", 10),
            **fields,
        )
        db.add(achievement)
        await db.commit()
        return achievement

    return _make
