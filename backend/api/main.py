"""FastAPI application entry point."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Annotated

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.api.config import Settings
from backend.api.db.database import get_session_factory
from backend.api.dependencies import get_batch_runner
from backend.api.routers import achievements, admin_achievements
from backend.api.services.achievement_batch import BatchRunner
from backend.api.services.achievement_catalog import seed_achievements
from backend.api.services.achievement_scheduler import AchievementScheduler, weekly_report_for
from backend.api.services.wiring import build_batch_runner

logger = logging.getLogger(__name__)


async def _seed_definitions() -> int:
    async with get_session_factory()() as session:
        added = await seed_achievements(session)
        await session.commit()
    return added


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    logging.basicConfig(level=logging.INFO)

    if settings.seed_achievements_on_startup:
        n = await _seed_definitions()
        if n:
            logger.info("Seeded %d achievement definition(s) on startup", n)

    scheduler: AchievementScheduler | None = None
    if settings.scheduler_enabled:
        session_factory = get_session_factory()
        scheduler = AchievementScheduler(
            runner=build_batch_runner(session_factory, settings),
            weekly_report=weekly_report_for(session_factory),
            interval=timedelta(minutes=settings.scheduler_interval_minutes),
        )
        scheduler.start()

    yield

    if scheduler is not None:
        await scheduler.stop()


load_dotenv()  # Populate os.environ from .env before reading settings
settings = Settings()

app = FastAPI(
    title="VCoin Achievements API",
    description="Classroom investment achievements: triggers, unlocks and progress",
    version="0.1.0",
    lifespan=lifespan,
    redirect_slashes=False,
)


# -- Exception handlers --------------------------------------------------------


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unhandled exceptions.

    Logs the full traceback server-side but returns a safe generic message
    to the client (no internal details leaked).
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    """Return 422 for ValueError (invalid trigger configs, unknown rarities)."""
    logger.warning("ValueError on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=422,
        content={"detail": str(exc)},
    )


# -- Middleware ----------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -- Routers -----------------------------------------------------------------

app.include_router(achievements.router, prefix="/api/students", tags=["achievements"])
app.include_router(
    admin_achievements.router, prefix="/api/admin/achievements", tags=["admin"]
)


# -- Health ------------------------------------------------------------------


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Return a simple health-check response."""
    return {"status": "ok"}


@app.get("/health/achievements")
async def achievements_health(
    runner: Annotated[BatchRunner, Depends(get_batch_runner)],
) -> JSONResponse:
    """Check that the student roster can be read (503 otherwise)."""
    healthy, student_count = await runner.health_check()
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "ok" if healthy else "unavailable",
            "student_count": student_count,
        },
    )
