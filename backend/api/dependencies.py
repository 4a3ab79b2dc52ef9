"""FastAPI dependency injection functions."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.api.config import Settings
from backend.api.db.database import get_db, get_session_factory
from backend.api.services.achievement_batch import BatchRunner
from backend.api.services.achievement_engine import UnlockManager
from backend.api.services.wiring import build_batch_runner, build_unlock_manager

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the singleton application settings."""
    return Settings()


@dataclass(frozen=True, slots=True)
class AuthenticatedAdmin:
    """Caller of the admin API; ``admin_id`` is recorded in manual unlock metadata."""

    admin_id: str


def get_current_admin(
    settings: Annotated[Settings, Depends(get_settings)],
    authorization: str | None = Header(None),
    x_admin_id: str | None = Header(None),
) -> AuthenticatedAdmin:
    """Validate the ``Authorization: Bearer <api_token>`` header.

    Returns 401 for a missing or wrong token, 503 if ``api_token`` is not
    configured. ``X-Admin-Id`` identifies the acting administrator.
    """
    if settings.dev_auth_bypass:
        return AuthenticatedAdmin(admin_id=x_admin_id or "dev-admin")

    if not settings.api_token:
        raise HTTPException(status_code=503, detail="Auth not configured")

    token: str | None = None
    if authorization and authorization.startswith("Bearer "):
        token = authorization[7:]

    if not token:
        logger.warning("Auth: no bearer token (header=%s)", bool(authorization))
        raise HTTPException(status_code=401, detail="Not authenticated")

    if not secrets.compare_digest(token, settings.api_token):
        logger.warning("Auth: invalid bearer token")
        raise HTTPException(status_code=401, detail="Invalid token")

    return AuthenticatedAdmin(admin_id=x_admin_id or "admin")


def get_unlock_manager(
    db: Annotated[AsyncSession, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> UnlockManager:
    """Unlock manager bound to the request's session."""
    return build_unlock_manager(db, settings)


def get_batch_runner(
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> BatchRunner:
    """Batch runner opening one session per student."""
    return build_batch_runner(session_factory, settings)
