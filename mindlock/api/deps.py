"""Common dependencies for API routes."""
from __future__ import annotations

import secrets
from collections.abc import Iterator

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from mindlock.core.config import Settings, get_settings
from mindlock.db.session import SessionLocal
from mindlock.services.jobs import JobQueue, SQSJobQueue


def get_db_session() -> Iterator[Session]:
    """Yield a database session for FastAPI dependencies."""

    session: Session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def get_job_queue(settings: Settings = Depends(get_settings)) -> JobQueue:
    return SQSJobQueue.from_settings(settings)


def require_admin_key(
    x_admin_key: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Reject requests that do not carry the configured admin API key."""

    if x_admin_key is None or not secrets.compare_digest(x_admin_key, settings.admin_api_key):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin key")


__all__ = ["get_db_session", "get_job_queue", "require_admin_key"]
