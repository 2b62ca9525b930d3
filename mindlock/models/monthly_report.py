"""Monthly donation report ORM model."""
from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from mindlock.models.base import Base, utcnow


class MonthlyReport(Base):
    """Derived per-month snapshot; regenerated in full on every run."""

    __tablename__ = "monthly_reports"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    month: Mapped[str] = mapped_column(String(7), nullable=False, unique=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


__all__ = ["MonthlyReport"]
