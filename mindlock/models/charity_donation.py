"""Charity donation ledger ORM model."""
from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mindlock.models.base import Base, utcnow


class CharityDonation(Base):
    """Donation reserved for a charity by a completed purchase."""

    __tablename__ = "charity_donations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    charity_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("charities.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    purchase_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("purchases.id", ondelete="RESTRICT"), nullable=False, unique=True
    )
    donation_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    charity = relationship("Charity", back_populates="donations")
    purchase = relationship("Purchase", back_populates="donation")


__all__ = ["CharityDonation"]
