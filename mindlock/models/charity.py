"""Charity ORM model."""
from __future__ import annotations

from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mindlock.models.base import Base, TimestampMixin


class Charity(TimestampMixin, Base):
    """Charity that receives the donation share of purchases."""

    __tablename__ = "charities"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    purchases = relationship("Purchase", back_populates="charity")
    donations = relationship("CharityDonation", back_populates="charity")


__all__ = ["Charity"]
