"""Purchase ORM model."""
from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mindlock.models.base import Base


class PurchaseStatus(str, enum.Enum):
    PENDING_VALIDATION = "pending_validation"
    COMPLETED = "completed"
    FAILED = "failed"


class Purchase(Base):
    """One App Store transaction attempt and its revenue split."""

    __tablename__ = "purchases"
    __table_args__ = (
        Index("ix_purchases_status_completed_at", "status", "completed_at"),
        CheckConstraint("apple_fee_cents + net_cents = gross_cents", name="ck_purchases_fee_net_sum"),
        CheckConstraint("donation_cents <= net_cents", name="ck_purchases_donation_within_net"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    charity_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("charities.id", ondelete="RESTRICT"), nullable=False
    )
    product_id: Mapped[str] = mapped_column(String(128), nullable=False)
    apple_transaction_id: Mapped[str | None] = mapped_column(String(64), unique=True)
    receipt_data: Mapped[str | None] = mapped_column(Text)
    transaction_jws: Mapped[str | None] = mapped_column(Text)
    status: Mapped[PurchaseStatus] = mapped_column(
        SAEnum(
            PurchaseStatus,
            name="purchase_status",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
        default=PurchaseStatus.PENDING_VALIDATION,
    )
    gross_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    apple_fee_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    net_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    donation_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    charity = relationship("Charity", back_populates="purchases")
    donation = relationship("CharityDonation", back_populates="purchase", uselist=False)


__all__ = ["Purchase", "PurchaseStatus"]
