"""Terminal state transitions for purchases.

Both writes are conditional on the purchase still being ``pending_validation``
so that concurrent or duplicate jobs cannot overwrite each other's result.
"""
from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mindlock.models import CharityDonation, Purchase, PurchaseStatus

logger = logging.getLogger(__name__)


def complete_purchase(session: Session, purchase_id: str, completed_at: datetime) -> bool:
    """Mark the purchase completed and record its donation.

    Must run inside the caller's transaction so the status change and the
    donation row commit together. Returns ``False`` when another worker had
    already moved the purchase out of ``pending_validation``.
    """
    result = session.execute(
        update(Purchase)
        .where(Purchase.id == purchase_id, Purchase.status == PurchaseStatus.PENDING_VALIDATION)
        .values(status=PurchaseStatus.COMPLETED, completed_at=completed_at, failure_reason=None)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        logger.info("purchase no longer pending; completion skipped", extra={"purchase_id": purchase_id})
        return False

    existing = session.scalar(select(CharityDonation.id).where(CharityDonation.purchase_id == purchase_id))
    if existing is not None:
        return True

    purchase = session.get(Purchase, purchase_id)
    if purchase is None:  # pragma: no cover - the update above just matched the row
        raise LookupError(f"Purchase '{purchase_id}' disappeared during completion")

    try:
        with session.begin_nested():
            session.add(
                CharityDonation(
                    purchase_id=purchase.id,
                    charity_id=purchase.charity_id,
                    donation_cents=purchase.donation_cents,
                )
            )
    except IntegrityError:
        logger.info("donation already recorded by a concurrent worker", extra={"purchase_id": purchase_id})
    return True


def mark_purchase_failed(session: Session, purchase_id: str, reason: str) -> bool:
    """Record a terminal validation failure; returns ``False`` if the purchase was not pending."""
    result = session.execute(
        update(Purchase)
        .where(Purchase.id == purchase_id, Purchase.status == PurchaseStatus.PENDING_VALIDATION)
        .values(status=PurchaseStatus.FAILED, failure_reason=reason)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


__all__ = ["complete_purchase", "mark_purchase_failed"]
