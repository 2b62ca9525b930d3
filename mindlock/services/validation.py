"""Purchase validation state machine executed for each ``validate-receipt`` job."""
from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy.orm import Session

from mindlock.models import Purchase, PurchaseStatus
from mindlock.obs import record_validation_outcome
from mindlock.schemas.apple import StoreKitTransactionPayload
from mindlock.services.apple_receipts import VerifiedTransaction
from mindlock.services.completion import complete_purchase, mark_purchase_failed
from mindlock.services.errors import RetryableGatewayError, TerminalValidationError

logger = logging.getLogger(__name__)


class OutcomeKind(str, enum.Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    RETRY = "retry"
    SKIPPED_NOT_FOUND = "skipped_not_found"
    SKIPPED_ALREADY_PROCESSED = "skipped_already_processed"


@dataclass(slots=True, frozen=True)
class ValidationOutcome:
    """Result of one validation attempt.

    Only ``RETRY`` asks the queue for redelivery; every other kind consumes the job.
    """

    kind: OutcomeKind
    purchase_id: str
    reason: str | None = None
    completed_at: datetime | None = None

    @property
    def retryable(self) -> bool:
        return self.kind is OutcomeKind.RETRY


class ReceiptVerifier(Protocol):
    def verify(self, receipt_data: str, expected_transaction_id: str | None) -> VerifiedTransaction:
        """Exchange the receipt with Apple and return the matching transaction."""


class SignedTransactionVerifier(Protocol):
    def verify(self, token: str) -> StoreKitTransactionPayload:
        """Verify the signed transaction and return its decoded payload."""


@dataclass(slots=True, frozen=True)
class PendingPurchase:
    """Fields needed to verify a purchase, detached from the ORM session."""

    id: str
    apple_transaction_id: str | None
    product_id: str
    receipt_data: str | None
    transaction_jws: str | None

    @classmethod
    def from_model(cls, purchase: Purchase) -> "PendingPurchase":
        return cls(
            id=purchase.id,
            apple_transaction_id=purchase.apple_transaction_id,
            product_id=purchase.product_id,
            receipt_data=purchase.receipt_data,
            transaction_jws=purchase.transaction_jws,
        )


class PurchaseValidationService:
    """Drives a pending purchase to ``completed`` or ``failed``.

    No database transaction is held while Apple is being contacted; the final
    write re-checks the pending status so duplicate deliveries are harmless.
    """

    def __init__(
        self,
        *,
        session_factory: Callable[[], Session],
        receipt_client: ReceiptVerifier,
        token_verifier: SignedTransactionVerifier,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._receipt_client = receipt_client
        self._token_verifier = token_verifier
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def validate(self, purchase_id: str) -> ValidationOutcome:
        outcome = self._validate(purchase_id)
        record_validation_outcome(outcome.kind.value)
        return outcome

    def _validate(self, purchase_id: str) -> ValidationOutcome:
        with self._session_factory() as session:
            purchase = session.get(Purchase, purchase_id)
            if purchase is None:
                logger.warning("purchase missing; skipping", extra={"purchase_id": purchase_id})
                return ValidationOutcome(OutcomeKind.SKIPPED_NOT_FOUND, purchase_id)
            if purchase.status != PurchaseStatus.PENDING_VALIDATION:
                logger.info(
                    "purchase already processed",
                    extra={"purchase_id": purchase_id, "status": purchase.status.value},
                )
                return ValidationOutcome(OutcomeKind.SKIPPED_ALREADY_PROCESSED, purchase_id)
            pending = PendingPurchase.from_model(purchase)

        try:
            completed_at = self._verify(pending)
        except RetryableGatewayError as exc:
            logger.warning("retryable Apple error", extra={"purchase_id": purchase_id, "error": str(exc)})
            return ValidationOutcome(OutcomeKind.RETRY, purchase_id, reason=str(exc))
        except TerminalValidationError as exc:
            return self._fail(purchase_id, str(exc))

        with self._session_factory() as session, session.begin():
            completed = complete_purchase(session, purchase_id, completed_at)
        if not completed:
            return ValidationOutcome(OutcomeKind.SKIPPED_ALREADY_PROCESSED, purchase_id)
        logger.info("purchase validated", extra={"purchase_id": purchase_id})
        return ValidationOutcome(OutcomeKind.COMPLETED, purchase_id, completed_at=completed_at)

    def _verify(self, pending: PendingPurchase) -> datetime:
        if pending.receipt_data:
            verified = self._receipt_client.verify(pending.receipt_data, pending.apple_transaction_id)
            return verified.completed_at

        if pending.transaction_jws:
            payload = self._token_verifier.verify(pending.transaction_jws)
            if payload.transaction_id != pending.apple_transaction_id:
                raise TerminalValidationError(
                    f"Transaction ID mismatch: expected {pending.apple_transaction_id}, "
                    f"got {payload.transaction_id}"
                )
            if payload.product_id != pending.product_id:
                raise TerminalValidationError(
                    f"Product ID mismatch: expected {pending.product_id}, got {payload.product_id}"
                )
            return payload.purchased_at or self._clock()

        raise TerminalValidationError("Purchase proof missing")

    def _fail(self, purchase_id: str, reason: str) -> ValidationOutcome:
        with self._session_factory() as session, session.begin():
            failed = mark_purchase_failed(session, purchase_id, reason)
        if not failed:
            return ValidationOutcome(OutcomeKind.SKIPPED_ALREADY_PROCESSED, purchase_id)
        logger.warning("purchase validation failed", extra={"purchase_id": purchase_id, "reason": reason})
        return ValidationOutcome(OutcomeKind.FAILED, purchase_id, reason=reason)


__all__ = [
    "OutcomeKind",
    "PendingPurchase",
    "PurchaseValidationService",
    "ReceiptVerifier",
    "SignedTransactionVerifier",
    "ValidationOutcome",
]
