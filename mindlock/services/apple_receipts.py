"""Client for Apple's legacy ``verifyReceipt`` endpoint."""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx
from pydantic import ValidationError

from mindlock.core.config import (
    APPLE_PRODUCTION_VERIFY_RECEIPT_URL,
    APPLE_SANDBOX_VERIFY_RECEIPT_URL,
    Settings,
)
from mindlock.obs import record_apple_response
from mindlock.schemas.apple import AppleReceiptResponse
from mindlock.services.errors import RetryableGatewayError, TerminalValidationError

logger = logging.getLogger(__name__)

STATUS_OK = 0
STATUS_SANDBOX_RECEIPT_SENT_TO_PRODUCTION = 21007
# 21002 malformed receipt data (Apple asks to retry), 21005 receipt server unavailable,
# 21009 internal data access error.
RETRYABLE_STATUSES = frozenset({21002, 21005, 21009})


@dataclass(slots=True, frozen=True)
class VerifiedTransaction:
    """A transaction Apple confirmed as part of a valid receipt."""

    transaction_id: str
    product_id: str | None
    completed_at: datetime
    environment: str


class AppleReceiptClient:
    """Exchanges receipts with Apple and classifies the answer.

    Raises :class:`RetryableGatewayError` for transient failures and
    :class:`TerminalValidationError` for definitive rejections.
    """

    def __init__(
        self,
        *,
        shared_secret: str,
        verify_url: str = APPLE_PRODUCTION_VERIFY_RECEIPT_URL,
        sandbox_url: str = APPLE_SANDBOX_VERIFY_RECEIPT_URL,
        timeout_seconds: float = 10.0,
        client: httpx.Client | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._shared_secret = shared_secret
        self._verify_url = verify_url
        self._sandbox_url = sandbox_url
        self._timeout = timeout_seconds
        self._client = client or httpx.Client()
        self._owns_client = client is None
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        client: httpx.Client | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> "AppleReceiptClient":
        return cls(
            shared_secret=settings.apple_shared_secret,
            verify_url=settings.apple_verify_receipt_url,
            sandbox_url=settings.apple_sandbox_verify_receipt_url,
            timeout_seconds=settings.apple_request_timeout_seconds,
            client=client,
            clock=clock,
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "AppleReceiptClient":  # pragma: no cover - convenience
        return self

    def __exit__(self, *_args: object) -> None:  # pragma: no cover - convenience
        self.close()

    def verify(self, receipt_data: str, expected_transaction_id: str | None) -> VerifiedTransaction:
        payload = {
            "receipt-data": receipt_data,
            "password": self._shared_secret,
            "exclude-old-transactions": True,
        }

        environment = self._environment_for(self._verify_url)
        result = self._post(self._verify_url, payload, environment=environment)
        if result.status == STATUS_SANDBOX_RECEIPT_SENT_TO_PRODUCTION and environment != "sandbox":
            logger.info("received %s, retrying against sandbox endpoint", result.status)
            environment = "sandbox"
            result = self._post(self._sandbox_url, payload, environment=environment)

        self._raise_for_apple_status(result.status)

        entry = result.find_transaction(expected_transaction_id)
        if entry is None or entry.transaction_id is None:
            raise TerminalValidationError(
                f"Transaction {expected_transaction_id or 'unknown'} not present in receipt"
            )

        return VerifiedTransaction(
            transaction_id=entry.transaction_id,
            product_id=entry.product_id,
            completed_at=entry.purchased_at or self._clock(),
            environment=environment,
        )

    def _environment_for(self, url: str) -> str:
        return "sandbox" if url == self._sandbox_url else "production"

    def _post(self, url: str, payload: dict[str, Any], *, environment: str) -> AppleReceiptResponse:
        try:
            response = self._client.post(url, json=payload, timeout=self._timeout)
        except httpx.HTTPError as exc:
            raise RetryableGatewayError(f"Failed to reach Apple: {exc}") from exc

        if response.status_code != 200:
            raise RetryableGatewayError(f"Apple verifyReceipt returned HTTP {response.status_code}")

        try:
            result = AppleReceiptResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise RetryableGatewayError("Malformed verifyReceipt response from Apple") from exc

        record_apple_response(environment, result.status)
        logger.debug(
            "verifyReceipt response",
            extra={"environment": environment, "apple_status": result.status},
        )
        return result

    @staticmethod
    def _raise_for_apple_status(status: int) -> None:
        if status == STATUS_OK:
            return
        if status in RETRYABLE_STATUSES:
            raise RetryableGatewayError(f"Apple returned retryable status {status}")
        raise TerminalValidationError(f"Apple returned status {status}")


__all__ = [
    "AppleReceiptClient",
    "RETRYABLE_STATUSES",
    "STATUS_SANDBOX_RECEIPT_SENT_TO_PRODUCTION",
    "VerifiedTransaction",
]
