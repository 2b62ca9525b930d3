"""Boundary schemas for Apple receipt and StoreKit payloads."""
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def epoch_ms_to_datetime(value: int | str | None) -> datetime | None:
    """Convert Apple's epoch-millisecond timestamps to an aware UTC datetime."""
    if value is None or value == "":
        return None
    try:
        millis = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(millis):
        return None
    try:
        return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _stringify(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


class AppleReceiptEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    transaction_id: str | None = None
    original_transaction_id: str | None = None
    product_id: str | None = None
    purchase_date_ms: str | None = None

    @field_validator("transaction_id", "original_transaction_id", "purchase_date_ms", mode="before")
    @classmethod
    def coerce_numeric_strings(cls, value: Any) -> Any:
        return _stringify(value)

    @property
    def purchased_at(self) -> datetime | None:
        return epoch_ms_to_datetime(self.purchase_date_ms)


class AppleReceipt(BaseModel):
    model_config = ConfigDict(extra="ignore")

    bundle_id: str | None = None
    in_app: list[AppleReceiptEntry] = Field(default_factory=list)


class AppleReceiptResponse(BaseModel):
    """Subset of the verifyReceipt response used for validation."""

    model_config = ConfigDict(extra="ignore")

    status: int
    environment: str | None = None
    receipt: AppleReceipt | None = None
    latest_receipt_info: list[AppleReceiptEntry] = Field(default_factory=list)

    def find_transaction(self, transaction_id: str | None) -> AppleReceiptEntry | None:
        """Locate ``transaction_id`` in the latest receipt info or the in-app list.

        Subscriptions renewals can appear only in ``latest_receipt_info``.
        """
        if not transaction_id:
            return None
        candidates = list(self.latest_receipt_info)
        if self.receipt is not None:
            candidates.extend(self.receipt.in_app)
        for entry in candidates:
            if entry.transaction_id == transaction_id:
                return entry
        return None


class StoreKitTransactionPayload(BaseModel):
    """Decoded StoreKit 2 ``JWSTransaction`` payload."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    transaction_id: str | None = Field(default=None, alias="transactionId")
    original_transaction_id: str | None = Field(default=None, alias="originalTransactionId")
    web_order_line_item_id: str | None = Field(default=None, alias="webOrderLineItemId")
    bundle_id: str | None = Field(default=None, alias="bundleId")
    product_id: str | None = Field(default=None, alias="productId")
    purchase_date: int | str | None = Field(default=None, alias="purchaseDate")
    type: str | None = None
    app_account_token: str | None = Field(default=None, alias="appAccountToken")
    environment: str | None = None

    @field_validator("transaction_id", "original_transaction_id", "web_order_line_item_id", mode="before")
    @classmethod
    def coerce_numeric_strings(cls, value: Any) -> Any:
        return _stringify(value)

    @property
    def purchased_at(self) -> datetime | None:
        return epoch_ms_to_datetime(self.purchase_date)


__all__ = [
    "AppleReceipt",
    "AppleReceiptEntry",
    "AppleReceiptResponse",
    "StoreKitTransactionPayload",
    "epoch_ms_to_datetime",
]
