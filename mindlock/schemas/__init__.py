"""Pydantic schemas package."""

from .apple import (
    AppleReceipt,
    AppleReceiptEntry,
    AppleReceiptResponse,
    StoreKitTransactionPayload,
    epoch_ms_to_datetime,
)
from .report import (
    CharitySummary,
    MonthlyReportPayload,
    MonthlyReportRead,
    ReportRunRequest,
    ReportRunResponse,
    ReportTotals,
)

__all__ = [
    "AppleReceipt",
    "AppleReceiptEntry",
    "AppleReceiptResponse",
    "CharitySummary",
    "MonthlyReportPayload",
    "MonthlyReportRead",
    "ReportRunRequest",
    "ReportRunResponse",
    "ReportTotals",
    "StoreKitTransactionPayload",
    "epoch_ms_to_datetime",
]
