"""Schemas for monthly donation reports."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

MONTH_REGEX = r"^\d{4}-\d{2}$"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ReportTotals(_CamelModel):
    purchases: int = 0
    gross_cents: int = 0
    net_cents: int = 0
    donation_cents: int = 0


class CharitySummary(_CamelModel):
    charity_id: str
    charity_name: str
    donation_cents: int


class MonthlyReportPayload(_CamelModel):
    """Snapshot persisted in ``monthly_reports.payload``."""

    month: str
    totals: ReportTotals
    charities: list[CharitySummary] = Field(default_factory=list)


class MonthlyReportRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    month: str
    generated_at: datetime
    payload: dict


class ReportRunRequest(BaseModel):
    month: str | None = Field(default=None, pattern=MONTH_REGEX)
    inline: bool = False


class ReportRunResponse(BaseModel):
    month: str
    queued: bool
    report: MonthlyReportRead | None = None


__all__ = [
    "CharitySummary",
    "MONTH_REGEX",
    "MonthlyReportPayload",
    "MonthlyReportRead",
    "ReportRunRequest",
    "ReportRunResponse",
    "ReportTotals",
]
