"""Monthly per-charity donation reports."""
from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mindlock.models import Charity, CharityDonation, MonthlyReport, Purchase, PurchaseStatus
from mindlock.obs import MONTHLY_REPORTS_GENERATED
from mindlock.schemas.report import CharitySummary, MonthlyReportPayload, ReportTotals

logger = logging.getLogger(__name__)

_MONTH_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")
UNKNOWN_CHARITY_NAME = "Unknown"


class InvalidMonthError(ValueError):
    """Raised when a month key is not a valid ``YYYY-MM`` string."""


def previous_month(now: datetime) -> str:
    """Return the ``YYYY-MM`` key of the calendar month before ``now`` (UTC)."""
    current = now.astimezone(timezone.utc) if now.tzinfo else now
    year = current.year - (1 if current.month == 1 else 0)
    month = 12 if current.month == 1 else current.month - 1
    return f"{year:04d}-{month:02d}"


def month_range(month: str) -> tuple[datetime, datetime]:
    """Return the ``[start, end)`` UTC bounds of ``month``."""
    if not isinstance(month, str):
        raise InvalidMonthError(f"Invalid month format: {month!r}")
    match = _MONTH_PATTERN.match(month)
    if match is None:
        raise InvalidMonthError(f"Invalid month format: {month!r}")
    year, month_number = int(match.group(1)), int(match.group(2))
    if year < 1 or not 1 <= month_number <= 12:
        raise InvalidMonthError(f"Invalid month format: {month!r}")
    start = datetime(year, month_number, 1, tzinfo=timezone.utc)
    if month_number == 12:
        end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(year, month_number + 1, 1, tzinfo=timezone.utc)
    return start, end


class MonthlyReportService:
    """Recomputes a month's report from the purchase ledger and upserts it.

    The report is always a full recompute; nothing is applied incrementally.
    Callers own the transaction and commit after :meth:`generate`.
    """

    def __init__(self, session: Session, *, clock: Callable[[], datetime] | None = None) -> None:
        self._session = session
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def build_payload(self, month: str) -> MonthlyReportPayload:
        start, end = month_range(month)
        in_month = (
            Purchase.status == PurchaseStatus.COMPLETED,
            Purchase.completed_at >= start,
            Purchase.completed_at < end,
        )

        count, gross, net, donation = self._session.execute(
            select(
                func.count(Purchase.id),
                func.coalesce(func.sum(Purchase.gross_cents), 0),
                func.coalesce(func.sum(Purchase.net_cents), 0),
                func.coalesce(func.sum(Purchase.donation_cents), 0),
            ).where(*in_month)
        ).one()

        rows = self._session.execute(
            select(
                CharityDonation.charity_id,
                Charity.name,
                func.sum(CharityDonation.donation_cents),
            )
            .join(Purchase, Purchase.id == CharityDonation.purchase_id)
            .outerjoin(Charity, Charity.id == CharityDonation.charity_id)
            .where(*in_month)
            .group_by(CharityDonation.charity_id, Charity.name)
            .order_by(CharityDonation.charity_id)
        ).all()

        charities = [
            CharitySummary(
                charity_id=charity_id,
                charity_name=name or UNKNOWN_CHARITY_NAME,
                donation_cents=int(amount or 0),
            )
            for charity_id, name, amount in rows
        ]
        totals = ReportTotals(
            purchases=int(count),
            gross_cents=int(gross),
            net_cents=int(net),
            donation_cents=int(donation),
        )

        allocated = sum(summary.donation_cents for summary in charities)
        if allocated != totals.donation_cents:
            logger.error(
                "donation ledger does not reconcile with purchases",
                extra={"month": month, "purchases_cents": totals.donation_cents, "ledger_cents": allocated},
            )
        return MonthlyReportPayload(month=month, totals=totals, charities=charities)

    def generate(self, month: str | None = None) -> MonthlyReport:
        month = month or previous_month(self._clock())
        payload = self.build_payload(month).model_dump(mode="json", by_alias=True)
        generated_at = self._clock()

        report = self._session.scalar(select(MonthlyReport).where(MonthlyReport.month == month))
        if report is None:
            try:
                with self._session.begin_nested():
                    report = MonthlyReport(month=month, payload=payload, generated_at=generated_at)
                    self._session.add(report)
            except IntegrityError:
                # Another run inserted the same month first; overwrite its snapshot.
                report = self._session.scalars(select(MonthlyReport).where(MonthlyReport.month == month)).one()
                report.payload = payload
                report.generated_at = generated_at
        else:
            report.payload = payload
            report.generated_at = generated_at
        self._session.flush()

        MONTHLY_REPORTS_GENERATED.inc()
        logger.info(
            "monthly report generated",
            extra={"month": month, "purchases": payload["totals"]["purchases"]},
        )
        return report


__all__ = [
    "InvalidMonthError",
    "MonthlyReportService",
    "UNKNOWN_CHARITY_NAME",
    "month_range",
    "previous_month",
]
