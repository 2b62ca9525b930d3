"""Admin endpoints for monthly donation reports."""
from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from mindlock.api.deps import get_db_session, get_job_queue, require_admin_key
from mindlock.models import MonthlyReport
from mindlock.schemas.report import MonthlyReportRead, ReportRunRequest, ReportRunResponse
from mindlock.services.jobs import JobQueue, enqueue_monthly_report
from mindlock.services.monthly_report import InvalidMonthError, MonthlyReportService, month_range, previous_month

router = APIRouter(prefix="/reports", dependencies=[Depends(require_admin_key)])


@router.get("/latest", response_model=MonthlyReportRead)
def latest_report(session: Session = Depends(get_db_session)) -> MonthlyReportRead:
    report = session.scalar(select(MonthlyReport).order_by(MonthlyReport.month.desc()).limit(1))
    if report is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No reports generated yet")
    return MonthlyReportRead.model_validate(report)


@router.get("/{month}", response_model=MonthlyReportRead)
def get_report(month: str, session: Session = Depends(get_db_session)) -> MonthlyReportRead:
    try:
        month_range(month)
    except InvalidMonthError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    report = session.scalar(select(MonthlyReport).where(MonthlyReport.month == month))
    if report is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No report for {month}")
    return MonthlyReportRead.model_validate(report)


@router.post("/run", response_model=ReportRunResponse, status_code=status.HTTP_202_ACCEPTED)
def run_report(
    payload: ReportRunRequest | None = None,
    session: Session = Depends(get_db_session),
    queue: JobQueue = Depends(get_job_queue),
) -> ReportRunResponse:
    payload = payload or ReportRunRequest()
    month = payload.month or previous_month(datetime.now(timezone.utc))
    try:
        month_range(month)
    except InvalidMonthError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    if not payload.inline:
        enqueue_monthly_report(queue, month)
        return ReportRunResponse(month=month, queued=True)

    report = MonthlyReportService(session).generate(month)
    session.commit()
    return ReportRunResponse(month=month, queued=False, report=MonthlyReportRead.model_validate(report))


__all__ = ["get_report", "latest_report", "router", "run_report"]
