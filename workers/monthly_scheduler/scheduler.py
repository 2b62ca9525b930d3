"""Monthly scheduler enqueueing the previous month's donation report."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from mindlock.core.config import get_settings
from mindlock.core.logging import configure_logging
from mindlock.services.jobs import SQSJobQueue, enqueue_monthly_report
from mindlock.services.monthly_report import previous_month

logger = logging.getLogger(__name__)


def next_month_start(reference: datetime) -> datetime:
    """Return the UTC timestamp for the start of the next month."""

    tz = reference.tzinfo or timezone.utc
    year = reference.year + (1 if reference.month == 12 else 0)
    month = 1 if reference.month == 12 else reference.month + 1
    return datetime(year, month, 1, tzinfo=tz)


def next_run_at(reference: datetime, *, hour_utc: int = 0) -> datetime:
    """Return the next ``hour_utc`` o'clock on the first day of a month after ``reference``."""

    this_month = datetime(reference.year, reference.month, 1, hour_utc, tzinfo=reference.tzinfo or timezone.utc)
    if reference < this_month:
        return this_month
    return next_month_start(reference) + timedelta(hours=hour_utc)


async def run_monthly_scheduler(
    callback: Callable[[], Awaitable[None]],
    *,
    hour_utc: int = 0,
    now_fn: Callable[[], datetime] | None = None,
    sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
    iterations: int | None = None,
) -> None:
    """Invoke ``callback`` once per month relative to ``now_fn``."""

    now_provider = now_fn or (lambda: datetime.now(timezone.utc))
    executed = 0

    while iterations is None or executed < iterations:
        now = now_provider()
        target = next_run_at(now, hour_utc=hour_utc)
        delay = max((target - now).total_seconds(), 0.0)
        await sleep_fn(delay)
        await callback()
        executed += 1


async def run() -> None:
    settings = get_settings()
    queue = SQSJobQueue.from_settings(settings)

    async def enqueue_previous_month() -> None:
        month = previous_month(datetime.now(timezone.utc))
        await asyncio.to_thread(enqueue_monthly_report, queue, month)
        logger.info("enqueued monthly report", extra={"month": month})

    await run_monthly_scheduler(enqueue_previous_month, hour_utc=settings.report_schedule_hour_utc)


def main() -> None:
    configure_logging()
    try:
        asyncio.run(run())
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown
        logger.info("monthly scheduler stopped")


if __name__ == "__main__":
    main()
