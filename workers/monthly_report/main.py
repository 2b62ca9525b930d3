"""Worker consuming ``generate-report`` jobs."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from sqlalchemy.orm import Session

from mindlock.core.config import Settings, get_settings
from mindlock.db.session import SessionLocal
from mindlock.obs import report_queue_depth
from mindlock.services.jobs import GENERATE_REPORT_TOPIC, ReceivedJob, SQSJobQueue
from mindlock.services.monthly_report import InvalidMonthError, MonthlyReportService
from mindlock.workers.observability import configure_worker, worker_span

logger = logging.getLogger(__name__)
QUEUE_NAME = GENERATE_REPORT_TOPIC


def process_report_job(
    *,
    job: ReceivedJob,
    queue: SQSJobQueue,
    session_factory: Callable[[], Session],
) -> str | None:
    """Generate the report a job asks for; returns the month or ``None`` if not generated."""
    envelope = job.envelope
    if queue.defer_if_early(job):
        return None

    month = envelope.payload.get("month")
    with worker_span("monthly_report.generate", traceparent=envelope.traceparent, month=month):
        try:
            with session_factory() as session, session.begin():
                report = MonthlyReportService(session).generate(month)
                generated_month = report.month
        except InvalidMonthError as exc:
            logger.error("report job with invalid month", extra={"month": month})
            queue.dead_letter(envelope, error=str(exc))
            queue.acknowledge(envelope.topic, job.receipt_handle)
            return None
        except Exception as exc:
            logger.exception("failed to generate monthly report", extra={"month": month})
            queue.retry_later(job, error=str(exc))
            return None

    queue.acknowledge(envelope.topic, job.receipt_handle)
    return generated_month


class MonthlyReportWorker:
    """Polls the report queue; report jobs are rare so they run one at a time."""

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        queue: SQSJobQueue | None = None,
        session_factory: Callable[[], Session] = SessionLocal,
    ) -> None:
        self._settings = settings or get_settings()
        self._queue = queue or SQSJobQueue.from_settings(self._settings)
        self._session_factory = session_factory

    async def run_forever(self) -> None:
        logger.info("monthly report worker started")
        while True:
            try:
                processed = await self.poll_once()
            except Exception:
                logger.exception("failed to poll report queue")
                processed = False
            if not processed:
                await asyncio.sleep(self._settings.worker_poll_interval_seconds)

    async def poll_once(self) -> bool:
        jobs = await asyncio.to_thread(self._queue.receive, QUEUE_NAME, max_messages=1, wait_seconds=1)
        report_queue_depth(QUEUE_NAME, len(jobs))
        for job in jobs:
            try:
                await asyncio.to_thread(
                    process_report_job, job=job, queue=self._queue, session_factory=self._session_factory
                )
            except Exception:
                logger.exception("failed to settle report job", extra={"job_key": job.envelope.job_key})
        report_queue_depth(QUEUE_NAME, 0)
        return bool(jobs)


async def run() -> None:
    configure_worker("monthly-report-worker", queues=[QUEUE_NAME])
    worker = MonthlyReportWorker()
    await worker.run_forever()


def main() -> None:
    try:
        asyncio.run(run())
    except KeyboardInterrupt:  # pragma: no cover - CLI signal handling
        logger.info("monthly report worker stopped")


if __name__ == "__main__":
    main()
