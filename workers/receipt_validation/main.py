"""Worker consuming ``validate-receipt`` jobs."""

from __future__ import annotations

import asyncio
import logging

from mindlock.core.config import Settings, get_settings
from mindlock.db.session import SessionLocal
from mindlock.obs import report_queue_depth
from mindlock.services.apple_receipts import AppleReceiptClient
from mindlock.services.jobs import VALIDATE_RECEIPT_TOPIC, ReceivedJob, SQSJobQueue
from mindlock.services.storekit import StoreKitVerifier
from mindlock.services.validation import PurchaseValidationService, ValidationOutcome
from mindlock.workers.observability import configure_worker, worker_span

logger = logging.getLogger(__name__)
QUEUE_NAME = VALIDATE_RECEIPT_TOPIC


def process_validation_job(
    *,
    job: ReceivedJob,
    queue: SQSJobQueue,
    service: PurchaseValidationService,
) -> ValidationOutcome | None:
    """Run one validation job and settle its message.

    Returns ``None`` when the job was deferred, malformed or crashed.
    """
    envelope = job.envelope
    if queue.defer_if_early(job):
        return None

    purchase_id = envelope.payload.get("purchaseId")
    if not purchase_id:
        logger.error("validation job without purchaseId", extra={"job_key": envelope.job_key})
        queue.dead_letter(envelope, error="missing purchaseId")
        queue.acknowledge(envelope.topic, job.receipt_handle)
        return None

    with worker_span(
        "receipt_validation.process",
        traceparent=envelope.traceparent,
        purchase_id=str(purchase_id),
        attempt=envelope.attempt,
    ):
        try:
            outcome = service.validate(str(purchase_id))
        except Exception as exc:
            # The purchase writes are transactional, so a crash leaves it pending and safe to retry.
            logger.exception("unexpected validation error", extra={"purchase_id": purchase_id})
            queue.retry_later(job, error=f"unexpected error: {exc}")
            return None

    if outcome.retryable:
        queue.retry_later(job, error=outcome.reason or "retryable error")
    else:
        queue.acknowledge(envelope.topic, job.receipt_handle)
    logger.info(
        "validation job finished",
        extra={"purchase_id": purchase_id, "outcome": outcome.kind.value, "attempt": envelope.attempt},
    )
    return outcome


class ReceiptValidationWorker:
    """Polls the validation queue and validates purchases concurrently."""

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        queue: SQSJobQueue | None = None,
        service: PurchaseValidationService | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._queue = queue or SQSJobQueue.from_settings(self._settings)
        self._receipt_client: AppleReceiptClient | None = None
        if service is None:
            self._receipt_client = AppleReceiptClient.from_settings(self._settings)
            service = PurchaseValidationService(
                session_factory=SessionLocal,
                receipt_client=self._receipt_client,
                token_verifier=StoreKitVerifier(),
            )
        self._service = service

    async def run_forever(self) -> None:
        logger.info("receipt validation worker started")
        try:
            while True:
                try:
                    processed = await self.poll_once()
                except Exception:
                    logger.exception("failed to poll validation queue")
                    processed = False
                if not processed:
                    await asyncio.sleep(self._settings.worker_poll_interval_seconds)
        finally:
            if self._receipt_client is not None:
                self._receipt_client.close()

    async def poll_once(self) -> bool:
        jobs = await asyncio.to_thread(self._queue.receive, QUEUE_NAME, max_messages=5, wait_seconds=1)
        report_queue_depth(QUEUE_NAME, len(jobs))
        if not jobs:
            return False
        await asyncio.gather(*(self._handle(job) for job in jobs))
        report_queue_depth(QUEUE_NAME, 0)
        return True

    async def _handle(self, job: ReceivedJob) -> None:
        try:
            await asyncio.to_thread(process_validation_job, job=job, queue=self._queue, service=self._service)
        except Exception:
            # Unsettled messages reappear once their visibility timeout lapses.
            logger.exception("failed to settle validation job", extra={"job_key": job.envelope.job_key})


async def run() -> None:
    configure_worker("receipt-validation-worker", queues=[QUEUE_NAME])
    worker = ReceiptValidationWorker()
    await worker.run_forever()


def main() -> None:
    try:
        asyncio.run(run())
    except KeyboardInterrupt:  # pragma: no cover - CLI signal handling
        logger.info("receipt validation worker stopped")


if __name__ == "__main__":
    main()
