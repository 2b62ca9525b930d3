"""SQS-backed job queue used for validation and report jobs."""
from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol
from uuid import uuid4

import boto3

from mindlock.core.config import Settings
from mindlock.obs import current_traceparent
from mindlock.services.monthly_report import previous_month

logger = logging.getLogger(__name__)

VALIDATE_RECEIPT_TOPIC = "validate-receipt"
GENERATE_REPORT_TOPIC = "generate-report"

# SQS rejects per-message delays above 15 minutes; longer waits are re-deferred by consumers.
SQS_MAX_DELAY_SECONDS = 900


class JobQueueError(RuntimeError):
    """Raised for unknown topics or undecodable queue messages."""


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Bounded attempts with a fixed escalating backoff schedule."""

    max_attempts: int = 1
    backoff_seconds: tuple[int, ...] = ()

    @classmethod
    def for_validation(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.validation_max_attempts,
            backoff_seconds=tuple(settings.validation_backoff_seconds),
        )

    def delay_after(self, attempt: int) -> int:
        """Seconds to wait before retrying once ``attempt`` (1-based) has failed."""
        if not self.backoff_seconds:
            return 0
        index = min(max(attempt, 1) - 1, len(self.backoff_seconds) - 1)
        return self.backoff_seconds[index]

    def exhausted(self, attempt: int) -> bool:
        return attempt >= self.max_attempts


@dataclass(slots=True, frozen=True)
class JobOptions:
    job_key: str
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    delay_seconds: int = 0


@dataclass(slots=True, frozen=True)
class JobEnvelope:
    """Message body shared by every topic."""

    topic: str
    job_key: str
    payload: dict[str, Any]
    attempt: int = 1
    max_attempts: int = 1
    backoff_seconds: tuple[int, ...] = ()
    not_before: str | None = None
    enqueued_at: str = ""
    traceparent: str | None = None

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(max_attempts=self.max_attempts, backoff_seconds=self.backoff_seconds)

    def remaining_delay(self, now: datetime) -> float:
        if not self.not_before:
            return 0.0
        return max((datetime.fromisoformat(self.not_before) - now).total_seconds(), 0.0)

    def next_attempt(self, now: datetime) -> "JobEnvelope":
        delay = self.retry_policy.delay_after(self.attempt)
        return replace(
            self,
            attempt=self.attempt + 1,
            not_before=(now + timedelta(seconds=delay)).isoformat(),
        )

    def to_json(self) -> str:
        return json.dumps(
            {
                "topic": self.topic,
                "job_key": self.job_key,
                "payload": self.payload,
                "attempt": self.attempt,
                "max_attempts": self.max_attempts,
                "backoff_seconds": list(self.backoff_seconds),
                "not_before": self.not_before,
                "enqueued_at": self.enqueued_at,
                "traceparent": self.traceparent,
            }
        )

    @classmethod
    def from_json(cls, data: str) -> "JobEnvelope":
        try:
            body = json.loads(data)
            return cls(
                topic=str(body["topic"]),
                job_key=str(body["job_key"]),
                payload=dict(body.get("payload") or {}),
                attempt=int(body.get("attempt", 1)),
                max_attempts=int(body.get("max_attempts", 1)),
                backoff_seconds=tuple(int(value) for value in body.get("backoff_seconds") or ()),
                not_before=body.get("not_before"),
                enqueued_at=str(body.get("enqueued_at") or ""),
                traceparent=body.get("traceparent"),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise JobQueueError(f"Undecodable job message: {exc}") from exc


@dataclass(slots=True, frozen=True)
class ReceivedJob:
    envelope: JobEnvelope
    receipt_handle: str


class JobQueue(Protocol):
    def enqueue(self, topic: str, payload: dict[str, Any], options: JobOptions) -> str:
        """Publish ``payload`` on ``topic`` and return the message id."""


class SQSJobQueue:
    """Publishes and consumes :class:`JobEnvelope` messages on per-topic SQS queues."""

    def __init__(
        self,
        *,
        sqs_client: Any,
        queue_urls: Mapping[str, str],
        dead_letter_queue_urls: Mapping[str, str] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._sqs = sqs_client
        self._queue_urls = dict(queue_urls)
        self._dead_letter_urls = dict(dead_letter_queue_urls or {})
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_settings(cls, settings: Settings, *, sqs_client: Any | None = None) -> "SQSJobQueue":
        client = sqs_client or boto3.client(
            "sqs",
            region_name=settings.aws_region,
            endpoint_url=settings.sqs_endpoint_url,
        )
        return cls(
            sqs_client=client,
            queue_urls={
                VALIDATE_RECEIPT_TOPIC: settings.validation_queue_url,
                GENERATE_REPORT_TOPIC: settings.report_queue_url,
            },
            dead_letter_queue_urls={
                VALIDATE_RECEIPT_TOPIC: settings.validation_dead_letter_queue_url,
                GENERATE_REPORT_TOPIC: settings.report_dead_letter_queue_url,
            },
        )

    def queue_url(self, topic: str) -> str:
        try:
            return self._queue_urls[topic]
        except KeyError as exc:
            raise JobQueueError(f"No queue configured for topic '{topic}'") from exc

    def enqueue(self, topic: str, payload: dict[str, Any], options: JobOptions) -> str:
        now = self._clock()
        not_before = None
        if options.delay_seconds > 0:
            not_before = (now + timedelta(seconds=options.delay_seconds)).isoformat()
        envelope = JobEnvelope(
            topic=topic,
            job_key=options.job_key,
            payload=payload,
            attempt=1,
            max_attempts=options.retry.max_attempts,
            backoff_seconds=options.retry.backoff_seconds,
            not_before=not_before,
            enqueued_at=now.isoformat(),
            traceparent=current_traceparent(),
        )
        return self.send(envelope)

    def send(self, envelope: JobEnvelope) -> str:
        delay = int(min(envelope.remaining_delay(self._clock()), SQS_MAX_DELAY_SECONDS))
        request: dict[str, Any] = {
            "QueueUrl": self.queue_url(envelope.topic),
            "MessageBody": envelope.to_json(),
        }
        if delay > 0:
            request["DelaySeconds"] = delay
        response = self._sqs.send_message(**request)
        message_id = str(response.get("MessageId") or uuid4().hex)
        logger.debug(
            "enqueued job",
            extra={
                "topic": envelope.topic,
                "job_key": envelope.job_key,
                "attempt": envelope.attempt,
                "delay_seconds": delay,
            },
        )
        return message_id

    def receive(self, topic: str, *, max_messages: int = 5, wait_seconds: int = 1) -> list[ReceivedJob]:
        """Fetch messages; undecodable bodies are dead-lettered and acknowledged here."""
        response = self._sqs.receive_message(
            QueueUrl=self.queue_url(topic),
            MaxNumberOfMessages=max_messages,
            WaitTimeSeconds=wait_seconds,
        )
        jobs: list[ReceivedJob] = []
        for message in response.get("Messages", []):
            body = message.get("Body", "")
            receipt = message.get("ReceiptHandle", "")
            try:
                envelope = JobEnvelope.from_json(body)
            except JobQueueError as exc:
                logger.error("invalid job message", extra={"topic": topic, "body": body})
                self._send_dead_letter(topic, {"body": body, "error": str(exc)})
                self.acknowledge(topic, receipt)
                continue
            jobs.append(ReceivedJob(envelope=envelope, receipt_handle=receipt))
        return jobs

    def acknowledge(self, topic: str, receipt_handle: str) -> None:
        if receipt_handle:
            self._sqs.delete_message(QueueUrl=self.queue_url(topic), ReceiptHandle=receipt_handle)

    def defer_if_early(self, job: ReceivedJob) -> bool:
        """Re-send a job whose ``not_before`` lies beyond what SQS could delay."""
        if job.envelope.remaining_delay(self._clock()) <= 0:
            return False
        self.send(job.envelope)
        self.acknowledge(job.envelope.topic, job.receipt_handle)
        return True

    def retry_later(self, job: ReceivedJob, *, error: str) -> bool:
        """Schedule the next attempt, or dead-letter once the policy is exhausted.

        Returns ``True`` when a retry was scheduled. The original message is
        acknowledged either way.
        """
        envelope = job.envelope
        if envelope.retry_policy.exhausted(envelope.attempt):
            logger.error(
                "job retries exhausted; moved to dead-letter queue for manual review",
                extra={"topic": envelope.topic, "job_key": envelope.job_key, "attempt": envelope.attempt},
            )
            self.dead_letter(envelope, error=error)
            self.acknowledge(envelope.topic, job.receipt_handle)
            return False

        retry = envelope.next_attempt(self._clock())
        self.send(retry)
        self.acknowledge(envelope.topic, job.receipt_handle)
        logger.info(
            "job scheduled for retry",
            extra={"job_key": envelope.job_key, "attempt": retry.attempt, "not_before": retry.not_before},
        )
        return True

    def dead_letter(self, envelope: JobEnvelope, *, error: str) -> None:
        self._send_dead_letter(
            envelope.topic,
            {"job": json.loads(envelope.to_json()), "error": error, "failed_at": self._clock().isoformat()},
        )

    def _send_dead_letter(self, topic: str, body: dict[str, Any]) -> None:
        url = self._dead_letter_urls.get(topic)
        if url is None:
            raise JobQueueError(f"No dead-letter queue configured for topic '{topic}'")
        self._sqs.send_message(QueueUrl=url, MessageBody=json.dumps(body))


def enqueue_purchase_validation(queue: JobQueue, purchase_id: str, settings: Settings) -> str:
    """Enqueue validation of a pending purchase under its stable job key."""
    options = JobOptions(job_key=f"validate-{purchase_id}", retry=RetryPolicy.for_validation(settings))
    return queue.enqueue(VALIDATE_RECEIPT_TOPIC, {"purchaseId": purchase_id}, options)


def enqueue_monthly_report(queue: JobQueue, month: str | None = None, *, now: datetime | None = None) -> str:
    """Enqueue report generation for ``month``, defaulting to the month before ``now``.

    The month is fixed here so a retried job never drifts into the next month.
    """
    month = month or previous_month(now or datetime.now(timezone.utc))
    options = JobOptions(
        job_key=f"monthly-report-{month}",
        retry=RetryPolicy(max_attempts=3, backoff_seconds=(60, 300)),
    )
    return queue.enqueue(GENERATE_REPORT_TOPIC, {"month": month}, options)


__all__ = [
    "GENERATE_REPORT_TOPIC",
    "JobEnvelope",
    "JobOptions",
    "JobQueue",
    "JobQueueError",
    "ReceivedJob",
    "RetryPolicy",
    "SQSJobQueue",
    "SQS_MAX_DELAY_SECONDS",
    "VALIDATE_RECEIPT_TOPIC",
    "enqueue_monthly_report",
    "enqueue_purchase_validation",
]
