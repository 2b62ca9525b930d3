from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from mindlock.core.config import get_settings
from mindlock.services.jobs import (
    SQS_MAX_DELAY_SECONDS,
    VALIDATE_RECEIPT_TOPIC,
    JobEnvelope,
    JobOptions,
    JobQueueError,
    RetryPolicy,
    SQSJobQueue,
    enqueue_monthly_report,
    enqueue_purchase_validation,
)
from tests.conftest import REPORT_QUEUE_URL, VALIDATION_DLQ_URL, VALIDATION_QUEUE_URL, InMemorySQSClient

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _queue(sqs_client: InMemorySQSClient, now: datetime = NOW) -> SQSJobQueue:
    return SQSJobQueue(
        sqs_client=sqs_client,
        queue_urls={VALIDATE_RECEIPT_TOPIC: VALIDATION_QUEUE_URL},
        dead_letter_queue_urls={VALIDATE_RECEIPT_TOPIC: VALIDATION_DLQ_URL},
        clock=lambda: now,
    )


def test_retry_policy_backoff_schedule() -> None:
    policy = RetryPolicy.for_validation(get_settings())

    assert policy.max_attempts == 5
    assert [policy.delay_after(attempt) for attempt in range(1, 7)] == [1, 10, 60, 300, 1800, 1800]
    assert not policy.exhausted(4)
    assert policy.exhausted(5)


def test_enqueue_purchase_validation_uses_stable_job_key(sqs_client: InMemorySQSClient) -> None:
    queue = _queue(sqs_client)
    enqueue_purchase_validation(queue, "purchase-1", get_settings())

    [message] = sqs_client.queue(VALIDATION_QUEUE_URL)
    body = json.loads(message["Body"])
    assert body["topic"] == VALIDATE_RECEIPT_TOPIC
    assert body["job_key"] == "validate-purchase-1"
    assert body["payload"] == {"purchaseId": "purchase-1"}
    assert body["attempt"] == 1
    assert body["max_attempts"] == 5
    assert body["backoff_seconds"] == [1, 10, 60, 300, 1800]
    assert message["DelaySeconds"] == 0


def test_long_delays_are_capped_and_recorded(sqs_client: InMemorySQSClient) -> None:
    queue = _queue(sqs_client)
    queue.enqueue(VALIDATE_RECEIPT_TOPIC, {"purchaseId": "p"}, JobOptions(job_key="k", delay_seconds=1800))

    [message] = sqs_client.queue(VALIDATION_QUEUE_URL)
    assert message["DelaySeconds"] == SQS_MAX_DELAY_SECONDS
    envelope = JobEnvelope.from_json(message["Body"])
    assert envelope.remaining_delay(NOW) == 1800


def test_early_job_is_deferred_again(sqs_client: InMemorySQSClient) -> None:
    queue = _queue(sqs_client)
    queue.enqueue(VALIDATE_RECEIPT_TOPIC, {"purchaseId": "p"}, JobOptions(job_key="k", delay_seconds=1800))
    [job] = queue.receive(VALIDATE_RECEIPT_TOPIC)

    later = _queue(sqs_client, now=NOW + timedelta(seconds=SQS_MAX_DELAY_SECONDS))
    assert later.defer_if_early(job) is True

    [message] = sqs_client.queue(VALIDATION_QUEUE_URL)
    assert message["DelaySeconds"] == 900

    due = _queue(sqs_client, now=NOW + timedelta(seconds=1800))
    [job] = due.receive(VALIDATE_RECEIPT_TOPIC)
    assert due.defer_if_early(job) is False


def test_retry_later_increments_attempt_with_backoff(sqs_client: InMemorySQSClient) -> None:
    queue = _queue(sqs_client)
    enqueue_purchase_validation(queue, "purchase-1", get_settings())
    [job] = queue.receive(VALIDATE_RECEIPT_TOPIC)

    assert queue.retry_later(job, error="Apple returned retryable status 21005") is True

    [message] = sqs_client.queue(VALIDATION_QUEUE_URL)
    envelope = JobEnvelope.from_json(message["Body"])
    assert envelope.attempt == 2
    assert envelope.remaining_delay(NOW) == 1
    assert message["DelaySeconds"] == 1
    assert sqs_client.queue(VALIDATION_DLQ_URL) == []


def test_retry_later_dead_letters_after_last_attempt(sqs_client: InMemorySQSClient) -> None:
    queue = _queue(sqs_client)
    envelope = JobEnvelope(
        topic=VALIDATE_RECEIPT_TOPIC,
        job_key="validate-purchase-1",
        payload={"purchaseId": "purchase-1"},
        attempt=5,
        max_attempts=5,
        backoff_seconds=(1, 10, 60, 300, 1800),
    )
    queue.send(envelope)
    [job] = queue.receive(VALIDATE_RECEIPT_TOPIC)

    assert queue.retry_later(job, error="still failing") is False

    assert sqs_client.queue(VALIDATION_QUEUE_URL) == []
    [dead] = sqs_client.queue(VALIDATION_DLQ_URL)
    body = json.loads(dead["Body"])
    assert body["error"] == "still failing"
    assert body["job"]["payload"] == {"purchaseId": "purchase-1"}


def test_undecodable_messages_are_dead_lettered(sqs_client: InMemorySQSClient) -> None:
    queue = _queue(sqs_client)
    sqs_client.send_message(QueueUrl=VALIDATION_QUEUE_URL, MessageBody="{not json")

    assert queue.receive(VALIDATE_RECEIPT_TOPIC) == []
    assert sqs_client.queue(VALIDATION_QUEUE_URL) == []
    [dead] = sqs_client.queue(VALIDATION_DLQ_URL)
    assert json.loads(dead["Body"])["body"] == "{not json"


def test_unknown_topic_raises(sqs_client: InMemorySQSClient) -> None:
    queue = _queue(sqs_client)
    with pytest.raises(JobQueueError):
        enqueue_monthly_report(queue, "2024-04")


def test_dead_letter_requires_configured_queue(sqs_client: InMemorySQSClient) -> None:
    queue = SQSJobQueue(sqs_client=sqs_client, queue_urls={VALIDATE_RECEIPT_TOPIC: VALIDATION_QUEUE_URL})
    envelope = JobEnvelope(topic=VALIDATE_RECEIPT_TOPIC, job_key="k", payload={})

    with pytest.raises(JobQueueError, match="dead-letter"):
        queue.dead_letter(envelope, error="boom")


def test_monthly_report_month_is_fixed_at_enqueue_time(job_queue, sqs_client: InMemorySQSClient) -> None:
    enqueue_monthly_report(job_queue, now=datetime(2024, 5, 1, 5, 0, tzinfo=timezone.utc))

    [message] = sqs_client.queue(REPORT_QUEUE_URL)
    envelope = JobEnvelope.from_json(message["Body"])
    assert envelope.payload == {"month": "2024-04"}
    assert envelope.job_key == "monthly-report-2024-04"
