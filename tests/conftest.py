from __future__ import annotations

import os
import sys
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any
from uuid import uuid4

import pytest

os.environ.setdefault("APPLE_SHARED_SECRET", "test-shared-secret")
os.environ.setdefault("APPLE_FEE_RATE", "0.30")
os.environ.setdefault("DONATION_RATE", "0.10")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("ENABLE_TRACING", "false")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from mindlock.api.deps import get_db_session, get_job_queue
from mindlock.main import app
from mindlock.models import Base, Charity, Purchase, PurchaseStatus
from mindlock.services.jobs import GENERATE_REPORT_TOPIC, VALIDATE_RECEIPT_TOPIC, SQSJobQueue
from mindlock.services.revenue_split import calculate_revenue_split

ADMIN_KEY = os.environ["ADMIN_API_KEY"]
VALIDATION_QUEUE_URL = "https://sqs.test/validate-receipt"
VALIDATION_DLQ_URL = "https://sqs.test/validate-receipt-dead"
REPORT_QUEUE_URL = "https://sqs.test/generate-report"
REPORT_DLQ_URL = "https://sqs.test/generate-report-dead"


class InMemorySQSClient:
    """Naïve in-memory SQS stub for unit tests."""

    def __init__(self) -> None:
        self._queues: dict[str, list[dict[str, Any]]] = {}
        self._lock = Lock()

    def send_message(
        self,
        *,
        QueueUrl: str,
        MessageBody: str,
        DelaySeconds: int = 0,
        **_: object,
    ) -> dict[str, str]:
        with self._lock:
            queue = self._queues.setdefault(QueueUrl, [])
            message_id = uuid4().hex
            queue.append(
                {
                    "MessageId": message_id,
                    "Body": MessageBody,
                    "ReceiptHandle": "",
                    "DelaySeconds": DelaySeconds,
                }
            )
            return {"MessageId": message_id}

    def receive_message(
        self,
        *,
        QueueUrl: str,
        MaxNumberOfMessages: int = 1,
        **_: object,
    ) -> dict[str, list[dict[str, str]]]:
        with self._lock:
            queue = self._queues.get(QueueUrl, [])
            if not queue:
                return {}
            messages: list[dict[str, str]] = []
            for entry in queue[:MaxNumberOfMessages]:
                if not entry["ReceiptHandle"]:
                    entry["ReceiptHandle"] = uuid4().hex
                messages.append(
                    {
                        "MessageId": entry["MessageId"],
                        "ReceiptHandle": entry["ReceiptHandle"],
                        "Body": entry["Body"],
                    }
                )
            return {"Messages": messages}

    def delete_message(self, *, QueueUrl: str, ReceiptHandle: str, **_: object) -> None:
        with self._lock:
            queue = self._queues.get(QueueUrl, [])
            for index, entry in enumerate(queue):
                if entry.get("ReceiptHandle") == ReceiptHandle:
                    queue.pop(index)
                    break

    def queue(self, queue_url: str) -> list[dict[str, Any]]:
        with self._lock:
            return [dict(item) for item in self._queues.get(queue_url, [])]


DATABASE_URL = "sqlite+pysqlite:///./test_suite.db"


engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on round-trip; stored values are always UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


@pytest.fixture()
def db_session() -> Iterator[Session]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()

    session.add_all(
        [
            Charity(id="charity-ocean", name="Ocean Cleanup Fund"),
            Charity(id="charity-reading", name="Reading Together"),
        ]
    )
    session.commit()

    yield session
    session.close()


@pytest.fixture()
def make_purchase(db_session: Session):
    """Insert a pending purchase with the default 0.30 / 0.10 split and commit it."""

    def _make(
        *,
        charity_id: str = "charity-ocean",
        gross_cents: int = 199,
        product_id: str = "com.mindlock.donation.tier1",
        apple_transaction_id: str | None = "T1",
        receipt_data: str | None = "base64-receipt",
        transaction_jws: str | None = None,
        status: PurchaseStatus = PurchaseStatus.PENDING_VALIDATION,
        completed_at: datetime | None = None,
        created_at: datetime | None = None,
    ) -> Purchase:
        split = calculate_revenue_split(gross_cents, apple_fee_rate="0.30", donation_rate="0.10")
        purchase = Purchase(
            user_id="user-1",
            charity_id=charity_id,
            product_id=product_id,
            apple_transaction_id=apple_transaction_id,
            receipt_data=receipt_data,
            transaction_jws=transaction_jws,
            status=status,
            gross_cents=split.gross_cents,
            apple_fee_cents=split.apple_fee_cents,
            net_cents=split.net_cents,
            donation_cents=split.donation_cents,
            completed_at=completed_at,
        )
        if created_at is not None:
            purchase.created_at = created_at
        db_session.add(purchase)
        db_session.commit()
        return purchase

    return _make


@pytest.fixture()
def sqs_client() -> InMemorySQSClient:
    return InMemorySQSClient()


@pytest.fixture()
def job_queue(sqs_client: InMemorySQSClient) -> SQSJobQueue:
    return SQSJobQueue(
        sqs_client=sqs_client,
        queue_urls={VALIDATE_RECEIPT_TOPIC: VALIDATION_QUEUE_URL, GENERATE_REPORT_TOPIC: REPORT_QUEUE_URL},
        dead_letter_queue_urls={VALIDATE_RECEIPT_TOPIC: VALIDATION_DLQ_URL, GENERATE_REPORT_TOPIC: REPORT_DLQ_URL},
    )


@pytest.fixture()
def client(db_session: Session, job_queue: SQSJobQueue) -> Iterator[TestClient]:
    def override_get_db() -> Iterator[Session]:
        try:
            yield db_session
        finally:
            db_session.rollback()

    app.dependency_overrides[get_db_session] = override_get_db
    app.dependency_overrides[get_job_queue] = lambda: job_queue

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.pop(get_db_session, None)
    app.dependency_overrides.pop(get_job_queue, None)


@pytest.fixture()
def admin_headers() -> dict[str, str]:
    return {"X-Admin-Key": ADMIN_KEY}
