from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

from mindlock.core.config import get_settings
from mindlock.models import PurchaseStatus
from scripts.requeue_pending import requeue_pending
from scripts.run_report import parse_args
from scripts.seed_charities import DEMO_CHARITIES, seed
from tests.conftest import VALIDATION_QUEUE_URL

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def test_requeue_pending_only_targets_stale_pending_purchases(db_session, make_purchase, job_queue, sqs_client) -> None:
    stale = make_purchase(apple_transaction_id="T-stale", created_at=NOW - timedelta(hours=3))
    make_purchase(apple_transaction_id="T-fresh", created_at=NOW - timedelta(minutes=5))
    make_purchase(
        apple_transaction_id="T-done",
        created_at=NOW - timedelta(hours=3),
        status=PurchaseStatus.COMPLETED,
        completed_at=NOW - timedelta(hours=2),
    )

    requeued = requeue_pending(db_session, job_queue, get_settings(), older_than=timedelta(hours=1), now=NOW)

    assert requeued == [stale.id]
    [message] = sqs_client.queue(VALIDATION_QUEUE_URL)
    body = json.loads(message["Body"])
    assert body["job_key"] == f"validate-{stale.id}"
    assert body["payload"] == {"purchaseId": stale.id}


def test_seed_charities_is_idempotent(db_session) -> None:
    first = seed(db_session)
    db_session.commit()
    second = seed(db_session)
    db_session.commit()

    assert first == len(DEMO_CHARITIES)
    assert second == 0


def test_run_report_arguments() -> None:
    args = parse_args(["2024-04", "--inline"])
    assert args.month == "2024-04"
    assert args.inline is True

    defaults = parse_args([])
    assert defaults.month is None
    assert defaults.inline is False
