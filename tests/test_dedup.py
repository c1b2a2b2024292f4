import threading

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from tradelog.billing.dedup import (
    ClaimResult,
    claim_event,
    is_unique_violation,
    mark_processed,
    release_event,
)
from tradelog import create_app
from tradelog.extensions import db
from tradelog.models import ProcessedStripeEvent

from helpers import WEBHOOK_SECRET


def _marker(event_id):
    return db.session.execute(
        select(ProcessedStripeEvent)
        .where(ProcessedStripeEvent.event_id == event_id)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def test_first_claim_wins_repeats_are_duplicates(app):
    with app.app_context():
        assert claim_event("evt_1", "customer.subscription.updated") is ClaimResult.CLAIMED
        assert claim_event("evt_1", "customer.subscription.updated") is ClaimResult.DUPLICATE
        assert claim_event("evt_1") is ClaimResult.DUPLICATE
        assert claim_event("evt_2") is ClaimResult.CLAIMED


def test_mark_processed_stamps_marker(app):
    with app.app_context():
        claim_event("evt_1", "invoice.paid")
        assert _marker("evt_1").processed_at is None
        mark_processed("evt_1")
        assert _marker("evt_1").processed_at is not None
        assert _marker("evt_1").event_type == "invoice.paid"


def test_released_event_can_be_claimed_again(app):
    with app.app_context():
        claim_event("evt_1")
        release_event("evt_1")
        assert _marker("evt_1") is None
        assert claim_event("evt_1") is ClaimResult.CLAIMED


class _PgError(Exception):
    def __init__(self, pgcode):
        super().__init__("duplicate key value violates unique constraint")
        self.pgcode = pgcode


def test_unique_violation_detection():
    assert is_unique_violation(IntegrityError("INSERT", {}, _PgError("23505"))) is True
    assert is_unique_violation(IntegrityError("INSERT", {}, _PgError("23502"))) is False
    assert is_unique_violation(IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: x.y"))) is True
    assert is_unique_violation(IntegrityError("INSERT", {}, Exception("NOT NULL constraint failed: x.y"))) is False


@pytest.fixture()
def file_app(tmp_path):
    # Separate connections need a shared on-disk database, not :memory:
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'events.db'}",
        "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 15}},
        "WTF_CSRF_ENABLED": False,
        "RATELIMIT_ENABLED": False,
        "STRIPE_SECRET_KEY": "sk_test_x",
        "STRIPE_WEBHOOK_SECRET": WEBHOOK_SECRET,
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()
        db.engine.dispose()


def test_concurrent_claims_on_separate_sessions(file_app):
    workers = 2
    barrier = threading.Barrier(workers)
    results, errors = [], []

    def _deliver():
        # Each app context gets its own session and pooled connection
        with file_app.app_context():
            try:
                barrier.wait(timeout=10)
                results.append(claim_event("evt_race", "invoice.paid"))
            except Exception as exc:
                errors.append(exc)

    threads = [threading.Thread(target=_deliver) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert errors == []
    assert sorted(r.value for r in results) == [ClaimResult.CLAIMED.value, ClaimResult.DUPLICATE.value]
    with file_app.app_context():
        count = db.session.execute(
            select(func.count()).select_from(ProcessedStripeEvent).where(ProcessedStripeEvent.event_id == "evt_race")
        ).scalar_one()
        assert count == 1
