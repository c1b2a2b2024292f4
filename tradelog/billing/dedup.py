import enum
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tradelog.extensions import db
from tradelog.models import ProcessedStripeEvent


class ClaimResult(enum.Enum):
    CLAIMED = "claimed"
    DUPLICATE = "duplicate"
    # Marker could not be written for a reason other than uniqueness;
    # the event is still processed (downstream writes are idempotent).
    UNTRACKED = "untracked"


def is_unique_violation(exc: IntegrityError) -> bool:
    orig = getattr(exc, "orig", None)
    # psycopg2 exposes pgcode, psycopg 3 exposes sqlstate
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code:
        return code == "23505"
    return "UNIQUE constraint failed" in str(orig or exc)


def claim_event(event_id: str, event_type: str | None = None) -> ClaimResult:
    """
    Claim the right to process ``event_id`` by inserting its marker.

    The unique index on processed_stripe_events.event_id is the only mutual
    exclusion: a concurrent or repeated delivery loses the insert and is told
    the event was already handled.
    """
    db.session.add(ProcessedStripeEvent(event_id=event_id, event_type=event_type))
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        if is_unique_violation(exc):
            return ClaimResult.DUPLICATE
        current_app.logger.error(
            "billing.webhook.claim_failed",
            extra={"event_id": event_id, "error": type(exc).__name__},
        )
        return ClaimResult.UNTRACKED
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error(
            "billing.webhook.claim_failed",
            extra={"event_id": event_id, "error": type(exc).__name__},
        )
        return ClaimResult.UNTRACKED
    return ClaimResult.CLAIMED


def mark_processed(event_id: str) -> None:
    try:
        db.session.execute(
            update(ProcessedStripeEvent)
            .where(ProcessedStripeEvent.event_id == event_id)
            .values(processed_at=datetime.now(timezone.utc))
        )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning("billing.webhook.mark_processed_failed", extra={"event_id": event_id})


def release_event(event_id: str) -> None:
    """Drop the marker so Stripe's next redelivery gets processed."""
    try:
        db.session.execute(delete(ProcessedStripeEvent).where(ProcessedStripeEvent.event_id == event_id))
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("billing.webhook.release_failed", extra={"event_id": event_id})
