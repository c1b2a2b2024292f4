from flask import current_app, jsonify, request

from ...billing.dedup import ClaimResult, claim_event, mark_processed, release_event
from ...billing.errors import BillingError
from ...billing.events import dispatch
from ...billing.provider import get_provider
from ...billing.verifier import verify_event
from ...extensions import db, limiter
from . import bp


@bp.post("/stripe")
@limiter.exempt
def stripe_webhook():
    """
    Stripe → /webhooks/stripe
    Verifies the signature over the raw body, claims the event id, then reconciles
    the subscription read model. Replays are acknowledged without side effects.
    """
    secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not secret:
        current_app.logger.error("billing.webhook.secret_missing")
        return jsonify({"error": "Server config error"}), 500

    raw_bytes = request.get_data(cache=False, as_text=False)
    try:
        event = verify_event(
            raw_bytes,
            request.headers.get("Stripe-Signature"),
            secret,
            tolerance=current_app.config.get("WEBHOOK_TOLERANCE_SECONDS", 300),
        )
    except BillingError as exc:
        return jsonify(exc.to_dict()), exc.status_code

    claim = claim_event(event.id, event.type)
    if claim is ClaimResult.DUPLICATE:
        current_app.logger.info("billing.webhook.duplicate", extra={"event_id": event.id, "event_type": event.type})
        return jsonify({"received": True, "duplicate": True}), 200

    try:
        outcome = dispatch(event, get_provider())
    except Exception:
        db.session.rollback()
        current_app.logger.exception(
            "billing.webhook.handler_error",
            extra={"event_id": event.id, "event_type": event.type},
        )
        if current_app.config.get("WEBHOOK_ACK_ON_ERROR", True):
            return jsonify({"received": True}), 200
        if claim is ClaimResult.CLAIMED:
            release_event(event.id)
        return jsonify({"error": "Webhook processing error"}), 500

    if claim is ClaimResult.CLAIMED:
        mark_processed(event.id)
    current_app.logger.info(
        "billing.webhook.processed",
        extra={"event_id": event.id, "event_type": event.type, "outcome": outcome},
    )
    return jsonify({"received": True}), 200
