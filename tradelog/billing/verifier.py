import json
from dataclasses import dataclass, field
from typing import Any

import stripe
from flask import current_app

from .errors import ValidationError, WebhookSignatureError


@dataclass(frozen=True)
class ProviderEvent:
    id: str
    type: str
    data_object: dict = field(default_factory=dict)
    livemode: bool = False
    created: int | None = None


def verify_event(raw_body: bytes, signature_header: str | None, secret: str, tolerance: int = 300) -> ProviderEvent:
    """
    Authenticate a Stripe webhook delivery and parse it.

    The signature covers the exact bytes Stripe sent, so this must be handed the
    untouched request body (never a re-serialized JSON object). Callers only learn
    "missing" vs "invalid"; the underlying cause is logged here.
    """
    if not signature_header:
        raise WebhookSignatureError("Missing signature")

    try:
        payload = raw_body.decode("utf-8")
        stripe.WebhookSignature.verify_header(payload, signature_header, secret, tolerance)
    except (UnicodeDecodeError, stripe.SignatureVerificationError) as exc:
        current_app.logger.warning("billing.webhook.signature_invalid", extra={"reason": str(exc)})
        raise WebhookSignatureError("Invalid signature") from exc

    return parse_event(payload)


def parse_event(payload: str) -> ProviderEvent:
    try:
        body: Any = json.loads(payload)
    except ValueError as exc:
        raise ValidationError("Malformed event") from exc

    if not isinstance(body, dict):
        raise ValidationError("Malformed event")
    ev_id = body.get("id")
    ev_type = body.get("type")
    if not ev_id or not ev_type:
        raise ValidationError("Malformed event")

    obj = (body.get("data") or {}).get("object") or {}
    return ProviderEvent(
        id=str(ev_id),
        type=str(ev_type),
        data_object=obj if isinstance(obj, dict) else {},
        livemode=bool(body.get("livemode")),
        created=body.get("created"),
    )
