from flask import current_app

from .errors import PersistenceError
from .mapper import MappingSkipped, map_subscription, unwrap_id
from .provider import fetch_latest_invoice
from .repository import set_customer_id_if_missing, upsert_subscription
from .verifier import ProviderEvent

APPLIED = "applied"
SKIPPED = "skipped"
IGNORED = "ignored"

_HANDLERS = {}


def _on(*event_types):
    def register(fn):
        for event_type in event_types:
            _HANDLERS[event_type] = fn
        return fn
    return register


def dispatch(event: ProviderEvent, provider) -> str:
    """Route one verified event to its handler; unknown types are acknowledged and ignored."""
    handler = _HANDLERS.get(event.type)
    if handler is None:
        current_app.logger.info("billing.webhook.unhandled", extra={"event_id": event.id, "event_type": event.type})
        return IGNORED
    return handler(event, provider)


def _link_customer(user_id: str, customer_id: str | None, event: ProviderEvent) -> None:
    if not customer_id:
        return
    try:
        set_customer_id_if_missing(user_id, customer_id)
    except PersistenceError:
        current_app.logger.warning(
            "billing.webhook.customer_link_failed",
            extra={"event_id": event.id, "user_id": user_id, "stripe_customer_id": customer_id},
        )


def _apply(subscription: dict, invoice: dict | None, user_id: str | None, event: ProviderEvent) -> str:
    mapped = map_subscription(subscription, invoice, user_id)
    if isinstance(mapped, MappingSkipped):
        # A missing user id never heals on redelivery; log and drop
        current_app.logger.error(
            "billing.webhook.mapping_skipped",
            extra={
                "event_id": event.id,
                "event_type": event.type,
                "reason": mapped.reason,
                "stripe_subscription_id": mapped.stripe_subscription_id,
            },
        )
        return SKIPPED

    upsert_subscription(mapped)
    _link_customer(mapped.user_id, mapped.stripe_customer_id, event)
    current_app.logger.info(
        "billing.webhook.subscription_upserted",
        extra={
            "event_id": event.id,
            "event_type": event.type,
            "stripe_subscription_id": mapped.stripe_subscription_id,
            "status": mapped.status,
        },
    )
    return APPLIED


@_on("checkout.session.completed")
def _checkout_completed(event: ProviderEvent, provider) -> str:
    session = event.data_object
    user_id = (session.get("metadata") or {}).get("userId") or session.get("client_reference_id")
    if not user_id:
        current_app.logger.error(
            "billing.webhook.mapping_skipped",
            extra={"event_id": event.id, "event_type": event.type, "reason": "no_user_id", "session_id": session.get("id")},
        )
        return SKIPPED

    _link_customer(user_id, unwrap_id(session.get("customer")), event)

    subscription_id = unwrap_id(session.get("subscription"))
    if not subscription_id:
        return IGNORED

    subscription = provider.retrieve_subscription(subscription_id)
    invoice = fetch_latest_invoice(provider, subscription)
    return _apply(subscription, invoice, user_id, event)


@_on(
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
    "customer.subscription.paused",
    "customer.subscription.resumed",
)
def _subscription_changed(event: ProviderEvent, provider) -> str:
    # The event carries the full subscription object
    subscription = event.data_object
    invoice = fetch_latest_invoice(provider, subscription)
    return _apply(subscription, invoice, None, event)


def invoice_subscription_id(invoice: dict) -> str | None:
    ref = invoice.get("subscription")
    if not ref:
        # Newer API versions nest it under parent.subscription_details
        details = ((invoice.get("parent") or {}).get("subscription_details") or {})
        ref = details.get("subscription")
    return unwrap_id(ref)


@_on("invoice.paid", "invoice.payment_succeeded", "invoice.payment_failed")
def _invoice_event(event: ProviderEvent, provider) -> str:
    invoice = event.data_object
    subscription_id = invoice_subscription_id(invoice)
    if not subscription_id:
        return IGNORED

    # Status (e.g. past_due) only changes on the subscription, so re-read it
    subscription = provider.retrieve_subscription(subscription_id)
    if unwrap_id(subscription.get("latest_invoice")) != invoice.get("id"):
        invoice = fetch_latest_invoice(provider, subscription)
    return _apply(subscription, invoice, None, event)
