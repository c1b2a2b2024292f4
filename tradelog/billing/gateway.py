"""
User-initiated billing actions.

Each action commits at Stripe first and only then projects the result locally.
The local write is a convenience for the UI; the webhook for the same change
arrives later and re-applies identical state.
"""
import hashlib
import json
from typing import Any, Dict
from urllib.parse import urljoin

from flask import current_app

from .access import ACCESS_FULL, resolve_access_for_user
from .errors import (
    BusinessRuleError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    PersistenceError,
    ProviderError,
)
from .mapper import MappingSkipped, SubscriptionRecord, map_subscription
from .provider import fetch_latest_invoice, get_provider
from .repository import (
    get_customer_id,
    get_latest_for_user,
    get_profile_customer_id,
    has_prior_subscription,
    set_customer_id_if_missing,
    upsert_subscription,
)

CANCELLABLE_STATUSES = ("active", "trialing")


def _absolute_url(path: str) -> str:
    base = (current_app.config.get("APP_BASE_URL") or "").rstrip("/") + "/"
    return urljoin(base, path.lstrip("/"))


def make_idempotency_key(scope: str, *parts: Any) -> str:
    raw = "|".join(str(p) for p in parts)
    return f"{scope}:" + hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]


def _params_hash(d: Dict[str, Any]) -> str:
    # Stable across runs if params identical; changes when any field changes
    return hashlib.sha256(json.dumps(d, sort_keys=True, separators=(",", ":")).encode("utf-8")).hexdigest()[:16]


def resolve_price_id(provider) -> str:
    """STRIPE_PRICE_ID may name a price directly or a product (use its monthly price)."""
    configured = (current_app.config.get("STRIPE_PRICE_ID") or "").strip()
    if not configured:
        current_app.logger.error("billing.checkout.price_missing")
        raise ConfigurationError()
    if not configured.startswith("prod_"):
        return configured

    prices = provider.list_prices(configured)
    monthly = next((p for p in prices if (p.get("recurring") or {}).get("interval") == "month"), None)
    chosen = monthly or (prices[0] if prices else None)
    if not chosen:
        raise ConfigurationError("Could not resolve a Stripe Price for STRIPE_PRICE_ID")
    return chosen["id"]


def _resolve_customer(user, provider) -> str:
    customer_id = get_profile_customer_id(user.id)
    if customer_id:
        return customer_id

    customer = provider.create_customer(
        email=user.email,
        user_id=user.id,
        idempotency_key=make_idempotency_key("customer", user.id),
    )
    customer_id = customer["id"]
    current_app.logger.info("billing.checkout.customer_created", extra={"user_id": user.id, "stripe_customer_id": customer_id})

    try:
        written = set_customer_id_if_missing(user.id, customer_id, email=user.email)
    except PersistenceError:
        current_app.logger.warning(
            "billing.checkout.customer_persist_failed",
            extra={"user_id": user.id, "stripe_customer_id": customer_id},
        )
        return customer_id

    if not written:
        # A concurrent checkout linked a customer first; reuse theirs
        persisted = get_profile_customer_id(user.id)
        if persisted:
            customer_id = persisted
    return customer_id


def create_checkout(user, provider=None) -> Dict[str, Any]:
    """
    Create a Stripe Checkout Session for the configured plan.
    Returns: {"id": <session_id>, "url": <redirect_url>}
    """
    provider = provider or get_provider()

    if resolve_access_for_user(user.id).access == ACCESS_FULL:
        raise ConflictError("Subscription already active")

    price_id = resolve_price_id(provider)
    customer_id = _resolve_customer(user, provider)

    subscription_data: Dict[str, Any] = {"metadata": {"userId": user.id}}
    trial_days = int(current_app.config.get("TRIAL_PERIOD_DAYS") or 0)
    # Trial only for users (and customers) that never had a subscription
    if trial_days > 0 and not has_prior_subscription(user.id, customer_id):
        subscription_data["trial_period_days"] = trial_days

    params: Dict[str, Any] = {
        "mode": "subscription",
        "customer": customer_id,
        "line_items": [{"price": price_id, "quantity": 1}],
        "success_url": _absolute_url("subscription/success?session_id={CHECKOUT_SESSION_ID}"),
        "cancel_url": _absolute_url("subscribe"),
        "metadata": {"userId": user.id},
        "client_reference_id": user.id,
        "subscription_data": subscription_data,
        "allow_promotion_codes": False,
    }
    idem = make_idempotency_key("checkout", "v1", user.id, price_id, _params_hash(params))
    session = provider.create_checkout_session(params, idempotency_key=idem)

    url = session.get("url")
    if not url:
        raise ProviderError("Could not create checkout session")
    current_app.logger.info("billing.checkout.session_created", extra={"user_id": user.id, "session_id": session.get("id")})
    return {"id": session.get("id"), "url": url}


def create_portal_session(user, provider=None) -> Dict[str, Any]:
    """Create a Stripe Customer Portal session for the user's existing customer."""
    provider = provider or get_provider()

    customer_id = get_customer_id(user.id)
    if not customer_id:
        raise BusinessRuleError("No Stripe customer found")

    session = provider.create_portal_session(customer_id, return_url=_absolute_url("dashboard/settings"))
    url = session.get("url")
    if not url:
        raise ProviderError("Could not create portal session")
    return {"url": url}


def cancel_at_period_end(user, provider=None) -> SubscriptionRecord:
    """
    Schedule the user's current subscription to end with the paid period.

    Stripe is updated first; the returned subscription is then mapped and
    upserted so the read model reflects the change before the webhook lands.
    A failed local upsert is not an error for the caller.
    """
    provider = provider or get_provider()

    latest = get_latest_for_user(user.id)
    if latest is None or not latest.stripe_subscription_id:
        raise NotFoundError("No subscription found")
    if latest.status not in CANCELLABLE_STATUSES:
        raise BusinessRuleError("Subscription is not active or trialing")

    updated = provider.update_subscription(latest.stripe_subscription_id, {"cancel_at_period_end": True})
    invoice = fetch_latest_invoice(provider, updated)

    mapped = map_subscription(updated, invoice, user.id)
    if isinstance(mapped, MappingSkipped):
        # Explicit user id makes this unreachable short of a malformed Stripe response
        raise ProviderError("Unexpected subscription payload")

    try:
        upsert_subscription(mapped)
    except PersistenceError:
        current_app.logger.warning(
            "billing.cancel.upsert_failed",
            extra={"user_id": user.id, "stripe_subscription_id": mapped.stripe_subscription_id},
        )
    current_app.logger.info(
        "billing.cancel.scheduled",
        extra={"user_id": user.id, "stripe_subscription_id": mapped.stripe_subscription_id},
    )
    return mapped
