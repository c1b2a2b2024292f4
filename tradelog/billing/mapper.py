"""
Stripe subscription → internal subscription record.

All knowledge of the Stripe payload shape lives here; nothing downstream ever
sees the raw payload.
"""
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any

# updated_at is not a Stripe field; it is here because the repository parses
# every ISO stamp the record carries back into a datetime
TIMESTAMP_FIELDS = (
    "current_period_start",
    "current_period_end",
    "trial_start",
    "trial_end",
    "cancel_at",
    "canceled_at",
    "ended_at",
    "updated_at",
)


@dataclass(frozen=True)
class SubscriptionRecord:
    user_id: str
    stripe_subscription_id: str
    stripe_customer_id: str | None
    status: str
    price_id: str | None = None
    product_id: str | None = None
    quantity: int | None = None
    current_period_start: str | None = None
    current_period_end: str | None = None
    trial_start: str | None = None
    trial_end: str | None = None
    cancel_at: str | None = None
    canceled_at: str | None = None
    ended_at: str | None = None
    cancel_at_period_end: bool = False
    currency: str | None = None
    latest_invoice_id: str | None = None
    collection_method: str | None = None
    updated_at: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class MappingSkipped:
    reason: str
    stripe_subscription_id: str | None = None


def epoch_to_iso(value: Any) -> str | None:
    """Epoch seconds → ``2023-11-14T22:13:20.000Z``; missing or zero → None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    if not seconds:
        return None
    dt = datetime.fromtimestamp(seconds, tz=timezone.utc)
    return format_iso(dt)


def format_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def unwrap_id(ref: Any) -> str | None:
    # Stripe references are either "xx_123" or an expanded {"id": "xx_123", ...}
    if isinstance(ref, dict):
        ref = ref.get("id")
    if ref is None or ref == "":
        return None
    return str(ref)


def _first_item(subscription: dict) -> dict | None:
    items = subscription.get("items") or {}
    data = items.get("data") if isinstance(items, dict) else items
    if not data:
        return None
    first = data[0]
    return first if isinstance(first, dict) else None


def resolve_user_id(subscription: dict, explicit_user_id: str | None = None) -> str | None:
    if explicit_user_id:
        return str(explicit_user_id)
    meta = subscription.get("metadata") or {}
    # userId is what Checkout stamps; user_id kept for subscriptions created by older code
    candidate = meta.get("userId") or meta.get("user_id")
    return str(candidate) if candidate else None


def map_subscription(
    subscription: dict,
    latest_invoice: dict | None = None,
    user_id: str | None = None,
    *,
    now: datetime | None = None,
) -> SubscriptionRecord | MappingSkipped:
    sub_id = unwrap_id(subscription.get("id"))
    final_user_id = resolve_user_id(subscription, user_id)
    if not final_user_id:
        return MappingSkipped(reason="no_user_id", stripe_subscription_id=sub_id)
    if not sub_id:
        return MappingSkipped(reason="no_subscription_id")

    item = _first_item(subscription)
    price = (item or {}).get("price") or {}
    if not isinstance(price, dict):
        price = {"id": price}

    quantity = None
    if item is not None:
        quantity = item.get("quantity") or 1

    # Since API 2025-03-31 the billing period lives on the item, not the subscription
    period_start = subscription.get("current_period_start") or (item or {}).get("current_period_start")
    period_end = subscription.get("current_period_end") or (item or {}).get("current_period_end")

    invoice = latest_invoice or None
    if invoice is not None:
        currency = invoice.get("currency") or subscription.get("currency")
        collection_method = invoice.get("collection_method") or subscription.get("collection_method")
        latest_invoice_id = unwrap_id(invoice.get("id"))
    else:
        currency = subscription.get("currency")
        collection_method = subscription.get("collection_method")
        latest_invoice_id = unwrap_id(subscription.get("latest_invoice"))

    stamped = format_iso(now or datetime.now(timezone.utc))

    return SubscriptionRecord(
        user_id=final_user_id,
        stripe_subscription_id=sub_id,
        stripe_customer_id=unwrap_id(subscription.get("customer")),
        status=str(subscription.get("status") or "incomplete"),
        price_id=unwrap_id(price.get("id")),
        product_id=unwrap_id(price.get("product")),
        quantity=quantity,
        current_period_start=epoch_to_iso(period_start),
        current_period_end=epoch_to_iso(period_end),
        trial_start=epoch_to_iso(subscription.get("trial_start")),
        trial_end=epoch_to_iso(subscription.get("trial_end")),
        cancel_at=epoch_to_iso(subscription.get("cancel_at")),
        canceled_at=epoch_to_iso(subscription.get("canceled_at")),
        ended_at=epoch_to_iso(subscription.get("ended_at")),
        cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
        currency=currency,
        latest_invoice_id=latest_invoice_id,
        collection_method=collection_method,
        updated_at=stamped,
    )
