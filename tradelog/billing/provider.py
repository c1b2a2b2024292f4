from typing import Any

import stripe
from flask import current_app
from stripe import StripeClient

from .errors import ConfigurationError, ProviderError
from .mapper import unwrap_id


def as_dict(obj: Any) -> dict | None:
    """StripeObject → plain dict (recursively); dicts pass through."""
    if obj is None:
        return None
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return dict(obj)


class StripeProvider:
    """Thin wrapper over StripeClient that speaks plain dicts and ProviderError."""

    def __init__(self, secret_key: str, *, timeout: float = 20, max_network_retries: int = 2):
        self.client = StripeClient(
            secret_key,
            http_client=stripe.RequestsClient(timeout=timeout),
            max_network_retries=max_network_retries,
        )

    def _call(self, op: str, fn, *args, **kwargs) -> Any:
        try:
            return fn(*args, **kwargs)
        except stripe.StripeError as exc:
            current_app.logger.error(
                f"billing.provider.{op}_failed",
                extra={"error": type(exc).__name__, "stripe_code": getattr(exc, "code", None)},
            )
            raise ProviderError(getattr(exc, "user_message", None) or "Stripe error") from exc

    def retrieve_subscription(self, subscription_id: str) -> dict:
        return as_dict(self._call("retrieve_subscription", self.client.subscriptions.retrieve, subscription_id))

    def update_subscription(self, subscription_id: str, params: dict) -> dict:
        return as_dict(self._call("update_subscription", self.client.subscriptions.update, subscription_id, params=params))

    def retrieve_invoice(self, invoice_id: str) -> dict:
        return as_dict(self._call("retrieve_invoice", self.client.invoices.retrieve, invoice_id))

    def create_customer(self, *, email: str | None, user_id: str, idempotency_key: str | None = None) -> dict:
        params = {"metadata": {"userId": user_id}}
        if email:
            params["email"] = email
        options = {"idempotency_key": idempotency_key} if idempotency_key else None
        return as_dict(self._call("create_customer", self.client.customers.create, params=params, options=options))

    def create_checkout_session(self, params: dict, idempotency_key: str | None = None) -> dict:
        options = {"idempotency_key": idempotency_key} if idempotency_key else None
        return as_dict(self._call("create_checkout_session", self.client.checkout.sessions.create, params=params, options=options))

    def create_portal_session(self, customer_id: str, return_url: str) -> dict:
        params = {"customer": customer_id, "return_url": return_url}
        return as_dict(self._call("create_portal_session", self.client.billing_portal.sessions.create, params=params))

    def list_prices(self, product_id: str) -> list[dict]:
        page = self._call("list_prices", self.client.prices.list, params={"product": product_id, "active": True, "limit": 10})
        return [as_dict(p) for p in (page.data or [])]


def get_provider():
    """The app's billing provider; tests swap in a fake via app.extensions."""
    provider = current_app.extensions.get("billing_provider")
    if provider is not None:
        return provider
    key = current_app.config.get("STRIPE_SECRET_KEY")
    if not key:
        raise ConfigurationError("STRIPE_SECRET_KEY is not configured")
    provider = StripeProvider(
        key,
        timeout=current_app.config.get("STRIPE_TIMEOUT_SECONDS", 20),
        max_network_retries=current_app.config.get("STRIPE_MAX_NETWORK_RETRIES", 2),
    )
    current_app.extensions["billing_provider"] = provider
    return provider


def fetch_latest_invoice(provider, subscription: dict) -> dict | None:
    """Best effort: a missing invoice only degrades currency/collection fields."""
    ref = subscription.get("latest_invoice")
    if isinstance(ref, dict) and ref.get("object") == "invoice" and "currency" in ref:
        return ref
    invoice_id = unwrap_id(ref)
    if not invoice_id:
        return None
    try:
        return provider.retrieve_invoice(invoice_id)
    except ProviderError:
        current_app.logger.warning(
            "billing.provider.latest_invoice_unavailable",
            extra={"invoice_id": invoice_id, "stripe_subscription_id": subscription.get("id")},
        )
        return None
