import copy
import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta, timezone

from tradelog.billing.errors import ProviderError
from tradelog.extensions import db
from tradelog.models import Subscription

WEBHOOK_SECRET = "whsec_test_secret"


def ts(days=0, seconds=0):
    """Epoch seconds relative to now."""
    return int((datetime.now(timezone.utc) + timedelta(days=days, seconds=seconds)).timestamp())


def sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    t = timestamp or int(time.time())
    mac = hmac.new(secret.encode("utf-8"), f"{t}.{payload}".encode("utf-8"), hashlib.sha256).hexdigest()
    return f"t={t},v1={mac}"


def event_body(event_id: str, event_type: str, obj: dict) -> str:
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "livemode": False,
        "created": int(time.time()),
        "data": {"object": obj},
    })


def post_event(client, event_id, event_type, obj):
    body = event_body(event_id, event_type, obj)
    return client.post(
        "/webhooks/stripe",
        data=body,
        headers={"Stripe-Signature": sign(body), "Content-Type": "application/json"},
    )


def stripe_subscription(
    sub_id="sub_123",
    user_id="user-1",
    status="active",
    customer="cus_123",
    period_end_days=30,
    **overrides,
):
    sub = {
        "id": sub_id,
        "object": "subscription",
        "status": status,
        "customer": customer,
        "metadata": {"userId": user_id} if user_id else {},
        "current_period_start": ts(days=-1),
        "current_period_end": ts(days=period_end_days),
        "cancel_at": None,
        "canceled_at": None,
        "ended_at": None,
        "cancel_at_period_end": False,
        "trial_start": None,
        "trial_end": None,
        "currency": "usd",
        "collection_method": "charge_automatically",
        "latest_invoice": "in_1",
        "items": {
            "object": "list",
            "data": [
                {
                    "id": "si_1",
                    "quantity": 1,
                    "price": {"id": "price_monthly", "product": "prod_journal"},
                }
            ],
        },
    }
    sub.update(overrides)
    return sub


def seed_subscription(user_id="user-1", sub_id="sub_123", status="active", period_end=None, **fields):
    """Insert a row directly; call inside an app context."""
    now = datetime.now(timezone.utc)
    row = Subscription(
        user_id=user_id,
        stripe_subscription_id=sub_id,
        stripe_customer_id=fields.pop("stripe_customer_id", "cus_123"),
        status=status,
        current_period_end=period_end if period_end is not None else now + timedelta(days=30),
        updated_at=fields.pop("updated_at", now),
        **fields,
    )
    db.session.add(row)
    db.session.commit()
    return row


class FakeProvider:
    """In-memory stand-in for StripeProvider; records every call."""

    def __init__(self):
        self.subscriptions = {}
        self.invoices = {}
        self.prices = []
        self.calls = []
        self.checkout_params = None
        self.fail_on = set()
        self._customers = 0

    def _record(self, op, *args, **kwargs):
        self.calls.append((op, args, kwargs))
        if op in self.fail_on:
            raise ProviderError()

    def add_subscription(self, sub: dict):
        self.subscriptions[sub["id"]] = copy.deepcopy(sub)

    def retrieve_subscription(self, subscription_id):
        self._record("retrieve_subscription", subscription_id)
        if subscription_id not in self.subscriptions:
            raise ProviderError("No such subscription")
        return copy.deepcopy(self.subscriptions[subscription_id])

    def update_subscription(self, subscription_id, params):
        self._record("update_subscription", subscription_id, params)
        sub = self.subscriptions[subscription_id]
        sub.update(params)
        if params.get("cancel_at_period_end"):
            sub["cancel_at"] = sub.get("current_period_end")
        return copy.deepcopy(sub)

    def retrieve_invoice(self, invoice_id):
        self._record("retrieve_invoice", invoice_id)
        if invoice_id not in self.invoices:
            raise ProviderError("No such invoice")
        return copy.deepcopy(self.invoices[invoice_id])

    def create_customer(self, *, email, user_id, idempotency_key=None):
        self._record("create_customer", email=email, user_id=user_id, idempotency_key=idempotency_key)
        self._customers += 1
        return {"id": f"cus_new_{self._customers}", "email": email, "metadata": {"userId": user_id}}

    def create_checkout_session(self, params, idempotency_key=None):
        self._record("create_checkout_session", params, idempotency_key=idempotency_key)
        self.checkout_params = params
        return {"id": "cs_test_1", "url": "https://checkout.stripe.test/c/cs_test_1"}

    def create_portal_session(self, customer_id, return_url):
        self._record("create_portal_session", customer_id, return_url=return_url)
        return {"url": f"https://billing.stripe.test/p/{customer_id}"}

    def list_prices(self, product_id):
        self._record("list_prices", product_id)
        return copy.deepcopy(self.prices)

    def called(self, op):
        return [c for c in self.calls if c[0] == op]
