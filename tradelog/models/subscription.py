from sqlalchemy import func, text
from tradelog.extensions import db

# Stripe's subscription status vocabulary. Stored as an opaque string; only
# "active"/"trialing"/"canceled" drive access (see billing.access).
SUBSCRIPTION_STATUSES = (
    "incomplete",
    "incomplete_expired",
    "trialing",
    "active",
    "past_due",
    "canceled",
    "unpaid",
    "paused",
)


class Subscription(db.Model):
    __tablename__ = "subscriptions"

    id = db.Column(db.Integer, primary_key=True)
    # Identity-provider user id; not a DB-level foreign key
    user_id = db.Column(db.String(64), nullable=False, index=True)

    stripe_subscription_id = db.Column(db.String(64), nullable=False, unique=True, index=True)
    stripe_customer_id = db.Column(db.String(64), nullable=True, index=True)

    status = db.Column(db.String(32), nullable=False, index=True, server_default=text("'incomplete'"))

    price_id = db.Column(db.String(64), nullable=True)
    product_id = db.Column(db.String(64), nullable=True)
    quantity = db.Column(db.Integer, nullable=True)

    current_period_start = db.Column(db.DateTime(timezone=True), nullable=True)
    current_period_end = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    trial_start = db.Column(db.DateTime(timezone=True), nullable=True)
    trial_end = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_at = db.Column(db.DateTime(timezone=True), nullable=True)
    canceled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    ended_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_at_period_end = db.Column(db.Boolean, nullable=False, default=False, server_default=text("false"))

    currency = db.Column(db.String(8), nullable=True)
    latest_invoice_id = db.Column(db.String(64), nullable=True)
    collection_method = db.Column(db.String(32), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)

    def __repr__(self) -> str:
        return (
            f"<Subscription id={self.id} user_id={self.user_id!r} "
            f"stripe_subscription_id={self.stripe_subscription_id!r} status={self.status!r}>"
        )
