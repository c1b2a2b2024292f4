from sqlalchemy import func
from tradelog.extensions import db


class ProcessedStripeEvent(db.Model):
    """Dedup marker: one row per Stripe event id, inserted before processing."""
    __tablename__ = "processed_stripe_events"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.String(255), nullable=False, unique=True, index=True)
    event_type = db.Column(db.String(80), nullable=True, index=True)

    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
