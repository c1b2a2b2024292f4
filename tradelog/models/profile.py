from sqlalchemy import func
from tradelog.extensions import db


class Profile(db.Model):
    """Per-user row keyed by the identity provider's user id."""
    __tablename__ = "profiles"

    id = db.Column(db.String(64), primary_key=True)
    email = db.Column(db.String(255), nullable=True)

    # Written once, only while still null (see billing.repository)
    stripe_customer_id = db.Column(db.String(64), nullable=True, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<Profile id={self.id!r} stripe_customer_id={self.stripe_customer_id!r}>"
