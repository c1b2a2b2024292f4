from flask import current_app
from sqlalchemy import select, update, or_
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from tradelog.extensions import db
from tradelog.models import Profile, Subscription
from .errors import ConfigurationError, PersistenceError
from .mapper import SubscriptionRecord, TIMESTAMP_FIELDS, parse_iso

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def _insert(model):
    dialect = db.session.get_bind().dialect.name
    factory = _INSERTS.get(dialect)
    if factory is None:
        raise ConfigurationError(f"Upserts are not supported on {dialect}")
    return factory(model)


def _record_values(record: SubscriptionRecord) -> dict:
    values = record.to_dict()
    for name in TIMESTAMP_FIELDS:
        values[name] = parse_iso(values[name])
    return values


def _fail(op: str, exc: Exception, **context):
    db.session.rollback()
    current_app.logger.error(
        f"billing.repository.{op}_failed",
        extra={"error": type(exc).__name__, **context},
    )
    return PersistenceError()


def upsert_subscription(record: SubscriptionRecord) -> Subscription:
    """
    Insert or overwrite the row for record.stripe_subscription_id.

    Conflict policy is last-write-wins on every mapped field; created_at keeps its
    first-insert value. The unique index is what serializes concurrent writers.
    """
    values = _record_values(record)
    try:
        stmt = _insert(Subscription).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Subscription.stripe_subscription_id],
            set_={name: stmt.excluded[name] for name in values if name != "stripe_subscription_id"},
        )
        db.session.execute(stmt)
        db.session.commit()
    except SQLAlchemyError as exc:
        raise _fail(
            "upsert", exc,
            stripe_subscription_id=record.stripe_subscription_id,
            user_id=record.user_id,
        ) from exc
    return get_by_stripe_id(record.stripe_subscription_id)


def get_by_stripe_id(stripe_subscription_id: str) -> Subscription | None:
    stmt = (
        select(Subscription)
        .where(Subscription.stripe_subscription_id == stripe_subscription_id)
        .execution_options(populate_existing=True)
    )
    return db.session.execute(stmt).scalar_one_or_none()


def get_latest_for_user(user_id: str) -> Subscription | None:
    """Most recently updated row, or None when the user never subscribed."""
    try:
        stmt = (
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .order_by(Subscription.updated_at.desc(), Subscription.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return db.session.execute(stmt).scalars().first()
    except SQLAlchemyError as exc:
        raise _fail("latest", exc, user_id=user_id) from exc


def has_prior_subscription(user_id: str, customer_id: str | None = None) -> bool:
    conds = [Subscription.user_id == user_id]
    if customer_id:
        conds.append(Subscription.stripe_customer_id == customer_id)
    try:
        stmt = select(Subscription.id).where(or_(*conds)).limit(1)
        return db.session.execute(stmt).first() is not None
    except SQLAlchemyError as exc:
        raise _fail("prior_check", exc, user_id=user_id) from exc


def ensure_profile(user_id: str, email: str | None = None) -> None:
    stmt = _insert(Profile).values(id=user_id, email=email)
    stmt = stmt.on_conflict_do_nothing(index_elements=[Profile.id])
    db.session.execute(stmt)


def set_customer_id_if_missing(user_id: str, customer_id: str, email: str | None = None) -> bool:
    """
    Record the Stripe customer on the user's profile unless one is already set.

    The WHERE ... IS NULL guard keeps a concurrent writer's value; returns True
    only when this call performed the write.
    """
    try:
        ensure_profile(user_id, email)
        result = db.session.execute(
            update(Profile)
            .where(Profile.id == user_id, Profile.stripe_customer_id.is_(None))
            .values(stripe_customer_id=customer_id)
        )
        db.session.commit()
    except SQLAlchemyError as exc:
        raise _fail("customer_write", exc, user_id=user_id, stripe_customer_id=customer_id) from exc
    return result.rowcount == 1


def get_profile_customer_id(user_id: str) -> str | None:
    try:
        stmt = select(Profile.stripe_customer_id).where(Profile.id == user_id)
        return db.session.execute(stmt).scalar_one_or_none()
    except SQLAlchemyError as exc:
        raise _fail("profile_read", exc, user_id=user_id) from exc


def get_customer_id(user_id: str) -> str | None:
    """Profile link first, then the customer on the user's latest subscription."""
    customer_id = get_profile_customer_id(user_id)
    if customer_id:
        return customer_id
    latest = get_latest_for_user(user_id)
    return latest.stripe_customer_id if latest else None
