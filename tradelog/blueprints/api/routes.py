from flask import jsonify
from flask_login import current_user, login_required

from ...billing.access import resolve_access_for_user
from ...billing.mapper import format_iso
from ...billing.repository import get_latest_for_user
from . import bp

_PROJECTED_FIELDS = (
    "status",
    "price_id",
    "product_id",
    "quantity",
    "current_period_start",
    "current_period_end",
    "trial_start",
    "trial_end",
    "cancel_at",
    "canceled_at",
    "ended_at",
    "cancel_at_period_end",
    "currency",
    "collection_method",
    "updated_at",
)


def _project(row) -> dict:
    out = {}
    for name in _PROJECTED_FIELDS:
        value = getattr(row, name)
        if hasattr(value, "isoformat"):
            value = format_iso(value)
        out[name] = value
    return out


@bp.get("/me/subscription-status")
@login_required
def subscription_status():
    """{route, access, isActive, hasHistory, status, reason} for the bearer user."""
    decision = resolve_access_for_user(current_user.id)
    return jsonify(decision.to_dict())


@bp.get("/me/subscription")
@login_required
def subscription_detail():
    row = get_latest_for_user(current_user.id)
    return jsonify({"subscription": _project(row) if row is not None else None})
