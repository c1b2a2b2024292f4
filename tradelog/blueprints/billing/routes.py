from flask import current_app, jsonify, request
from flask_login import current_user, login_required

from ...billing import gateway
from ...billing.errors import BillingError, ForbiddenError
from ...extensions import limiter
from . import bp


@bp.errorhandler(BillingError)
def _billing_error(exc: BillingError):
    return jsonify(exc.to_dict()), exc.status_code


def _check_claimed_user():
    # Clients may echo the user id; it must be the bearer's own
    data = request.get_json(silent=True) or {}
    claimed = data.get("userId")
    if claimed is not None and str(claimed) != current_user.id:
        current_app.logger.warning(
            "billing.request.user_mismatch",
            extra={"user_id": current_user.id, "claimed_user_id": str(claimed), "path": request.path},
        )
        raise ForbiddenError()


@bp.post("/checkout")
@limiter.limit("10/minute")
@login_required
def checkout():
    _check_claimed_user()
    try:
        session = gateway.create_checkout(current_user)
    except BillingError as exc:
        if exc.status_code >= 500:
            current_app.logger.exception(
                "billing.checkout.session_create_failed",
                extra={"user_id": current_user.id},
            )
        raise
    return jsonify({"url": session["url"]})


@bp.post("/portal")
@limiter.limit("10/minute")
@login_required
def portal():
    _check_claimed_user()
    session = gateway.create_portal_session(current_user)
    return jsonify({"url": session["url"]})


@bp.post("/cancel")
@limiter.limit("10/minute")
@login_required
def cancel():
    _check_claimed_user()
    record = gateway.cancel_at_period_end(current_user)
    return jsonify({
        "ok": True,
        "subscription": {
            "status": record.status,
            "cancel_at": record.cancel_at,
            "cancel_at_period_end": record.cancel_at_period_end,
            "current_period_end": record.current_period_end,
        },
    })
