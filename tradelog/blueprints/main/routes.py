from flask import render_template, request, current_app
from flask_login import current_user

from ...billing.access import resolve_access_for_user
from ...security.access_guard import forget_cached_decision
from . import bp


@bp.get("/")
def home():
    return render_template("main/home.html")


@bp.get("/subscribe")
def subscribe():
    """Plan page; the checkout button posts to /billing/checkout with the bearer token."""
    decision = None
    if current_user.is_authenticated:
        decision = resolve_access_for_user(current_user.id)
    return render_template(
        "main/subscribe.html",
        decision=decision,
        trial_days=current_app.config.get("TRIAL_PERIOD_DAYS", 0),
    )


@bp.get("/subscription/success")
def subscription_success():
    # Checkout just finished; the next dashboard hit must not reuse a stale "no_history"
    forget_cached_decision()
    return render_template("main/success.html", session_id=request.args.get("session_id"))
