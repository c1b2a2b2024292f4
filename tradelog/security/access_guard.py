import time
from functools import wraps
from typing import Callable

from flask import current_app, jsonify, redirect, request, session
from flask_login import current_user

from ..billing.access import ACCESS_FULL, ACCESS_LIMITED, ROUTE_SUBSCRIBE, AccessDecision, resolve_access_for_user
from .session import extract_token

_CACHE_KEY = "access_decision"
SETTINGS_PATH = "/dashboard/settings"


def forget_cached_decision():
    session.pop(_CACHE_KEY, None)


def _cached_decision(user_id: str) -> AccessDecision:
    ttl = int(current_app.config.get("ACCESS_DECISION_CACHE_SECONDS", 60))
    cached = session.get(_CACHE_KEY)
    now = time.time()
    if (
        ttl > 0
        and isinstance(cached, dict)
        and cached.get("user_id") == user_id
        and now - float(cached.get("at", 0)) < ttl
    ):
        return AccessDecision.from_dict(cached.get("decision") or {})

    decision = resolve_access_for_user(user_id)
    if ttl > 0:
        session[_CACHE_KEY] = {"user_id": user_id, "at": now, "decision": decision.to_dict()}
    return decision


def _wants_json() -> bool:
    return (
        "application/json" in (request.headers.get("Accept") or "").lower()
        or request.is_json
    )


def guard_dashboard():
    """
    before_request hook for the dashboard blueprint.

    Returns None to continue, or a redirect:
      - no token / unknown user → login page
      - never subscribed → /subscribe
      - subscribed but inactive → only the settings page (manage billing)
    """
    if not extract_token():
        return redirect(current_app.config.get("LOGIN_URL", "/auth/login"))
    if not current_user.is_authenticated:
        forget_cached_decision()
        return redirect(current_app.config.get("LOGIN_URL", "/auth/login"))

    decision = _cached_decision(current_user.id)
    return gate_response(decision, request.path)


def gate_response(decision: AccessDecision, path: str):
    if decision.route == ROUTE_SUBSCRIBE:
        return redirect(ROUTE_SUBSCRIBE)
    if decision.access == ACCESS_LIMITED and path.rstrip("/") != SETTINGS_PATH:
        return redirect(SETTINGS_PATH)
    return None


def require_full_access(fn: Callable):
    """Authoritative check: always a fresh decision, never the cached one."""
    @wraps(fn)
    def _wrap(*args, **kwargs):
        if not current_user.is_authenticated:
            return current_app.login_manager.unauthorized()
        decision = resolve_access_for_user(current_user.id)
        if decision.access != ACCESS_FULL:
            forget_cached_decision()
            if _wants_json():
                return jsonify({"error": "subscription_required", "access": decision.access}), 403
            return redirect("/dashboard/")
        return fn(*args, **kwargs)
    return _wrap
