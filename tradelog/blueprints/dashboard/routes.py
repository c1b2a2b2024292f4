from flask import render_template
from flask_login import current_user

from ...billing.access import resolve_access_for_user
from ...billing.repository import get_latest_for_user
from ...security.access_guard import require_full_access
from . import bp

# Placeholder pages; trade data itself is rendered client-side
_FEATURE_PAGES = {
    "table": "Trade table",
    "calendar": "Calendar",
    "analysis": "Analysis",
    "memo": "Memo",
}


@bp.get("/")
@require_full_access
def overview():
    return render_template("dashboard/page.html", title="Dashboard")


@bp.get("/settings")
def settings():
    """Reachable with limited access so lapsed users can reactivate or manage billing."""
    decision = resolve_access_for_user(current_user.id)
    subscription = get_latest_for_user(current_user.id)
    return render_template("dashboard/settings.html", decision=decision, subscription=subscription)


def _feature_view(slug: str, title: str):
    @require_full_access
    def view():
        return render_template("dashboard/page.html", title=title)
    view.__name__ = slug
    return view


for _slug, _title in _FEATURE_PAGES.items():
    bp.add_url_rule(f"/{_slug}", endpoint=_slug, view_func=_feature_view(_slug, _title), methods=["GET"])
