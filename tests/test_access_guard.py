from datetime import datetime, timedelta, timezone

from sqlalchemy import update

from tradelog.extensions import db
from tradelog.models import Subscription
from tradelog.security.access_guard import require_full_access

from helpers import seed_subscription


def _location(resp):
    return resp.headers["Location"]


def test_dashboard_without_token_redirects_to_login(client):
    resp = client.get("/dashboard/")
    assert resp.status_code == 302
    assert _location(resp).endswith("/auth/login")


def test_dashboard_with_invalid_token_redirects_to_login(client):
    resp = client.get("/dashboard/", headers={"Authorization": "Bearer nope"})
    assert resp.status_code == 302
    assert _location(resp).endswith("/auth/login")


def test_never_subscribed_goes_to_subscribe(client, auth_headers):
    resp = client.get("/dashboard/table", headers=auth_headers("fresh-user"))
    assert resp.status_code == 302
    assert _location(resp).endswith("/subscribe")


def test_limited_user_only_reaches_settings(app, client, auth_headers):
    with app.app_context():
        seed_subscription(status="past_due")
    headers = auth_headers("user-1")

    for path in ("/dashboard/", "/dashboard/table", "/dashboard/calendar", "/dashboard/analysis", "/dashboard/memo"):
        resp = client.get(path, headers=headers)
        assert resp.status_code == 302, path
        assert _location(resp).endswith("/dashboard/settings")

    assert client.get("/dashboard/settings", headers=headers).status_code == 200


def test_full_user_reaches_every_page(app, client, auth_headers):
    with app.app_context():
        seed_subscription(status="trialing")
    headers = auth_headers("user-1")

    for path in ("/dashboard/", "/dashboard/table", "/dashboard/memo", "/dashboard/settings"):
        assert client.get(path, headers=headers).status_code == 200, path


def test_fresh_check_overrides_stale_cached_decision(app, client, auth_headers):
    with app.app_context():
        seed_subscription(status="active")
    headers = auth_headers("user-1")

    assert client.get("/dashboard/table", headers=headers).status_code == 200

    with app.app_context():
        db.session.execute(update(Subscription).values(status="unpaid"))
        db.session.commit()

    # Cached "full" lets the request through the coarse gate; the page itself refuses
    resp = client.get("/dashboard/table", headers=headers)
    assert resp.status_code == 302
    assert _location(resp).endswith("/dashboard/")

    resp = client.get("/dashboard/", headers=headers)
    assert resp.status_code == 302
    assert _location(resp).endswith("/dashboard/settings")


def test_fresh_check_returns_json_403(app, client, auth_headers):
    with app.app_context():
        seed_subscription(status="canceled", period_end=datetime.now(timezone.utc) - timedelta(days=1))
    app.config["ACCESS_DECISION_CACHE_SECONDS"] = 0
    headers = {**auth_headers("user-1"), "Accept": "application/json"}

    @require_full_access
    def _premium():
        return "ok"

    with app.test_request_context("/dashboard/analysis", headers=headers):
        body, status = _premium()
        assert status == 403
        assert body.get_json() == {"error": "subscription_required", "access": "limited"}


def test_checkout_success_page_clears_cached_decision(app, client, auth_headers):
    headers = auth_headers("user-1")
    resp = client.get("/dashboard/", headers=headers)
    assert _location(resp).endswith("/subscribe")

    with app.app_context():
        seed_subscription(status="active")

    assert client.get("/subscription/success?session_id=cs_1").status_code == 200
    assert client.get("/dashboard/", headers=headers).status_code == 200
