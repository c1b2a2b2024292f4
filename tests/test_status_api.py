from datetime import datetime, timedelta, timezone

from helpers import seed_subscription


def test_status_requires_bearer(client):
    resp = client.get("/api/me/subscription-status")
    assert resp.status_code == 401
    assert resp.get_json() == {"error": "Unauthorized"}


def test_status_rejects_invalid_token(client):
    resp = client.get("/api/me/subscription-status", headers={"Authorization": "Bearer garbage"})
    assert resp.status_code == 401


def test_status_for_never_subscribed_user(client, auth_headers):
    resp = client.get("/api/me/subscription-status", headers=auth_headers("fresh-user"))
    assert resp.status_code == 200
    assert resp.get_json() == {
        "route": "/subscribe",
        "access": "none",
        "isActive": False,
        "hasHistory": False,
        "status": None,
        "reason": "no_history",
    }


def test_status_for_active_user(app, client, auth_headers):
    with app.app_context():
        seed_subscription(status="active")

    body = client.get("/api/me/subscription-status", headers=auth_headers("user-1")).get_json()

    assert body["route"] == "/dashboard"
    assert body["access"] == "full"
    assert body["isActive"] is True
    assert body["status"] == "active"


def test_status_for_lapsed_user(app, client, auth_headers):
    with app.app_context():
        seed_subscription(status="canceled", period_end=datetime.now(timezone.utc) - timedelta(seconds=1))

    body = client.get("/api/me/subscription-status", headers=auth_headers("user-1")).get_json()

    assert body["access"] == "limited"
    assert body["reason"] == "inactive"
    assert body["hasHistory"] is True


def test_status_accepts_cookie_token(app, client, token_for):
    client.set_cookie(app.config["AUTH_COOKIE_NAME"], token_for("cookie-user"))
    resp = client.get("/api/me/subscription-status")
    assert resp.status_code == 200
    assert resp.get_json()["reason"] == "no_history"


def test_subscription_detail(app, client, auth_headers):
    resp = client.get("/api/me/subscription", headers=auth_headers("user-1"))
    assert resp.get_json() == {"subscription": None}

    with app.app_context():
        seed_subscription(
            status="active",
            period_end=datetime(2030, 3, 17, 17, 46, 40, tzinfo=timezone.utc),
            cancel_at_period_end=True,
        )

    body = client.get("/api/me/subscription", headers=auth_headers("user-1")).get_json()["subscription"]
    assert body["status"] == "active"
    assert body["current_period_end"] == "2030-03-17T17:46:40.000Z"
    assert body["cancel_at_period_end"] is True
    assert "user_id" not in body
