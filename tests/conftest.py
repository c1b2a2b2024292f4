import os
# Ensure the app factory picks the Testing config & SQLite memory DB
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///:memory:")

import pytest
from tradelog import create_app
from tradelog.extensions import db

from helpers import FakeProvider, WEBHOOK_SECRET


@pytest.fixture(scope="session")
def app():
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "APP_BASE_URL": "http://example.test",
        "WTF_CSRF_ENABLED": False,
        "RATELIMIT_ENABLED": False,
        "STRIPE_SECRET_KEY": "sk_test_x",
        "STRIPE_WEBHOOK_SECRET": WEBHOOK_SECRET,
        "STRIPE_PRICE_ID": "price_monthly",
        "TRIAL_PERIOD_DAYS": 30,
        "LOGIN_URL": "/auth/login",
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def provider(app):
    fake = FakeProvider()
    app.extensions["billing_provider"] = fake
    yield fake
    app.extensions.pop("billing_provider", None)


@pytest.fixture()
def token_for(app):
    accessor = app.extensions["session_accessor"]

    def _issue(user_id: str, email: str = None) -> str:
        return accessor.issue(user_id, email or f"{user_id}@example.test")
    return _issue


@pytest.fixture()
def auth_headers(token_for):
    def _headers(user_id: str) -> dict:
        return {"Authorization": f"Bearer {token_for(user_id)}"}
    return _headers


@pytest.fixture(autouse=True)
def _restore_config(app):
    saved = dict(app.config)
    yield
    app.config.clear()
    app.config.update(saved)


@pytest.fixture(autouse=True)
def _db_clean(app):
    # Clean BEFORE each test
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()
    yield
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()
