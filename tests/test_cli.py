import json

from sqlalchemy import select

from tradelog.extensions import db
from tradelog.models import Subscription

from helpers import seed_subscription, stripe_subscription


def test_access_command_prints_decision(app):
    with app.app_context():
        seed_subscription(status="active")

    result = app.test_cli_runner().invoke(args=["billing", "access", "user-1"])

    assert result.exit_code == 0
    payload = json.loads(result.output)
    assert payload["access"] == "full"
    assert payload["route"] == "/dashboard"


def test_issue_token_round_trips_through_accessor(app):
    result = app.test_cli_runner().invoke(args=["billing", "issue-token", "--user-id", "cli-user", "--email", "c@example.test"])

    assert result.exit_code == 0
    user = app.extensions["session_accessor"].resolve(result.output.strip())
    assert user.id == "cli-user"
    assert user.email == "c@example.test"


def test_resync_pulls_subscription_from_stripe(app, provider):
    provider.add_subscription(stripe_subscription(status="past_due"))

    result = app.test_cli_runner().invoke(args=["billing", "resync", "sub_123"])

    assert result.exit_code == 0, result.output
    assert "status=past_due" in result.output
    with app.app_context():
        assert db.session.execute(select(Subscription.status)).scalar_one() == "past_due"


def test_resync_without_user_id_needs_override(app, provider):
    provider.add_subscription(stripe_subscription(user_id=None))
    runner = app.test_cli_runner()

    result = runner.invoke(args=["billing", "resync", "sub_123"])
    assert result.exit_code != 0
    assert "no_user_id" in result.output

    result = runner.invoke(args=["billing", "resync", "sub_123", "--user-id", "user-9"])
    assert result.exit_code == 0
    with app.app_context():
        assert db.session.execute(select(Subscription.user_id)).scalar_one() == "user-9"


def test_resync_reports_provider_errors(app, provider):
    result = app.test_cli_runner().invoke(args=["billing", "resync", "sub_unknown"])
    assert result.exit_code != 0
    assert "ProviderError" in result.output
