import json

import click
from flask import current_app
from flask.cli import with_appcontext

from tradelog.billing.access import resolve_access_for_user
from tradelog.billing.errors import BillingError
from tradelog.billing.mapper import MappingSkipped, map_subscription
from tradelog.billing.provider import fetch_latest_invoice, get_provider
from tradelog.billing.repository import upsert_subscription
from tradelog.security.session import SignedTokenSessionAccessor, get_session_accessor


@click.group()
def billing():
    """Subscription billing ops."""


@billing.command("resync")
@click.argument("subscription_id")
@click.option("--user-id", default=None, help="Override the userId stamped in Stripe metadata")
@with_appcontext
def billing_resync(subscription_id, user_id):
    """Pull a subscription from Stripe and overwrite the local row."""
    try:
        provider = get_provider()
        subscription = provider.retrieve_subscription(subscription_id)
        invoice = fetch_latest_invoice(provider, subscription)
        mapped = map_subscription(subscription, invoice, user_id)
        if isinstance(mapped, MappingSkipped):
            raise click.ClickException(f"Cannot map {subscription_id}: {mapped.reason} (pass --user-id)")
        upsert_subscription(mapped)
    except BillingError as exc:
        raise click.ClickException(f"{type(exc).__name__}: {exc.message}")

    current_app.logger.info(
        "billing.cli.resynced",
        extra={"stripe_subscription_id": subscription_id, "user_id": mapped.user_id, "status": mapped.status},
    )
    click.echo(f"Resynced {subscription_id} user_id={mapped.user_id} status={mapped.status}")


@billing.command("access")
@click.argument("user_id")
@with_appcontext
def billing_access(user_id):
    """Print the access decision for a user."""
    decision = resolve_access_for_user(user_id)
    click.echo(json.dumps(decision.to_dict(), sort_keys=True))


@billing.command("issue-token")
@click.option("--user-id", required=True)
@click.option("--email", default=None)
@with_appcontext
def billing_issue_token(user_id, email):
    """Mint a development session token (AUTH_BACKEND=signed only)."""
    accessor = get_session_accessor()
    if not isinstance(accessor, SignedTokenSessionAccessor):
        raise click.ClickException("issue-token requires AUTH_BACKEND=signed")
    click.echo(accessor.issue(user_id, email))


def register_cli(app):
    app.cli.add_command(billing)
