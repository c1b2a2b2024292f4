"""Stripe subscription billing: webhook ingestion, the subscription read model and access decisions."""
