"""Async Stripe API wrapper for Budget-ch."""

import logging
from typing import Any

import stripe
from stripe import StripeClient

from app.billing.plans import SUBSCRIPTION_LOOKUP_KEYS
from app.config import settings

logger = logging.getLogger(__name__)


def get_stripe_client() -> StripeClient:
    """Create a StripeClient instance with async HTTP support."""
    return StripeClient(
        settings.stripe_secret_key,
        http_client=stripe.HTTPXClient(),
    )


async def create_customer(email: str, name: str, user_id: str) -> stripe.Customer:
    """Create a Stripe customer linked to a Budget-ch user."""
    client = get_stripe_client()
    logger.info("Creating Stripe customer for user %s (%s)", user_id, email)
    customer = await client.v1.customers.create_async(
        params={
            "email": email,
            "name": name,
            "metadata": {"app_user_id": user_id},
        }
    )
    logger.info("Created Stripe customer %s for user %s", customer.id, user_id)
    return customer


async def list_plan_prices() -> list[stripe.Price]:
    """Fetch the active prices behind the plan lookup keys."""
    client = get_stripe_client()
    prices = await client.v1.prices.list_async(
        params={
            "lookup_keys": SUBSCRIPTION_LOOKUP_KEYS,
            "active": True,
        }
    )
    return list(prices.data)


async def get_price_by_lookup_key(lookup_key: str) -> stripe.Price | None:
    """Return the active price for a lookup key, or None if Stripe has none."""
    client = get_stripe_client()
    prices = await client.v1.prices.list_async(
        params={
            "lookup_keys": [lookup_key],
            "active": True,
            "limit": 1,
        }
    )
    if not prices.data:
        logger.warning("No active Stripe price for lookup key %s", lookup_key)
        return None
    return prices.data[0]


async def create_subscription(params: dict[str, Any]) -> stripe.Subscription:
    """Create a Stripe subscription (used for admin-granted plans)."""
    client = get_stripe_client()
    logger.info("Creating Stripe subscription for customer %s", params.get("customer"))
    return await client.v1.subscriptions.create_async(params=params)


def construct_webhook_event(payload: bytes, sig_header: str, webhook_secret: str) -> stripe.Event:
    """Verify the Stripe signature of a webhook body and parse the event.

    Raises ``stripe.SignatureVerificationError`` for a bad signature and
    ``ValueError`` for a body that is not valid JSON.
    """
    return stripe.Webhook.construct_event(payload, sig_header, webhook_secret)
