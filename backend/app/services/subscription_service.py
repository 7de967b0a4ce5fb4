"""Subscription service — local subscription rows kept in step with Stripe."""

import logging
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.payload import (
    SubscriptionPayload,
    build_subscription_payload,
    extract_invoice_period,
    resolve_invoice_subscription_id,
)
from app.models.subscription import Subscription
from app.models.user import User

logger = logging.getLogger(__name__)


class SubscriptionSyncError(Exception):
    """A Stripe subscription could not be mirrored into the local table."""


# ---------------------------------------------------------------------------
# Single-row queries
# ---------------------------------------------------------------------------


async def get_user_by_stripe_customer_id(
    db: AsyncSession, stripe_customer_id: str
) -> User | None:
    """Look up the user owning a Stripe customer (used by webhooks)."""
    result = await db.execute(
        select(User).where(User.stripe_customer_id == stripe_customer_id)
    )
    return result.scalar_one_or_none()


async def get_subscription_by_user_id(
    db: AsyncSession, user_id: uuid.UUID
) -> Subscription | None:
    result = await db.execute(
        select(Subscription).where(Subscription.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def get_subscription_by_stripe_subscription_id(
    db: AsyncSession, stripe_subscription_id: str
) -> Subscription | None:
    """Look up subscription by Stripe subscription ID (used by webhooks)."""
    result = await db.execute(
        select(Subscription).where(
            Subscription.stripe_subscription_id == stripe_subscription_id
        )
    )
    return result.scalar_one_or_none()


async def list_active_subscriptions_ending_before(
    db: AsyncSession, cutoff: datetime
) -> list[Subscription]:
    """Active subscriptions whose current period ends on or before ``cutoff``."""
    result = await db.execute(
        select(Subscription)
        .where(
            Subscription.status == "active",
            Subscription.current_period_end <= cutoff,
        )
        .order_by(Subscription.current_period_end)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Single-row writes
# ---------------------------------------------------------------------------


async def create_subscription_record(
    db: AsyncSession, user_id: uuid.UUID, payload: SubscriptionPayload
) -> Subscription:
    subscription = Subscription(user_id=user_id, **payload.as_record())
    db.add(subscription)
    await db.flush()
    logger.info(
        "Created subscription %s for user %s: plan=%s, status=%s",
        subscription.id,
        user_id,
        payload.plan,
        payload.status,
    )
    return subscription


async def update_subscription_record(
    db: AsyncSession, subscription: Subscription, **fields: Any
) -> Subscription:
    """Assign the given columns on an existing row and flush."""
    for name, value in fields.items():
        setattr(subscription, name, value)
    await db.flush()
    return subscription


async def delete_subscription_record(
    db: AsyncSession, subscription: Subscription
) -> None:
    await db.delete(subscription)
    await db.flush()
    logger.info(
        "Deleted subscription %s (user %s, stripe %s)",
        subscription.id,
        subscription.user_id,
        subscription.stripe_subscription_id,
    )


# ---------------------------------------------------------------------------
# Stripe sync
# ---------------------------------------------------------------------------


async def sync_stripe_subscription(
    db: AsyncSession, user_id: uuid.UUID, stripe_subscription: Any
) -> Subscription:
    """Upsert the user's subscription row from a Stripe subscription snapshot.

    The existing row (looked up by user) has every payload column replaced;
    without one a new row is inserted. There is no ordering check against
    previously applied events: the last snapshot processed wins.

    Raises:
        SubscriptionSyncError: the snapshot is missing a price, a known plan
            lookup key, a recognized status, a billing period or a customer.
    """
    payload = build_subscription_payload(stripe_subscription)
    if payload is None:
        raise SubscriptionSyncError("Could not build subscription payload from Stripe data")

    existing = await get_subscription_by_user_id(db, user_id)
    if existing is None:
        return await create_subscription_record(db, user_id, payload)

    updated = await update_subscription_record(db, existing, **payload.as_record())
    logger.info(
        "Updated subscription %s for user %s: plan=%s, status=%s",
        updated.id,
        user_id,
        payload.plan,
        payload.status,
    )
    return updated


async def refresh_subscription_period_from_invoice(
    db: AsyncSession, invoice: Any
) -> Subscription | None:
    """Copy the billing period of a new invoice onto its local subscription.

    Returns None, without touching anything, when the invoice has no
    subscription, its first line carries no usable period, or no local row
    matches. Only the two period columns are written.
    """
    stripe_subscription_id = resolve_invoice_subscription_id(invoice)
    if not stripe_subscription_id:
        return None

    period = extract_invoice_period(invoice)
    if period is None:
        return None

    subscription = await get_subscription_by_stripe_subscription_id(db, stripe_subscription_id)
    if subscription is None:
        return None

    updated = await update_subscription_record(
        db,
        subscription,
        current_period_start=period.start_datetime,
        current_period_end=period.end_datetime,
    )
    logger.info(
        "Refreshed period of subscription %s from invoice: %s -> %s",
        updated.id,
        updated.current_period_start,
        updated.current_period_end,
    )
    return updated
