"""Admin-granted subscriptions — free access for a fixed number of months.

The grant is a real Stripe subscription on the plan's monthly price, trialing
for the whole granted duration and set to cancel when it ends, so it flows
through the same webhooks and local sync as a paid subscription.
"""

import logging
import secrets
import string
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.plans import VALID_PLAN_NAMES, get_plan
from app.billing.stripe_client import create_customer, create_subscription, get_price_by_lookup_key
from app.models.audit_log import AuditLog
from app.models.user import User
from app.services.subscription_service import SubscriptionSyncError, sync_stripe_subscription

logger = logging.getLogger(__name__)

SECONDS_PER_GRANTED_MONTH = 30 * 24 * 60 * 60
_REFERENCE_ALPHABET = string.ascii_uppercase + string.digits


@dataclass(frozen=True)
class GrantSubscriptionResult:
    success: bool
    message: str
    subscription_id: str | None = None


def generate_reference_id() -> str:
    """Short human-readable reference for audit entries, e.g. ``REQ-7K2P``."""
    return "REQ-" + "".join(secrets.choice(_REFERENCE_ALPHABET) for _ in range(4))


async def ensure_stripe_customer(db: AsyncSession, user: User) -> str:
    """Ensure the user has a Stripe customer ID. Create one if missing."""
    if user.stripe_customer_id:
        return user.stripe_customer_id

    customer = await create_customer(
        email=user.email,
        name=user.name or user.email,
        user_id=str(user.id),
    )
    user.stripe_customer_id = customer.id
    await db.flush()
    logger.info("Linked Stripe customer %s to user %s", customer.id, user.id)
    return customer.id


async def grant_subscription(
    db: AsyncSession,
    user_id: uuid.UUID,
    plan: str,
    months: int,
    admin_id: str,
) -> GrantSubscriptionResult:
    """Give a user ``months`` of ``plan`` without payment.

    Raises:
        ValueError: unknown plan or a non-positive number of months.
    """
    if plan not in VALID_PLAN_NAMES:
        raise ValueError(f"Unknown plan: {plan}")
    if months <= 0:
        raise ValueError("months must be positive")

    user = await db.get(User, user_id)
    if user is None:
        return GrantSubscriptionResult(success=False, message="User not found")

    try:
        customer_id = await ensure_stripe_customer(db, user)

        lookup_key = get_plan(plan).monthly_lookup_key
        price = await get_price_by_lookup_key(lookup_key)
        if price is None:
            return GrantSubscriptionResult(
                success=False,
                message=f"Failed to get price: no active price for {lookup_key}",
            )

        end_timestamp = int(time.time()) + months * SECONDS_PER_GRANTED_MONTH
        stripe_sub = await create_subscription(
            {
                "customer": customer_id,
                "items": [{"price": price.id}],
                "trial_end": end_timestamp,
                "cancel_at": end_timestamp,
                "payment_behavior": "default_incomplete",
                "payment_settings": {"save_default_payment_method": "off"},
                "metadata": {
                    "granted_by": "admin",
                    "admin_id": admin_id,
                    "granted_months": str(months),
                    "grant_reason": "admin_invitation",
                },
            }
        )

        await sync_stripe_subscription(db, user.id, stripe_sub)
    except (stripe.StripeError, SubscriptionSyncError) as e:
        logger.exception("Error granting %s subscription to user %s", plan, user_id)
        return GrantSubscriptionResult(
            success=False, message=f"Failed to grant subscription: {e}"
        )

    reference = generate_reference_id()
    db.add(
        AuditLog(
            action="subscription_granted",
            affected_user_id=user.id,
            admin_id=admin_id,
            reference=reference,
            details={
                "plan": plan,
                "months": months,
                "stripe_subscription_id": stripe_sub.id,
                "ends_at": datetime.fromtimestamp(end_timestamp, tz=timezone.utc).isoformat(),
            },
        )
    )
    await db.flush()
    logger.info(
        "Admin %s granted %s plan for %d months to user %s (ref %s)",
        admin_id,
        plan,
        months,
        user.id,
        reference,
    )

    return GrantSubscriptionResult(
        success=True,
        message=f"Successfully granted {plan} subscription for {months} months",
        subscription_id=stripe_sub.id,
    )
