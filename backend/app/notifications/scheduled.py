"""Scheduled notification jobs."""

import logging
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from app.notifications.service import send_notification
from app.notifications.types import (
    SUBSCRIPTION_EXPIRED,
    SUBSCRIPTION_EXPIRING_1_DAY,
    SUBSCRIPTION_EXPIRING_3_DAYS,
)
from app.services.subscription_service import list_active_subscriptions_ending_before

logger = logging.getLogger(__name__)

WARNING_WINDOW_DAYS = 3


def _expiry_type_key(days_until_expiry: int) -> str | None:
    if days_until_expiry == 3:
        return SUBSCRIPTION_EXPIRING_3_DAYS
    if days_until_expiry == 1:
        return SUBSCRIPTION_EXPIRING_1_DAY
    if days_until_expiry <= 0:
        return SUBSCRIPTION_EXPIRED
    return None


async def check_subscription_expiry(
    db: AsyncSession, today: date | None = None, **notify_kwargs
) -> int:
    """Notify users whose active subscription ends in 3 days, 1 day, or already has.

    Meant to run once a day. Days are counted between calendar dates (UTC),
    so the time of day of the period end does not matter. Returns the number
    of notifications sent.
    """
    today = today or datetime.now(timezone.utc).date()
    cutoff = datetime.combine(today + timedelta(days=WARNING_WINDOW_DAYS), time.max)

    subscriptions = await list_active_subscriptions_ending_before(db, cutoff)
    processed = 0
    for subscription in subscriptions:
        days_until_expiry = (subscription.current_period_end.date() - today).days
        type_key = _expiry_type_key(days_until_expiry)
        if type_key is None:
            continue

        await send_notification(
            db,
            subscription.user_id,
            type_key=type_key,
            metadata={
                "subscription_id": str(subscription.id),
                "expires_at": subscription.current_period_end.isoformat(),
                "days_remaining": days_until_expiry,
            },
            **notify_kwargs,
        )
        processed += 1

    logger.info("Processed %d subscription expiry notifications", processed)
    return processed
