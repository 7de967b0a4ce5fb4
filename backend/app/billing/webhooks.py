"""Stripe webhook event handlers — process subscription lifecycle events.

Handlers never raise: each one returns a :class:`HandlerResult` that the
router turns into a plain-text HTTP response. Failures are logged with the
event type that triggered them.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.payload import resolve_object_id, stripe_field
from app.services.subscription_service import (
    SubscriptionSyncError,
    delete_subscription_record,
    get_subscription_by_stripe_subscription_id,
    get_user_by_stripe_customer_id,
    refresh_subscription_period_from_invoice,
    sync_stripe_subscription,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HandlerResult:
    """Outcome of one webhook event."""

    status_code: int
    message: str
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def body(self) -> str:
        return self.error if self.error is not None else self.message


EventHandler = Callable[[AsyncSession, str, Any], Awaitable[HandlerResult]]


def _failure(status_code: int, message: str, error: str | None = None) -> HandlerResult:
    return HandlerResult(status_code=status_code, message=message, error=error or message)


async def handle_invoice_created(
    db: AsyncSession, event_type: str, invoice: Any
) -> HandlerResult:
    """Handle invoice.created — refresh the billing period of the subscription."""
    try:
        updated = await refresh_subscription_period_from_invoice(db, invoice)
    except SQLAlchemyError as e:
        logger.exception("[%s] Failed to refresh invoice period", event_type)
        return _failure(500, "Failed to refresh invoice period", str(e))

    if updated is None:
        logger.info(
            "[%s] Invoice %s required no subscription update",
            event_type,
            stripe_field(invoice, "id"),
        )
        return HandlerResult(200, "Invoice processed with no subscription updates required")

    return HandlerResult(200, "Subscription period refreshed from invoice")


async def handle_checkout_session_completed(
    db: AsyncSession, event_type: str, session: Any
) -> HandlerResult:
    """Handle checkout.session.completed — acknowledge only.

    The subscription row itself is written by the customer.subscription.*
    events that Stripe sends for the same checkout.
    """
    app_user_id = stripe_field(stripe_field(session, "metadata"), "app_user_id")
    logger.info(
        "[%s] Checkout session %s completed (app user %s)",
        event_type,
        stripe_field(session, "id"),
        app_user_id,
    )
    if app_user_id:
        return HandlerResult(200, f"Checkout session completed for {app_user_id}")
    return HandlerResult(200, "Checkout session completed")


async def _resolve_user(db: AsyncSession, event_type: str, stripe_sub: Any):
    """Find the local user behind a subscription event, or the failure result."""
    customer_id = resolve_object_id(stripe_field(stripe_sub, "customer"))
    if not customer_id:
        logger.error("[%s] Subscription event missing customer ID", event_type)
        return None, _failure(400, "Missing customer identifier")

    user = await get_user_by_stripe_customer_id(db, customer_id)
    if user is None:
        logger.error("[%s] User not found for customer %s", event_type, customer_id)
        return None, _failure(404, "User not found")

    return user, None


async def handle_subscription_lifecycle_event(
    db: AsyncSession, event_type: str, stripe_sub: Any
) -> HandlerResult:
    """Handle customer.subscription.created/updated — upsert the local row."""
    try:
        user, failure = await _resolve_user(db, event_type, stripe_sub)
        if failure is not None:
            return failure
        await sync_stripe_subscription(db, user.id, stripe_sub)
    except (SubscriptionSyncError, SQLAlchemyError) as e:
        logger.exception(
            "[%s] Failed to sync Stripe subscription %s",
            event_type,
            stripe_field(stripe_sub, "id"),
        )
        return _failure(500, "Failed to sync subscription record", str(e))

    logger.info(
        "[%s] Synced Stripe subscription %s for user %s",
        event_type,
        stripe_field(stripe_sub, "id"),
        user.id,
    )
    return HandlerResult(200, "Processed subscription event")


async def handle_subscription_deleted(
    db: AsyncSession, event_type: str, stripe_sub: Any
) -> HandlerResult:
    """Handle customer.subscription.deleted — remove the local row if present."""
    subscription_id = stripe_field(stripe_sub, "id")
    try:
        _, failure = await _resolve_user(db, event_type, stripe_sub)
        if failure is not None:
            return failure

        subscription = (
            await get_subscription_by_stripe_subscription_id(db, subscription_id)
            if subscription_id
            else None
        )
        if subscription is None:
            logger.info(
                "[%s] Subscription %s deleted but no record exists, skipping",
                event_type,
                subscription_id,
            )
            return HandlerResult(200, "No subscription record to delete")

        await delete_subscription_record(db, subscription)
    except SQLAlchemyError as e:
        logger.exception("[%s] Failed to delete subscription record %s", event_type, subscription_id)
        return _failure(500, "Failed to delete subscription record", str(e))

    return HandlerResult(200, "Deleted subscription record")


EVENT_HANDLERS: dict[str, EventHandler] = {
    "invoice.created": handle_invoice_created,
    "checkout.session.completed": handle_checkout_session_completed,
    "customer.subscription.created": handle_subscription_lifecycle_event,
    "customer.subscription.updated": handle_subscription_lifecycle_event,
    "customer.subscription.deleted": handle_subscription_deleted,
}


async def dispatch_event(db: AsyncSession, event_type: str, data_object: Any) -> HandlerResult:
    """Route one verified event to its handler."""
    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.info("[%s] Unhandled event type", event_type)
        return HandlerResult(200, "Event type not handled")
    return await handler(db, event_type, data_object)
