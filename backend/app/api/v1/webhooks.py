"""Stripe webhook endpoint — receives and processes Stripe events."""

import logging

import stripe
from fastapi import APIRouter, Request, status
from fastapi.responses import PlainTextResponse

from app.billing.stripe_client import construct_webhook_event
from app.billing.webhooks import EVENT_HANDLERS, HandlerResult, dispatch_event
from app.config import WebhookConfig
from app.database import SessionFactory, async_session_factory

logger = logging.getLogger(__name__)


def build_webhook_router(
    config: WebhookConfig,
    session_factory: SessionFactory = async_session_factory,
) -> APIRouter:
    """Create the Stripe webhook router bound to a fixed configuration.

    The secret and session factory are captured here, once, instead of being
    read from the environment on every request.
    """
    router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

    @router.post("/stripe", response_class=PlainTextResponse)
    async def stripe_webhook(request: Request) -> PlainTextResponse:
        """Receive and process Stripe webhook events."""
        # 1. Read raw body (MUST be raw bytes for signature verification)
        payload = await request.body()
        sig_header = request.headers.get("stripe-signature")

        if not sig_header:
            return PlainTextResponse(
                "Missing stripe signature", status_code=status.HTTP_400_BAD_REQUEST
            )

        if not config.webhook_secret:
            logger.error("Stripe webhook received but no webhook secret is configured")
            return PlainTextResponse(
                "Stripe webhook secret is not configured",
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        # 2. Verify signature
        try:
            event = construct_webhook_event(payload, sig_header, config.webhook_secret)
        except (stripe.SignatureVerificationError, ValueError):
            logger.warning("Webhook verification failed", exc_info=True)
            return PlainTextResponse("Webhook error", status_code=status.HTTP_400_BAD_REQUEST)

        # 3. Ignore events we do not handle without touching the database
        if event.type not in EVENT_HANDLERS:
            logger.info("[%s] Unhandled event type (id=%s)", event.type, event.id)
            return PlainTextResponse("Event type not handled", status_code=status.HTTP_200_OK)

        logger.info("Processing webhook event: %s (id=%s)", event.type, event.id)

        # 4. Own DB session per event (webhook has no request-scoped session)
        async with session_factory() as db:
            try:
                result = await dispatch_event(db, event.type, event.data.object)
                if result.ok:
                    await db.commit()
                else:
                    await db.rollback()
            except Exception as e:
                await db.rollback()
                logger.exception("[%s] Error processing webhook event %s", event.type, event.id)
                result = HandlerResult(
                    status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                    message="Webhook processing failed",
                    error=str(e),
                )

        logger.info("[%s] %s -> %s", event.type, result.body, result.status_code)
        return PlainTextResponse(result.body, status_code=result.status_code)

    return router
