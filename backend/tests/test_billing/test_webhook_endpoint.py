"""End-to-end tests for POST /api/webhooks/stripe with signed payloads."""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.v1.webhooks import build_webhook_router
from app.config import WebhookConfig
from app.services.subscription_service import get_subscription_by_user_id
from conftest import (
    PERIOD_END,
    PERIOD_START,
    TEST_WEBHOOK_SECRET,
    create_subscription,
    create_user,
    make_event,
    make_invoice,
    make_stripe_sub,
    sign_payload,
)

WEBHOOK_URL = "/api/webhooks/stripe"


async def _post_event(client: AsyncClient, body: str, signature: str | None = None):
    headers = {"content-type": "application/json"}
    headers["stripe-signature"] = signature if signature is not None else sign_payload(body)
    return await client.post(WEBHOOK_URL, content=body, headers=headers)


async def _seed_user(session_factory: async_sessionmaker[AsyncSession], **kwargs):
    async with session_factory() as session:
        user = await create_user(session, **kwargs)
        await session.commit()
    return user


async def _load_subscription(session_factory: async_sessionmaker[AsyncSession], user_id):
    async with session_factory() as session:
        return await get_subscription_by_user_id(session, user_id)


def _isolated_client(config: WebhookConfig, session_factory) -> AsyncClient:
    application = FastAPI()
    application.include_router(build_webhook_router(config, session_factory))
    return AsyncClient(transport=ASGITransport(app=application), base_url="http://testserver")


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


class TestWebhookVerification:
    """Requests rejected before any event processing."""

    @pytest.mark.asyncio
    async def test_missing_signature(self, client: AsyncClient):
        resp = await client.post(WEBHOOK_URL, content=make_event("invoice.created", make_invoice()))
        assert resp.status_code == 400
        assert resp.text == "Missing stripe signature"

    @pytest.mark.asyncio
    async def test_missing_webhook_secret(self):
        session_factory = MagicMock()
        body = make_event("invoice.created", make_invoice())
        async with _isolated_client(WebhookConfig(webhook_secret=None), session_factory) as ac:
            resp = await _post_event(ac, body)

        assert resp.status_code == 500
        assert resp.text == "Stripe webhook secret is not configured"
        session_factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_tampered_payload(self, webhook_config: WebhookConfig):
        """A body that no longer matches its signature never reaches the database."""
        session_factory = MagicMock()
        original = make_event("customer.subscription.created", make_stripe_sub())
        tampered = original.replace("family_tier_monthly", "individual_tier_yearly")

        async with _isolated_client(webhook_config, session_factory) as ac:
            resp = await _post_event(ac, tampered, sign_payload(original))

        assert resp.status_code == 400
        assert resp.text == "Webhook error"
        session_factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_wrong_secret(self, client: AsyncClient):
        body = make_event("invoice.created", make_invoice())
        resp = await _post_event(client, body, sign_payload(body, secret="whsec_other"))
        assert resp.status_code == 400
        assert resp.text == "Webhook error"

    @pytest.mark.asyncio
    async def test_invalid_json(self, client: AsyncClient):
        body = "not json"
        resp = await _post_event(client, body, sign_payload(body, secret=TEST_WEBHOOK_SECRET))
        assert resp.status_code == 400
        assert resp.text == "Webhook error"

    @pytest.mark.asyncio
    async def test_unhandled_event_skips_database(self, webhook_config: WebhookConfig):
        session_factory = MagicMock()
        body = make_event("invoice.paid", make_invoice())
        async with _isolated_client(webhook_config, session_factory) as ac:
            resp = await _post_event(ac, body)

        assert resp.status_code == 200
        assert resp.text == "Event type not handled"
        session_factory.assert_not_called()


# ---------------------------------------------------------------------------
# Event processing
# ---------------------------------------------------------------------------


class TestWebhookEvents:
    """Signed events processed against the test database."""

    @pytest.mark.asyncio
    async def test_subscription_created(self, client: AsyncClient, session_factory):
        user = await _seed_user(session_factory)
        body = make_event("customer.subscription.created", make_stripe_sub())

        resp = await _post_event(client, body)

        assert resp.status_code == 200
        assert resp.text == "Processed subscription event"
        subscription = await _load_subscription(session_factory, user.id)
        assert subscription is not None
        assert subscription.plan == "family"
        assert subscription.status == "active"
        assert subscription.stripe_customer_id == "cus_test_123"
        assert subscription.stripe_subscription_id == "sub_test_123"
        assert subscription.stripe_price_id == "price_test_family"
        assert subscription.current_period_start == datetime(2024, 1, 1)
        assert subscription.current_period_end == datetime(2024, 2, 1)
        assert subscription.cancel_at_period_end is False

    @pytest.mark.asyncio
    async def test_invoice_without_local_subscription(self, client: AsyncClient):
        body = make_event("invoice.created", make_invoice("sub_unknown"))
        resp = await _post_event(client, body)
        assert resp.status_code == 200
        assert resp.text == "Invoice processed with no subscription updates required"

    @pytest.mark.asyncio
    async def test_invoice_refreshes_period(self, client: AsyncClient, session_factory):
        async with session_factory() as session:
            user = await create_user(session)
            await create_subscription(session, user)
            await session.commit()

        body = make_event("invoice.created", make_invoice("sub_test_123", PERIOD_START, PERIOD_END))
        resp = await _post_event(client, body)

        assert resp.status_code == 200
        assert resp.text == "Subscription period refreshed from invoice"
        subscription = await _load_subscription(session_factory, user.id)
        assert subscription.current_period_start == datetime(2024, 1, 1)
        assert subscription.current_period_end == datetime(2024, 2, 1)

    @pytest.mark.asyncio
    async def test_deleted_without_local_subscription(self, client: AsyncClient, session_factory):
        await _seed_user(session_factory)
        body = make_event("customer.subscription.deleted", make_stripe_sub(status="canceled"))

        resp = await _post_event(client, body)

        assert resp.status_code == 200
        assert resp.text == "No subscription record to delete"

    @pytest.mark.asyncio
    async def test_deleted_removes_subscription(self, client: AsyncClient, session_factory):
        async with session_factory() as session:
            user = await create_user(session)
            await create_subscription(session, user)
            await session.commit()

        body = make_event("customer.subscription.deleted", make_stripe_sub(status="canceled"))
        resp = await _post_event(client, body)

        assert resp.status_code == 200
        assert resp.text == "Deleted subscription record"
        assert await _load_subscription(session_factory, user.id) is None

    @pytest.mark.asyncio
    async def test_unknown_customer(self, client: AsyncClient):
        body = make_event("customer.subscription.updated", make_stripe_sub(customer="cus_nobody"))
        resp = await _post_event(client, body)
        assert resp.status_code == 404
        assert resp.text == "User not found"

    @pytest.mark.asyncio
    async def test_missing_customer(self, client: AsyncClient):
        body = make_event("customer.subscription.updated", make_stripe_sub(customer=None))
        resp = await _post_event(client, body)
        assert resp.status_code == 400
        assert resp.text == "Missing customer identifier"

    @pytest.mark.asyncio
    async def test_checkout_completed(self, client: AsyncClient):
        session = {"id": "cs_test_1", "object": "checkout.session", "metadata": {"app_user_id": "u-1"}}
        resp = await _post_event(client, make_event("checkout.session.completed", session))
        assert resp.status_code == 200
        assert resp.text == "Checkout session completed for u-1"

    @pytest.mark.asyncio
    async def test_failed_sync_rolls_back(self, client: AsyncClient, session_factory):
        user = await _seed_user(session_factory)
        body = make_event("customer.subscription.created", make_stripe_sub(status="paused"))

        resp = await _post_event(client, body)

        assert resp.status_code == 500
        assert resp.text == "Could not build subscription payload from Stripe data"
        assert await _load_subscription(session_factory, user.id) is None

    @pytest.mark.asyncio
    async def test_unexpected_error_returns_500(self, client: AsyncClient, session_factory):
        await _seed_user(session_factory)
        body = make_event("customer.subscription.created", make_stripe_sub())

        with patch(
            "app.api.v1.webhooks.dispatch_event",
            new_callable=AsyncMock,
            side_effect=RuntimeError("unexpected"),
        ):
            resp = await _post_event(client, body)

        assert resp.status_code == 500
        assert resp.text == "unexpected"

    @pytest.mark.asyncio
    async def test_out_of_order_updates_last_received_wins(self, client: AsyncClient, session_factory):
        """Updates carry no ordering check: an older snapshot delivered late overwrites newer state."""
        user = await _seed_user(session_factory)
        newer = make_stripe_sub(
            lookup_key="family_tier_yearly",
            status="active",
            period_start=PERIOD_END,
            period_end=PERIOD_END + 365 * 86400,
        )
        older = make_stripe_sub(lookup_key="individual_tier_monthly", status="past_due")

        resp_newer = await _post_event(client, make_event("customer.subscription.updated", newer))
        resp_older = await _post_event(client, make_event("customer.subscription.updated", older))

        assert resp_newer.status_code == 200
        assert resp_older.status_code == 200
        subscription = await _load_subscription(session_factory, user.id)
        assert subscription.plan == "individual"
        assert subscription.status == "past_due"
        assert subscription.current_period_start == datetime(2024, 1, 1)
        assert subscription.current_period_end == datetime(2024, 2, 1)
