"""Optional Stripe integration tests — hit real Stripe test mode API.

The live tests are auto-skipped when STRIPE_SECRET_KEY is not set (e.g., in CI).
Signature verification is local and always runs.
"""

import json
import os

import pytest
import stripe

from app.billing.payload import stripe_field
from app.billing.plans import SUBSCRIPTION_LOOKUP_KEYS
from app.billing.stripe_client import (
    construct_webhook_event,
    create_customer,
    list_plan_prices,
)
from conftest import TEST_WEBHOOK_SECRET, sign_payload

SKIP_REASON = "STRIPE_SECRET_KEY not set — skipping real Stripe integration tests"
requires_stripe = pytest.mark.skipif(not os.getenv("STRIPE_SECRET_KEY"), reason=SKIP_REASON)


@requires_stripe
class TestStripeIntegration:
    """Real Stripe API tests — only run when STRIPE_SECRET_KEY is available."""

    @pytest.mark.asyncio
    async def test_create_real_customer(self):
        customer = await create_customer(
            email="integration-test@budgetch.test",
            name="Integration Test User",
            user_id="test-integration-user-id",
        )
        assert customer.id.startswith("cus_")
        assert stripe_field(customer.metadata, "app_user_id") == "test-integration-user-id"

    @pytest.mark.asyncio
    async def test_plan_prices_use_known_lookup_keys(self):
        prices = await list_plan_prices()
        for price in prices:
            assert price.lookup_key in SUBSCRIPTION_LOOKUP_KEYS


class TestConstructWebhookEvent:
    """Signature verification with the Stripe SDK (no network)."""

    def _body(self) -> str:
        return json.dumps(
            {
                "id": "evt_test_sig",
                "object": "event",
                "type": "invoice.created",
                "data": {"object": {"id": "in_test", "object": "invoice"}},
            }
        )

    def test_valid_signature(self):
        body = self._body()
        event = construct_webhook_event(body.encode(), sign_payload(body), TEST_WEBHOOK_SECRET)
        assert event.type == "invoice.created"
        assert event.data.object.id == "in_test"
        assert stripe_field(event.data.object, "object") == "invoice"

    def test_invalid_signature(self):
        body = self._body()
        with pytest.raises(stripe.SignatureVerificationError):
            construct_webhook_event(body.encode(), "t=123,v1=invalid_sig", TEST_WEBHOOK_SECRET)

    def test_wrong_secret(self):
        body = self._body()
        header = sign_payload(body, secret="whsec_other")
        with pytest.raises(stripe.SignatureVerificationError):
            construct_webhook_event(body.encode(), header, TEST_WEBHOOK_SECRET)
