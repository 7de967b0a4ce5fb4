"""Billing API endpoints — public plan pricing."""

import logging

import stripe
from fastapi import APIRouter, HTTPException, status

from app.billing.payload import stripe_field
from app.billing.plans import resolve_plan_from_lookup_key
from app.billing.stripe_client import list_plan_prices
from app.schemas.billing import PriceResponse, PricesListResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/billing", tags=["billing"])


@router.get("/prices", response_model=PricesListResponse)
async def list_prices() -> PricesListResponse:
    """List the active Stripe prices of the Individual and Family plans (public)."""
    try:
        prices = await list_plan_prices()
    except stripe.StripeError as e:
        logger.error("Failed to load Stripe prices: %s", e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Failed to load prices: {e.user_message or 'Stripe error'}",
        ) from e

    return PricesListResponse(
        prices=[
            PriceResponse(
                id=stripe_field(price, "id"),
                lookup_key=stripe_field(price, "lookup_key"),
                plan=resolve_plan_from_lookup_key(stripe_field(price, "lookup_key")),
                unit_amount=stripe_field(price, "unit_amount"),
                currency=stripe_field(price, "currency"),
                interval=stripe_field(stripe_field(price, "recurring"), "interval"),
            )
            for price in prices
        ]
    )
