"""Pydantic v2 response schemas for billing endpoints."""

from pydantic import BaseModel


class PriceResponse(BaseModel):
    """One Stripe price behind a plan lookup key."""

    id: str
    lookup_key: str | None
    plan: str | None  # "individual" or "family"
    unit_amount: int | None  # in cents
    currency: str
    interval: str | None  # "month" or "year"


class PricesListResponse(BaseModel):
    """All active plan prices."""

    prices: list[PriceResponse]
