"""Shared test configuration and fixtures.

Every test gets a fresh in-memory SQLite database (aiosqlite) with all tables
created, so tests are isolated without a running PostgreSQL. A StaticPool
keeps the single in-memory connection alive across sessions, which lets the
webhook router's own sessions see what a test committed.
"""

import hashlib
import hmac
import json
import time
import uuid
from collections.abc import AsyncGenerator
from datetime import datetime
from typing import Any

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401  (registers all tables on Base.metadata)
from app.api.v1.billing import router as billing_router
from app.api.v1.webhooks import build_webhook_router
from app.config import WebhookConfig
from app.database import Base
from app.models.subscription import Subscription
from app.models.user import User

TEST_WEBHOOK_SECRET = "whsec_test_secret"

# 2024-01-01 / 2024-02-01 00:00 UTC
PERIOD_START = 1704067200
PERIOD_END = 1706745600


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async session on the per-test database."""
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


@pytest.fixture
def webhook_config() -> WebhookConfig:
    return WebhookConfig(webhook_secret=TEST_WEBHOOK_SECRET)


@pytest.fixture
def test_app(webhook_config, session_factory) -> FastAPI:
    """A FastAPI app wired to the test database and webhook secret."""
    application = FastAPI()
    application.include_router(billing_router)
    application.include_router(build_webhook_router(webhook_config, session_factory))
    return application


@pytest_asyncio.fixture
async def client(test_app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Provide an httpx AsyncClient for the test app."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Stripe payload helpers
# ---------------------------------------------------------------------------


def sign_payload(payload: str, secret: str = TEST_WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a valid ``stripe-signature`` header for a webhook body."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode()
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_event(event_type: str, data_object: dict[str, Any]) -> str:
    """Serialize a Stripe event envelope the way Stripe posts it."""
    return json.dumps(
        {
            "id": f"evt_test_{uuid.uuid4().hex[:8]}",
            "object": "event",
            "type": event_type,
            "api_version": "2025-08-27.basil",
            "created": int(time.time()),
            "livemode": False,
            "data": {"object": data_object},
        }
    )


def make_stripe_sub(
    lookup_key: str | None = "family_tier_monthly",
    status: str = "active",
    period_start: int = PERIOD_START,
    period_end: int = PERIOD_END,
    sub_id: str = "sub_test_123",
    customer: Any = "cus_test_123",
    price_id: str = "price_test_family",
    cancel_at_period_end: bool = False,
    canceled_at: int | None = None,
    period_on_item: bool = True,
) -> dict[str, Any]:
    """A Stripe subscription as it appears in a webhook body.

    Since API 2025-08-27 (basil) the current period lives on the item;
    ``period_on_item=False`` produces the older top-level shape.
    """
    item: dict[str, Any] = {
        "id": "si_test_123",
        "object": "subscription_item",
        "price": {"id": price_id, "object": "price", "lookup_key": lookup_key},
    }
    sub: dict[str, Any] = {
        "id": sub_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "cancel_at_period_end": cancel_at_period_end,
        "canceled_at": canceled_at,
        "cancel_at": None,
        "items": {"object": "list", "data": [item]},
    }
    period_holder = item if period_on_item else sub
    period_holder["current_period_start"] = period_start
    period_holder["current_period_end"] = period_end
    return sub


def make_invoice(
    subscription: Any = "sub_test_123",
    period_start: int = PERIOD_START,
    period_end: int = PERIOD_END,
) -> dict[str, Any]:
    return {
        "id": f"in_test_{uuid.uuid4().hex[:8]}",
        "object": "invoice",
        "subscription": subscription,
        "lines": {
            "object": "list",
            "data": [{"id": "il_test_1", "period": {"start": period_start, "end": period_end}}],
        },
    }


# ---------------------------------------------------------------------------
# Database helpers
# ---------------------------------------------------------------------------


async def create_user(
    db_session: AsyncSession,
    stripe_customer_id: str | None = "cus_test_123",
    notifications_enabled: bool = True,
) -> User:
    unique = uuid.uuid4().hex[:8]
    user = User(
        email=f"user-{unique}@test.com",
        name="Test User",
        stripe_customer_id=stripe_customer_id,
        notifications_enabled=notifications_enabled,
    )
    db_session.add(user)
    await db_session.flush()
    return user


async def create_subscription(
    db_session: AsyncSession,
    user: User,
    stripe_subscription_id: str = "sub_test_123",
    plan: str = "individual",
    status: str = "active",
    period_start=None,
    period_end=None,
) -> Subscription:
    subscription = Subscription(
        user_id=user.id,
        stripe_customer_id=user.stripe_customer_id or "cus_none",
        stripe_subscription_id=stripe_subscription_id,
        stripe_price_id="price_test_individual",
        plan=plan,
        status=status,
        current_period_start=period_start or datetime(2023, 12, 1),
        current_period_end=period_end or datetime(2024, 1, 1),
    )
    db_session.add(subscription)
    await db_session.flush()
    return subscription


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    """A user linked to Stripe customer ``cus_test_123``."""
    return await create_user(db_session)
