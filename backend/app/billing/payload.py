"""Turn Stripe subscription and invoice objects into local subscription fields.

Everything here is pure: no database, no Stripe API calls. Stripe objects may
arrive as ``stripe.StripeObject`` (a dict subclass on older SDK releases, a
plain attribute object on newer ones), plain dicts parsed from a webhook body,
or other attribute-style objects, so every read goes through
:func:`stripe_field`.
"""

import dataclasses
import enum
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from app.billing.plans import SubscriptionPlan, normalize_status, resolve_plan_from_lookup_key


def stripe_field(obj: Any, key: str) -> Any:
    """Read ``key`` from a Stripe object, dict, or attribute object.

    Mappings (plain dicts, and ``StripeObject`` on SDK releases where it still
    subclasses dict) use item access, since attribute access there collides
    with dict methods such as ``items``. Everything else is read with
    ``getattr``.
    """
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(key)
    return getattr(obj, key, None)


def first_list_entry(obj: Any, key: str) -> Any:
    """Return ``obj[key].data[0]`` for Stripe list fields, or None."""
    entries = stripe_field(stripe_field(obj, key), "data")
    if not entries:
        return None
    return entries[0]


def resolve_object_id(value: Any) -> str | None:
    """Stripe references are either an id string or an expanded object."""
    if isinstance(value, str):
        return value or None
    object_id = stripe_field(value, "id")
    return object_id if isinstance(object_id, str) and object_id else None


def ts_to_naive(ts: int | float | None) -> datetime | None:
    """Convert a Stripe Unix timestamp to a naive UTC datetime."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)


def _is_timestamp(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class PeriodSource(str, enum.Enum):
    """Where a billing period was read from."""

    SUBSCRIPTION = "subscription"
    SUBSCRIPTION_ITEM = "subscription_item"
    INVOICE_LINE = "invoice_line"


@dataclass(frozen=True)
class BillingPeriod:
    """A billing window in epoch seconds, tagged with its source shape."""

    start: int | float
    end: int | float
    source: PeriodSource

    @property
    def start_datetime(self) -> datetime:
        return ts_to_naive(self.start)

    @property
    def end_datetime(self) -> datetime:
        return ts_to_naive(self.end)


def _period_from(
    container: Any, start_key: str, end_key: str, source: PeriodSource
) -> BillingPeriod | None:
    start = stripe_field(container, start_key)
    end = stripe_field(container, end_key)
    if not (_is_timestamp(start) and _is_timestamp(end)):
        return None
    return BillingPeriod(start=start, end=end, source=source)


def extract_period(stripe_sub: Any) -> BillingPeriod | None:
    """Read the current billing period from a Stripe subscription.

    Older API versions put ``current_period_start``/``current_period_end`` on
    the subscription; since 2025-08-27 (basil) they live on the subscription
    item. The top-level shape is preferred; the first item is the fallback.
    A shape only counts when it yields both timestamps.
    """
    shapes = (
        (PeriodSource.SUBSCRIPTION, stripe_sub),
        (PeriodSource.SUBSCRIPTION_ITEM, first_list_entry(stripe_sub, "items")),
    )
    # Unlike a per-field fallback, a lone top-level start never pairs with the item end.
    for source, container in shapes:
        period = _period_from(container, "current_period_start", "current_period_end", source)
        if period is not None:
            return period
    return None


def extract_invoice_period(invoice: Any) -> BillingPeriod | None:
    """Read the billing period of an invoice's first line item."""
    line = first_list_entry(invoice, "lines")
    return _period_from(stripe_field(line, "period"), "start", "end", PeriodSource.INVOICE_LINE)


def resolve_invoice_subscription_id(invoice: Any) -> str | None:
    """Find the subscription an invoice belongs to.

    ``invoice.subscription`` was replaced by
    ``invoice.parent.subscription_details.subscription`` in newer API versions.
    """
    subscription_id = resolve_object_id(stripe_field(invoice, "subscription"))
    if subscription_id:
        return subscription_id
    details = stripe_field(stripe_field(invoice, "parent"), "subscription_details")
    return resolve_object_id(stripe_field(details, "subscription"))


@dataclass(frozen=True)
class SubscriptionPayload:
    """The full set of subscription columns derived from one Stripe snapshot."""

    stripe_customer_id: str
    stripe_subscription_id: str
    stripe_price_id: str
    plan: SubscriptionPlan
    status: str
    current_period_start: datetime
    current_period_end: datetime
    canceled_at: datetime | None
    cancel_at: datetime | None
    cancel_at_period_end: bool

    def as_record(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


def _optional_datetime(value: Any) -> datetime | None:
    return ts_to_naive(value) if _is_timestamp(value) and value else None


def build_subscription_payload(stripe_sub: Any) -> SubscriptionPayload | None:
    """Build local subscription fields from a Stripe subscription.

    All-or-nothing: returns None as soon as the price, plan, status, period,
    customer or subscription id cannot be resolved.
    """
    price = stripe_field(first_list_entry(stripe_sub, "items"), "price")
    price_id = stripe_field(price, "id")
    if not price_id:
        return None

    plan = resolve_plan_from_lookup_key(stripe_field(price, "lookup_key"))
    if plan is None:
        return None

    status = normalize_status(stripe_field(stripe_sub, "status"))
    if status is None:
        return None

    period = extract_period(stripe_sub)
    if period is None:
        return None

    customer_id = resolve_object_id(stripe_field(stripe_sub, "customer"))
    if customer_id is None:
        return None

    subscription_id = stripe_field(stripe_sub, "id")
    if not subscription_id:
        return None

    return SubscriptionPayload(
        stripe_customer_id=customer_id,
        stripe_subscription_id=subscription_id,
        stripe_price_id=price_id,
        plan=plan,
        status=status,
        current_period_start=period.start_datetime,
        current_period_end=period.end_datetime,
        canceled_at=_optional_datetime(stripe_field(stripe_sub, "canceled_at")),
        cancel_at=_optional_datetime(stripe_field(stripe_sub, "cancel_at")),
        cancel_at_period_end=bool(stripe_field(stripe_sub, "cancel_at_period_end")),
    )
