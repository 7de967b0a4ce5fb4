"""Plan definitions — Stripe lookup keys, plan names and subscription statuses."""

from dataclasses import dataclass
from typing import Literal

SubscriptionPlan = Literal["individual", "family"]

# Stripe price lookup keys
INDIVIDUAL_TIER_MONTHLY_LOOKUP_KEY = "individual_tier_monthly"
INDIVIDUAL_TIER_YEARLY_LOOKUP_KEY = "individual_tier_yearly"
FAMILY_TIER_MONTHLY_LOOKUP_KEY = "family_tier_monthly"
FAMILY_TIER_YEARLY_LOOKUP_KEY = "family_tier_yearly"

SUBSCRIPTION_LOOKUP_KEYS: list[str] = [
    INDIVIDUAL_TIER_MONTHLY_LOOKUP_KEY,
    INDIVIDUAL_TIER_YEARLY_LOOKUP_KEY,
    FAMILY_TIER_MONTHLY_LOOKUP_KEY,
    FAMILY_TIER_YEARLY_LOOKUP_KEY,
]

LOOKUP_KEY_PLAN_MAP: dict[str, SubscriptionPlan] = {
    INDIVIDUAL_TIER_MONTHLY_LOOKUP_KEY: "individual",
    INDIVIDUAL_TIER_YEARLY_LOOKUP_KEY: "individual",
    FAMILY_TIER_MONTHLY_LOOKUP_KEY: "family",
    FAMILY_TIER_YEARLY_LOOKUP_KEY: "family",
}

# Stripe subscription statuses we mirror locally. Anything else
# (e.g. "paused", or a status Stripe introduces later) is not synced.
SUBSCRIPTION_STATUSES: tuple[str, ...] = (
    "active",
    "canceled",
    "incomplete",
    "incomplete_expired",
    "past_due",
    "trialing",
    "unpaid",
)


@dataclass(frozen=True)
class PlanInfo:
    """Display data and Stripe lookup keys for a plan."""

    name: SubscriptionPlan
    display_name: str
    monthly_lookup_key: str
    yearly_lookup_key: str


PLANS: dict[str, PlanInfo] = {
    "individual": PlanInfo(
        name="individual",
        display_name="Individual",
        monthly_lookup_key=INDIVIDUAL_TIER_MONTHLY_LOOKUP_KEY,
        yearly_lookup_key=INDIVIDUAL_TIER_YEARLY_LOOKUP_KEY,
    ),
    "family": PlanInfo(
        name="family",
        display_name="Family",
        monthly_lookup_key=FAMILY_TIER_MONTHLY_LOOKUP_KEY,
        yearly_lookup_key=FAMILY_TIER_YEARLY_LOOKUP_KEY,
    ),
}

VALID_PLAN_NAMES: set[str] = set(PLANS.keys())


def get_plan(plan_name: str) -> PlanInfo:
    """Get plan info by name. Raises KeyError for unknown plans."""
    return PLANS[plan_name]


def resolve_plan_from_lookup_key(lookup_key: str | None) -> SubscriptionPlan | None:
    """Map a Stripe price lookup key to a plan name.

    Exact matches against the known lookup keys win. Otherwise the key is
    searched case-insensitively for "family", then "individual". Returns
    None when neither applies.
    """
    if not lookup_key:
        return None

    plan = LOOKUP_KEY_PLAN_MAP.get(lookup_key)
    if plan is not None:
        return plan

    normalized = lookup_key.lower()
    if "family" in normalized:
        return "family"
    if "individual" in normalized:
        return "individual"
    return None


def normalize_status(status: str | None) -> str | None:
    """Return the Stripe status if we recognize it, else None."""
    if not status:
        return None
    if status in SUBSCRIPTION_STATUSES:
        return status
    return None
