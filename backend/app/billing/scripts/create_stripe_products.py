"""Create the Budget-ch Stripe products and prices in test mode.

Run once inside the backend container:
    python -m app.billing.scripts.create_stripe_products

Each plan gets a monthly and a yearly price carrying the lookup keys the
webhook sync resolves plans from, so no price IDs need to go into .env.
"""

import asyncio

import stripe
from stripe import StripeClient

from app.billing.plans import PLANS
from app.config import settings

CURRENCY = "chf"

# (monthly, yearly) amounts in cents
PLAN_AMOUNTS: dict[str, tuple[int, int]] = {
    "individual": (490, 4900),
    "family": (790, 7900),
}


async def main() -> None:
    if not settings.stripe_secret_key:
        print("ERROR: STRIPE_SECRET_KEY is not set in .env")
        return

    client = StripeClient(
        settings.stripe_secret_key,
        http_client=stripe.HTTPXClient(),
    )

    for plan in PLANS.values():
        monthly_amount, yearly_amount = PLAN_AMOUNTS[plan.name]
        product = await client.v1.products.create_async(
            params={
                "name": f"Budget-ch {plan.display_name}",
                "metadata": {"plan": plan.name},
            }
        )
        print(f"Created product: {product.name} ({product.id})")

        for lookup_key, amount, interval in (
            (plan.monthly_lookup_key, monthly_amount, "month"),
            (plan.yearly_lookup_key, yearly_amount, "year"),
        ):
            price = await client.v1.prices.create_async(
                params={
                    "product": product.id,
                    "unit_amount": amount,
                    "currency": CURRENCY,
                    "recurring": {"interval": interval},
                    "lookup_key": lookup_key,
                    # Move the key over if an older price already uses it
                    "transfer_lookup_key": True,
                }
            )
            print(f"  {CURRENCY.upper()} {amount / 100:.2f}/{interval} ({price.id}, lookup_key={lookup_key})")


if __name__ == "__main__":
    asyncio.run(main())
