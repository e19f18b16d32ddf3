"""Create Stripe products and prices in test mode.

Run once from the backend directory:
    python -m subledger.billing.scripts.create_stripe_products

Outputs price IDs to set in .env:
    STRIPE_STARTER_PRICE_ID=price_xxx
    STRIPE_STARTER_YEARLY_PRICE_ID=price_xxx
    ...
"""

import asyncio

import stripe
from stripe import StripeClient

from subledger.billing.plans import PLANS
from subledger.config import settings

INTERVAL_SUFFIX = {"month": "", "year": "_YEARLY"}


async def main(client: StripeClient | None = None) -> dict[str, str]:
    """Create one product per paid plan with a monthly and a yearly price.

    Returns the env var assignments, keyed by variable name.
    """
    if client is None:
        if not settings.stripe_secret_key:
            print("ERROR: STRIPE_SECRET_KEY is not set in .env")
            return {}
        client = StripeClient(
            settings.stripe_secret_key,
            http_client=stripe.HTTPXClient(),
        )

    env: dict[str, str] = {}
    for plan in PLANS.values():
        if plan.is_free:
            continue

        product = await client.v1.products.create_async(
            params={
                "name": f"Subledger {plan.display_name}",
                "description": ", ".join(sorted(plan.features)),
                "metadata": {"plan_id": plan.id},
            }
        )
        print(f"Created product: {product.name} ({product.id})")

        for interval, amount in (("month", plan.price_monthly_cents), ("year", plan.price_yearly_cents)):
            price = await client.v1.prices.create_async(
                params={
                    "product": product.id,
                    "unit_amount": amount,
                    "currency": "usd",
                    "recurring": {"interval": interval},
                    "metadata": {"plan_id": plan.id},
                }
            )
            print(f"  Price: ${amount / 100:.2f}/{interval} ({price.id})")
            env[f"STRIPE_{plan.id.upper()}{INTERVAL_SUFFIX[interval]}_PRICE_ID"] = price.id

    print("\n--- Add these to your .env ---")
    for name, value in env.items():
        print(f"{name}={value}")
    return env


if __name__ == "__main__":
    asyncio.run(main())
