"""Create the tasy-viral Stripe products and monthly prices in test mode.

Run once:
    python -m tasy_billing.billing.scripts.create_stripe_products

Outputs price IDs to set in .env:
    STRIPE_STARTER_MONTHLY_PRICE_ID=price_xxx
    STRIPE_PRO_MONTHLY_PRICE_ID=price_xxx
    STRIPE_BUSINESS_MONTHLY_PRICE_ID=price_xxx
"""

import asyncio

from tasy_billing.billing.plans import PLANS
from tasy_billing.billing.stripe_client import get_stripe_client
from tasy_billing.config import settings
from tasy_billing.models.subscription import PRODUCT_TAG


async def main() -> None:
    if not settings.stripe_secret_key:
        print("ERROR: STRIPE_SECRET_KEY is not set in .env")
        return

    client = get_stripe_client()
    env_lines: list[str] = []

    for plan in PLANS.values():
        product = await client.v1.products.create_async(
            params={
                "name": f"Tasy Viral {plan.display_name}",
                "description": f"{plan.monthly_credits} credits per month",
                "metadata": {"product": PRODUCT_TAG, "plan": plan.name},
            }
        )
        price = await client.v1.prices.create_async(
            params={
                "product": product.id,
                "unit_amount": plan.price_monthly_cents,
                "currency": "eur",
                "recurring": {"interval": "month"},
            }
        )
        print(f"Created product: {product.name} ({product.id})")
        print(f"  Price: €{plan.price_monthly_cents / 100:.2f}/mo ({price.id})")
        env_lines.append(f"STRIPE_{plan.name.upper()}_MONTHLY_PRICE_ID={price.id}")

    print("\n--- Add these to your .env ---")
    for line in env_lines:
        print(line)


if __name__ == "__main__":
    asyncio.run(main())
