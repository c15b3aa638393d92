"""Create the Quillsign Pro product and its prices in Stripe test mode.

Run once inside the backend container:
    python -m quillsign.billing.scripts.create_stripe_products

Outputs price IDs to set in .env:
    STRIPE_PRO_MONTHLY_PRICE_ID=price_xxx
    STRIPE_PRO_YEARLY_PRICE_ID=price_xxx
"""

import asyncio

import stripe
from stripe import StripeClient

from quillsign.billing.plans import PLANS, Tier
from quillsign.config import settings


async def main() -> None:
    if not settings.stripe_secret_key:
        print("ERROR: STRIPE_SECRET_KEY is not set in .env")
        return

    client = StripeClient(
        settings.stripe_secret_key,
        http_client=stripe.HTTPXClient(),
    )
    pro = PLANS[Tier.PRO.value]

    # --- Quillsign Pro ---
    product = await client.v1.products.create_async(
        params={
            "name": "Quillsign Pro",
            "description": "Unlimited contracts and invoices, e-signatures, payment tracking",
        }
    )
    print(f"Created product: {product.name} ({product.id})")

    monthly_price = await client.v1.prices.create_async(
        params={
            "product": product.id,
            "unit_amount": pro.price_monthly_cents,
            "currency": "usd",
            "recurring": {"interval": "month"},
            "lookup_key": "quillsign_pro_monthly",
        }
    )
    print(f"  Price: ${pro.price_monthly_cents / 100:.2f}/mo ({monthly_price.id})")

    yearly_price = await client.v1.prices.create_async(
        params={
            "product": product.id,
            "unit_amount": pro.price_yearly_cents,
            "currency": "usd",
            "recurring": {"interval": "year"},
            "lookup_key": "quillsign_pro_yearly",
        }
    )
    print(f"  Price: ${pro.price_yearly_cents / 100:.2f}/yr ({yearly_price.id})")

    print("\n--- Add these to your .env ---")
    print(f"STRIPE_PRO_MONTHLY_PRICE_ID={monthly_price.id}")
    print(f"STRIPE_PRO_YEARLY_PRICE_ID={yearly_price.id}")


if __name__ == "__main__":
    asyncio.run(main())
