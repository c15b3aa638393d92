"""Async Stripe API wrapper for Quillsign."""

import logging

import stripe
from stripe import StripeClient

from quillsign.config import settings

logger = logging.getLogger(__name__)


def get_stripe_client() -> StripeClient:
    """Create a StripeClient instance with async HTTP support."""
    return StripeClient(
        settings.stripe_secret_key,
        http_client=stripe.HTTPXClient(),
    )


async def create_customer(email: str, name: str, user_id: str) -> stripe.Customer:
    """Create a Stripe customer linked to a Quillsign user."""
    client = get_stripe_client()
    logger.info("Creating Stripe customer for user %s (%s)", user_id, email)
    customer = await client.v1.customers.create_async(
        params={
            "email": email,
            "name": name,
            "metadata": {"userId": user_id},
        }
    )
    logger.info("Created Stripe customer %s for user %s", customer.id, user_id)
    return customer


async def find_customers_by_email(email: str, limit: int = 10) -> list[stripe.Customer]:
    """List Stripe customers registered with an email address."""
    client = get_stripe_client()
    result = await client.v1.customers.list_async(params={"email": email, "limit": limit})
    return list(result.data)


async def create_checkout_session(
    customer_id: str,
    price_id: str,
    user_id: str,
    success_url: str,
    cancel_url: str,
) -> stripe.checkout.Session:
    """Create a Stripe Checkout Session for a Pro subscription."""
    client = get_stripe_client()
    logger.info(
        "Creating checkout session for customer %s, price %s",
        customer_id,
        price_id,
    )
    return await client.v1.checkout.sessions.create_async(
        params={
            "mode": "subscription",
            "customer": customer_id,
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": {"userId": user_id},
            "subscription_data": {"metadata": {"userId": user_id}},
        }
    )


async def create_portal_session(
    customer_id: str, return_url: str
) -> stripe.billing_portal.Session:
    """Create a Stripe Customer Portal session for subscription management."""
    client = get_stripe_client()
    logger.info("Creating portal session for customer %s", customer_id)
    return await client.v1.billing_portal.sessions.create_async(
        params={
            "customer": customer_id,
            "return_url": return_url,
        }
    )


async def retrieve_checkout_session(session_id: str) -> stripe.checkout.Session:
    """Retrieve a Checkout Session with its subscription expanded."""
    client = get_stripe_client()
    return await client.v1.checkout.sessions.retrieve_async(
        session_id,
        params={"expand": ["subscription"]},
    )


async def get_subscription(subscription_id: str) -> stripe.Subscription:
    """Retrieve a Stripe subscription by ID."""
    client = get_stripe_client()
    return await client.v1.subscriptions.retrieve_async(subscription_id)


async def list_subscriptions(customer_id: str, limit: int = 10) -> list[stripe.Subscription]:
    """List a customer's subscriptions in every status, newest first."""
    client = get_stripe_client()
    result = await client.v1.subscriptions.list_async(
        params={"customer": customer_id, "status": "all", "limit": limit}
    )
    return list(result.data)


def construct_webhook_event(payload: bytes, sig_header: str) -> stripe.Event:
    """Verify and construct a Stripe webhook event (synchronous).

    Rejects payloads whose signed timestamp is older than
    ``settings.stripe_webhook_tolerance`` seconds.
    """
    return stripe.Webhook.construct_event(
        payload,
        sig_header,
        settings.stripe_webhook_secret,
        tolerance=settings.stripe_webhook_tolerance,
    )
