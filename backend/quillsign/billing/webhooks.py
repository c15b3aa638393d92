"""Stripe webhook event handlers — keep entitlements and claims in step with billing.

Each handler returns the entitlement it changed, or None when the event was
dropped (unknown customer, unrelated invoice, one-time checkout).
"""

import logging
import uuid
from typing import Any

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from quillsign.billing.claims import sync_claims
from quillsign.billing.errors import ProviderAPIError
from quillsign.billing.plans import SubscriptionStatus
from quillsign.billing.stripe_client import get_subscription
from quillsign.models.entitlement import Entitlement
from quillsign.models.user import User
from quillsign.services.entitlement_service import (
    SubscriptionPayload,
    apply_subscription,
    get_entitlement_for_update,
    get_user_by_customer_id,
    get_user_by_id,
    link_customer,
    mark_payment_failed,
    record_invoice_payment,
)

logger = logging.getLogger(__name__)


def _object_id(value: Any) -> str | None:
    """Stripe references arrive either as an ID string or an expanded object."""
    if value is None or isinstance(value, str):
        return value
    return getattr(value, "id", None)


def _invoice_subscription_id(invoice: Any) -> str | None:
    """Subscription ID of an invoice.

    Newer Stripe API versions moved it to ``parent.subscription_details``.
    """
    subscription = getattr(invoice, "subscription", None)
    if not subscription:
        parent = getattr(invoice, "parent", None)
        details = getattr(parent, "subscription_details", None) if parent else None
        subscription = getattr(details, "subscription", None) if details else None
    return _object_id(subscription)


async def _fetch_subscription(subscription_id: str) -> stripe.Subscription:
    try:
        return await get_subscription(subscription_id)
    except stripe.StripeError as e:
        raise ProviderAPIError(f"Could not retrieve subscription {subscription_id}: {e}") from e


async def _user_for_customer(db: AsyncSession, customer_id: str | None, context: str) -> User | None:
    if not customer_id:
        logger.warning("No customer on %s, skipping", context)
        return None
    user = await get_user_by_customer_id(db, customer_id)
    if user is None:
        logger.warning("No user found for Stripe customer %s (%s)", customer_id, context)
    return user


async def resolve_checkout_user(db: AsyncSession, session: Any) -> User | None:
    """User a Checkout Session belongs to: ``metadata.userId``, else the customer index."""
    metadata = getattr(session, "metadata", None)
    user_ref = getattr(metadata, "userId", None) if metadata else None

    user = None
    if user_ref:
        try:
            user = await get_user_by_id(db, uuid.UUID(str(user_ref)))
        except ValueError:
            logger.warning("Checkout session %s has malformed userId %r", session.id, user_ref)
    if user is None:
        customer_id = _object_id(getattr(session, "customer", None))
        user = await _user_for_customer(db, customer_id, f"checkout {session.id}")
    return user


async def checkout_subscription(session: Any) -> stripe.Subscription | None:
    """Subscription of a Checkout Session, fetched when it was not expanded."""
    subscription = getattr(session, "subscription", None)
    if not subscription:
        return None
    if isinstance(subscription, str):
        return await _fetch_subscription(subscription)
    return subscription


async def _apply_and_sync(
    db: AsyncSession,
    user: User,
    payload: SubscriptionPayload,
    event: stripe.Event,
) -> Entitlement:
    entitlement = await apply_subscription(
        db,
        user,
        payload,
        event_id=event.id,
        event_created=getattr(event, "created", None),
    )
    await sync_claims(db, user, entitlement)
    return entitlement


async def handle_subscription_changed(db: AsyncSession, event: stripe.Event) -> Entitlement | None:
    """Handle customer.subscription.created / updated — sync status and period."""
    stripe_sub = event.data.object
    customer_id = _object_id(getattr(stripe_sub, "customer", None))

    user = await _user_for_customer(db, customer_id, f"subscription {stripe_sub.id}")
    if user is None:
        return None

    entitlement = await _apply_and_sync(db, user, SubscriptionPayload.from_stripe(stripe_sub), event)
    logger.info("Subscription %s for user %s is now %s", stripe_sub.id, user.id, entitlement.status)
    return entitlement


async def handle_subscription_deleted(db: AsyncSession, event: stripe.Event) -> Entitlement | None:
    """Handle customer.subscription.deleted — keep the record, mark it canceled."""
    stripe_sub = event.data.object
    customer_id = _object_id(getattr(stripe_sub, "customer", None))

    user = await _user_for_customer(db, customer_id, f"deleted subscription {stripe_sub.id}")
    if user is None:
        return None

    payload = SubscriptionPayload.from_stripe(stripe_sub, status=SubscriptionStatus.CANCELED.value)
    entitlement = await _apply_and_sync(db, user, payload, event)
    logger.info("Canceled subscription %s for user %s", stripe_sub.id, user.id)
    return entitlement


async def handle_checkout_session_completed(db: AsyncSession, event: stripe.Event) -> Entitlement | None:
    """Handle checkout.session.completed — activate the new subscription."""
    session = event.data.object

    if getattr(session, "mode", None) != "subscription":
        logger.info("Ignoring non-subscription checkout session %s", session.id)
        return None

    subscription_id = _object_id(getattr(session, "subscription", None))
    if not subscription_id:
        logger.info("Checkout session %s has no subscription, skipping", session.id)
        return None

    user = await resolve_checkout_user(db, session)
    if user is None:
        return None

    customer_id = _object_id(getattr(session, "customer", None))
    if customer_id:
        await link_customer(db, user, customer_id)

    stripe_sub = await _fetch_subscription(subscription_id)
    entitlement = await _apply_and_sync(db, user, SubscriptionPayload.from_stripe(stripe_sub), event)
    user.checkout_started_at = None
    await db.flush()

    logger.info("Completed checkout for user %s (subscription %s)", user.id, subscription_id)
    return entitlement


async def handle_invoice_payment_succeeded(db: AsyncSession, event: stripe.Event) -> Entitlement | None:
    """Handle invoice.payment_succeeded / invoice.paid — refresh period, record invoice."""
    invoice = event.data.object
    subscription_id = _invoice_subscription_id(invoice)

    if not subscription_id:
        logger.info("Invoice %s not related to a subscription, skipping", invoice.id)
        return None

    user = await _user_for_customer(
        db, _object_id(getattr(invoice, "customer", None)), f"invoice {invoice.id}"
    )
    if user is None:
        return None

    current = await get_entitlement_for_update(db, user.id)
    if current is None or current.subscription_id != subscription_id:
        logger.info(
            "Invoice %s subscription %s doesn't match user %s's current subscription",
            invoice.id,
            subscription_id,
            user.id,
        )
        return None

    stripe_sub = await _fetch_subscription(subscription_id)
    entitlement = await _apply_and_sync(db, user, SubscriptionPayload.from_stripe(stripe_sub), event)
    await record_invoice_payment(
        db,
        entitlement,
        invoice_id=invoice.id,
        amount_paid=getattr(invoice, "amount_paid", None),
        created=getattr(invoice, "created", None),
        receipt_url=getattr(invoice, "hosted_invoice_url", None),
    )
    logger.info("Updated payment info for user %s", user.id)
    return entitlement


async def handle_invoice_payment_failed(db: AsyncSession, event: stripe.Event) -> Entitlement | None:
    """Handle invoice.payment_failed — flag the failure; status follows subscription events."""
    invoice = event.data.object
    subscription_id = _invoice_subscription_id(invoice)

    if not subscription_id:
        logger.info("Invoice %s not related to a subscription, skipping payment failure", invoice.id)
        return None

    user = await _user_for_customer(
        db, _object_id(getattr(invoice, "customer", None)), f"failed invoice {invoice.id}"
    )
    if user is None:
        return None

    entitlement = await get_entitlement_for_update(db, user.id)
    if entitlement is None or entitlement.subscription_id != subscription_id:
        logger.info("Failed invoice %s is not for user %s's current subscription", invoice.id, user.id)
        return None

    return await mark_payment_failed(
        db,
        entitlement,
        invoice_id=invoice.id,
        created=getattr(invoice, "created", None),
        attempt_count=getattr(invoice, "attempt_count", None),
    )
