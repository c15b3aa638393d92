"""Entitlement service — upserts per-user entitlement records from Stripe data."""

import logging
import uuid
from dataclasses import dataclass
from typing import Any

import stripe
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from quillsign.billing.errors import CustomerConflictError, ProviderAPIError, UserNotFoundError
from quillsign.billing.plans import is_active_status
from quillsign.billing.stripe_client import (
    create_customer,
    find_customers_by_email,
    list_subscriptions,
)
from quillsign.models.entitlement import Entitlement
from quillsign.models.user import User

logger = logging.getLogger(__name__)


def _get_first_item(stripe_sub: Any):
    """Get the first subscription item, using bracket notation to avoid
    collision with Python dict .items() in newer Stripe API versions.
    """
    try:
        sub_items = stripe_sub["items"]
    except (KeyError, AttributeError):
        return None
    if sub_items and getattr(sub_items, "data", None):
        return sub_items.data[0]
    return None


def _period_end(stripe_sub: Any) -> int | None:
    """Current period end in epoch seconds.

    In Stripe API 2025-08-27 (basil), current_period_end moved from the
    subscription object to the subscription item.
    """
    period_end = getattr(stripe_sub, "current_period_end", None)
    if period_end is not None:
        return int(period_end)
    item = _get_first_item(stripe_sub)
    if item is not None and getattr(item, "current_period_end", None) is not None:
        return int(item.current_period_end)
    return None


def _customer_id(value: Any) -> str | None:
    """Stripe sends either a customer ID or an expanded customer object."""
    if value is None or isinstance(value, str):
        return value
    return getattr(value, "id", None)


@dataclass(frozen=True)
class SubscriptionPayload:
    """The subset of a Stripe subscription the entitlement record tracks."""

    subscription_id: str
    customer_id: str | None
    status: str
    current_period_end: int | None = None
    cancel_at_period_end: bool = False

    @classmethod
    def from_stripe(cls, stripe_sub: Any, status: str | None = None) -> "SubscriptionPayload":
        """Build from a Stripe Subscription, optionally overriding its status."""
        return cls(
            subscription_id=stripe_sub.id,
            customer_id=_customer_id(getattr(stripe_sub, "customer", None)),
            status=status or stripe_sub.status,
            current_period_end=_period_end(stripe_sub),
            cancel_at_period_end=bool(getattr(stripe_sub, "cancel_at_period_end", False)),
        )


# ---------------------------------------------------------------------------
# User lookups
# ---------------------------------------------------------------------------


async def get_user_by_customer_id(db: AsyncSession, customer_id: str) -> User | None:
    """Look up the user owning a Stripe customer ID (used by webhooks)."""
    result = await db.execute(select(User).where(User.stripe_customer_id == customer_id))
    return result.scalar_one_or_none()


async def get_user_by_id(db: AsyncSession, user_id: uuid.UUID) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def resolve_user(
    db: AsyncSession,
    user_id: uuid.UUID | None = None,
    email: str | None = None,
) -> User:
    """Find a user by ID, falling back to email.

    Raises:
        UserNotFoundError: If neither identifier matches a user.
    """
    user = None
    if user_id is not None:
        user = await get_user_by_id(db, user_id)
    if user is None and email:
        user = await get_user_by_email(db, email)
    if user is None:
        raise UserNotFoundError(str(user_id) if user_id is not None else f"email {email}")
    return user


# ---------------------------------------------------------------------------
# Entitlement reads
# ---------------------------------------------------------------------------


async def get_entitlement(db: AsyncSession, user_id: uuid.UUID) -> Entitlement | None:
    result = await db.execute(select(Entitlement).where(Entitlement.user_id == user_id))
    return result.scalar_one_or_none()


async def get_entitlement_for_update(db: AsyncSession, user_id: uuid.UUID) -> Entitlement | None:
    """Load the user's entitlement row with a row lock held until commit.

    Concurrent webhook deliveries for the same user serialize here.
    """
    result = await db.execute(
        select(Entitlement)
        .where(Entitlement.user_id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Customer linking
# ---------------------------------------------------------------------------


async def link_customer(db: AsyncSession, user: User, customer_id: str) -> None:
    """Attach a Stripe customer ID to a user.

    Raises:
        CustomerConflictError: If another user already owns the customer ID.
    """
    if user.stripe_customer_id == customer_id:
        return

    owner = await get_user_by_customer_id(db, customer_id)
    if owner is not None and owner.id != user.id:
        raise CustomerConflictError(customer_id, str(owner.id))

    if user.stripe_customer_id:
        logger.warning(
            "User %s already linked to Stripe customer %s, not replacing with %s",
            user.id,
            user.stripe_customer_id,
            customer_id,
        )
        return

    user.stripe_customer_id = customer_id
    await db.flush()
    logger.info("Linked Stripe customer %s to user %s", customer_id, user.id)


async def ensure_stripe_customer(db: AsyncSession, user: User) -> str:
    """Ensure the user has a Stripe customer ID. Create one if missing."""
    if user.stripe_customer_id:
        return user.stripe_customer_id

    try:
        customer = await create_customer(
            email=user.email,
            name=user.name or user.email,
            user_id=str(user.id),
        )
    except stripe.StripeError as e:
        raise ProviderAPIError(f"Could not create Stripe customer: {e}") from e

    await link_customer(db, user, customer.id)
    return customer.id


# ---------------------------------------------------------------------------
# Entitlement writes
# ---------------------------------------------------------------------------


async def apply_subscription(
    db: AsyncSession,
    user: User,
    payload: SubscriptionPayload,
    event_id: str | None = None,
    event_created: int | None = None,
) -> Entitlement:
    """Upsert the user's entitlement from a subscription payload.

    Last writer wins. Replaying the same payload leaves the record unchanged.
    """
    if payload.customer_id:
        await link_customer(db, user, payload.customer_id)

    entitlement = await get_entitlement_for_update(db, user.id)
    if entitlement is None:
        entitlement = Entitlement(user=user, status=payload.status)
        db.add(entitlement)
        logger.info("Creating entitlement for user %s", user.id)

    previous_status = entitlement.status
    entitlement.subscription_id = payload.subscription_id
    entitlement.customer_id = payload.customer_id or user.stripe_customer_id
    entitlement.status = payload.status
    entitlement.current_period_end = payload.current_period_end
    entitlement.cancel_at_period_end = payload.cancel_at_period_end
    if event_id is not None:
        entitlement.last_event_id = event_id
        entitlement.last_event_created = event_created
    await db.flush()

    logger.info(
        "Entitlement for user %s: %s -> %s (tier=%s, subscription=%s)",
        user.id,
        previous_status,
        entitlement.status,
        entitlement.tier,
        entitlement.subscription_id,
    )
    return entitlement


async def mark_payment_failed(
    db: AsyncSession,
    entitlement: Entitlement,
    invoice_id: str,
    created: int | None,
    attempt_count: int | None,
) -> Entitlement:
    """Flag a failed invoice payment. Status changes arrive via subscription events."""
    entitlement.payment_failed = True
    entitlement.last_payment_failure = {
        "invoice_id": invoice_id,
        "created": created,
        "attempt": attempt_count,
    }
    await db.flush()
    logger.info("Payment failed for user %s (invoice %s)", entitlement.user_id, invoice_id)
    return entitlement


async def record_invoice_payment(
    db: AsyncSession,
    entitlement: Entitlement,
    invoice_id: str,
    amount_paid: int | None,
    created: int | None,
    receipt_url: str | None,
) -> Entitlement:
    """Record the latest paid invoice and clear any payment failure flag."""
    entitlement.payment_failed = False
    entitlement.last_invoice = {
        "invoice_id": invoice_id,
        "amount_paid": amount_paid,
        "created": created,
        "receipt_url": receipt_url,
    }
    await db.flush()
    return entitlement


async def reconcile_from_stripe(db: AsyncSession, user: User) -> Entitlement | None:
    """Rebuild the user's entitlement from Stripe (manual repair path).

    Finds the customer by email when the user is not linked yet, prefers an
    active or trialing subscription, otherwise takes the most recent one.
    Returns the current record unchanged when Stripe has nothing to offer.
    """
    try:
        customer_id = user.stripe_customer_id
        if not customer_id:
            customers = await find_customers_by_email(user.email)
            if not customers:
                logger.info("No Stripe customer found for %s", user.email)
                return await get_entitlement(db, user.id)
            customer_id = customers[0].id
            await link_customer(db, user, customer_id)

        subscriptions = await list_subscriptions(customer_id)
    except stripe.StripeError as e:
        raise ProviderAPIError(f"Stripe lookup failed for user {user.id}: {e}") from e

    if not subscriptions:
        logger.info("Stripe customer %s has no subscriptions", customer_id)
        return await get_entitlement(db, user.id)

    chosen = next(
        (sub for sub in subscriptions if is_active_status(sub.status)),
        subscriptions[0],
    )
    logger.info("Reconciling user %s from Stripe subscription %s", user.id, chosen.id)
    return await apply_subscription(db, user, SubscriptionPayload.from_stripe(chosen))
