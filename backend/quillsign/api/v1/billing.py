"""Billing API endpoints — plans, entitlement status, Stripe Checkout, Customer Portal."""

import logging
from datetime import datetime, timedelta, timezone

import stripe
from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from quillsign.api.deps import get_current_active_user, get_db
from quillsign.billing.claims import sync_claims
from quillsign.billing.cookies import set_subscription_cookie
from quillsign.billing.errors import CustomerConflictError, ProviderAPIError
from quillsign.billing.plans import (
    NO_SUBSCRIPTION,
    PLANS,
    PlanLimits,
    get_plan,
    get_price_id,
    is_active_status,
    tier_for_status,
)
from quillsign.billing.stripe_client import (
    create_checkout_session,
    create_portal_session,
    retrieve_checkout_session,
)
from quillsign.billing.webhooks import checkout_subscription, resolve_checkout_user
from quillsign.config import settings
from quillsign.models.user import User
from quillsign.schemas.billing import (
    CheckoutRequest,
    CheckoutResponse,
    CheckoutStateResponse,
    PlanResponse,
    PlansListResponse,
    PortalRequest,
    PortalResponse,
    SubscriptionResponse,
    VerifyResponse,
    VerifySessionRequest,
    VerifySessionResponse,
)
from quillsign.services.entitlement_events import EntitlementSnapshot, entitlement_broker
from quillsign.services.entitlement_service import (
    SubscriptionPayload,
    apply_subscription,
    ensure_stripe_customer,
    get_entitlement,
    reconcile_from_stripe,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/billing", tags=["billing"])


def _utcnow() -> datetime:
    """Naive UTC, matching the DB column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _checkout_locked(user: User, now: datetime) -> bool:
    """True while a checkout started inside the lock window."""
    return user.checkout_started_at is not None and now - user.checkout_started_at < timedelta(
        seconds=settings.checkout_lock_seconds
    )


def _plan_response(plan: PlanLimits) -> PlanResponse:
    return PlanResponse(
        name=plan.name,
        display_name=plan.display_name,
        max_contracts=plan.max_contracts,
        max_invoices=plan.max_invoices,
        price_monthly_cents=plan.price_monthly_cents,
        price_yearly_cents=plan.price_yearly_cents,
    )


@router.get("/plans", response_model=PlansListResponse)
async def list_plans() -> PlansListResponse:
    """List available plans (public — no auth required)."""
    return PlansListResponse(plans=[_plan_response(p) for p in PLANS.values()])


@router.get("/subscription", response_model=SubscriptionResponse)
async def get_subscription(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> SubscriptionResponse:
    """Get the current entitlement record and plan limits."""
    entitlement = await get_entitlement(db, current_user.id)
    entitlement_status = entitlement.status if entitlement else NO_SUBSCRIPTION
    tier = tier_for_status(entitlement_status)

    return SubscriptionResponse(
        plan=_plan_response(get_plan(tier)),
        status=entitlement_status,
        tier=tier.value,
        is_active=is_active_status(entitlement_status),
        subscription_id=entitlement.subscription_id if entitlement else None,
        customer_id=current_user.stripe_customer_id,
        current_period_end=entitlement.current_period_end if entitlement else None,
        cancel_at_period_end=entitlement.cancel_at_period_end if entitlement else False,
        payment_failed=entitlement.payment_failed if entitlement else False,
        updated_at=entitlement.updated_at if entitlement else None,
    )


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(
    body: CheckoutRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> CheckoutResponse:
    """Create a Stripe Checkout session for the Pro plan."""
    price_id = get_price_id(body.interval)
    if not price_id:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Stripe price ID not configured for plan.",
        )

    entitlement = await get_entitlement(db, current_user.id)
    if entitlement is not None and is_active_status(entitlement.status):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Subscription already active. Use the billing portal to manage it.",
        )

    # Checkout-in-progress lock, held on the user row
    result = await db.execute(
        select(User)
        .where(User.id == current_user.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    user = result.scalar_one()
    now = _utcnow()
    if _checkout_locked(user, now):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A checkout is already in progress.",
        )
    user.checkout_started_at = now
    await db.flush()

    try:
        customer_id = await ensure_stripe_customer(db, user)
    except CustomerConflictError as e:
        logger.error("Stripe customer conflict: %s", e)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        ) from e
    except ProviderAPIError as e:
        logger.error("Stripe customer error: %s", e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(e),
        ) from e

    success_url = (
        body.success_url
        or f"{settings.frontend_url}/payment-success?session_id={{CHECKOUT_SESSION_ID}}"
    )
    cancel_url = body.cancel_url or f"{settings.frontend_url}/payment-canceled"

    try:
        session = await create_checkout_session(
            customer_id=customer_id,
            price_id=price_id,
            user_id=str(user.id),
            success_url=success_url,
            cancel_url=cancel_url,
        )
    except stripe.StripeError as e:
        logger.error("Stripe checkout error: %s", e)
        # Keep the customer link, release the lock
        user.checkout_started_at = None
        await db.commit()
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(e),
        ) from e

    await db.commit()

    return CheckoutResponse(
        checkout_url=session.url,
        session_id=session.id,
    )


@router.post("/portal", response_model=PortalResponse)
async def create_portal(
    body: PortalRequest,
    current_user: User = Depends(get_current_active_user),
) -> PortalResponse:
    """Create a Stripe Customer Portal session for subscription management."""
    if not current_user.stripe_customer_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No Stripe customer found. Subscribe first.",
        )

    return_url = body.return_url or f"{settings.frontend_url}/settings"

    try:
        session = await create_portal_session(
            customer_id=current_user.stripe_customer_id,
            return_url=return_url,
        )
    except stripe.StripeError as e:
        logger.error("Stripe portal error: %s", e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(e),
        ) from e

    return PortalResponse(portal_url=session.url)


@router.post("/verify", response_model=VerifyResponse)
async def verify_subscription(
    response: Response,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> VerifyResponse:
    """Re-check the caller's subscription, falling back to Stripe when not active.

    Re-syncs claims and rewrites the subscription cookie from the result.
    """
    entitlement = await get_entitlement(db, current_user.id)
    was_active = entitlement is not None and is_active_status(entitlement.status)
    was_updated = False

    if not was_active and current_user.stripe_customer_id:
        try:
            reconciled = await reconcile_from_stripe(db, current_user)
        except ProviderAPIError as e:
            logger.error("Error checking subscription with Stripe: %s", e)
        else:
            if reconciled is not None:
                entitlement = reconciled
                was_updated = is_active_status(reconciled.status)

    await sync_claims(db, current_user, entitlement)
    await db.commit()

    snapshot = EntitlementSnapshot.from_entitlement(entitlement)
    if was_updated:
        entitlement_broker.publish(current_user.id, snapshot)

    set_subscription_cookie(response, snapshot.status)

    return VerifyResponse(
        user_id=str(current_user.id),
        has_subscription=entitlement is not None,
        is_active=snapshot.is_active,
        subscription_status=snapshot.status,
        subscription_id=snapshot.subscription_id,
        subscription_tier=snapshot.tier,
        current_period_end=snapshot.current_period_end,
        was_updated_from_stripe=was_updated,
    )


@router.post("/verify-session", response_model=VerifySessionResponse)
async def verify_checkout_session(
    body: VerifySessionRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> VerifySessionResponse:
    """Confirm a Checkout Session from the success page and apply its subscription.

    Covers the gap before ``checkout.session.completed`` arrives. The session must
    belong to the caller.
    """
    try:
        session = await retrieve_checkout_session(body.session_id)
    except stripe.StripeError as e:
        logger.error("Stripe error retrieving checkout session %s: %s", body.session_id, e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(e),
        ) from e

    owner = await resolve_checkout_user(db, session)
    if owner is None or owner.id != current_user.id:
        logger.warning("User %s tried to verify checkout session %s of another account", current_user.id, session.id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Checkout session does not belong to the current user",
        )

    previous = await get_entitlement(db, current_user.id)
    previous_state = (previous.status, previous.subscription_id) if previous else None
    entitlement = previous

    try:
        stripe_sub = await checkout_subscription(session)
        if stripe_sub is not None:
            entitlement = await apply_subscription(db, current_user, SubscriptionPayload.from_stripe(stripe_sub))
    except CustomerConflictError as e:
        logger.error("Stripe customer conflict verifying session %s: %s", session.id, e)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        ) from e
    except ProviderAPIError as e:
        logger.error("Error verifying checkout session %s: %s", session.id, e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(e),
        ) from e

    updated = entitlement is not None and (entitlement.status, entitlement.subscription_id) != previous_state
    if stripe_sub is not None:
        current_user.checkout_started_at = None
    await sync_claims(db, current_user, entitlement)
    await db.commit()

    snapshot = EntitlementSnapshot.from_entitlement(entitlement)
    if updated:
        entitlement_broker.publish(current_user.id, snapshot)
    set_subscription_cookie(response, snapshot.status)

    payment_status = getattr(session, "payment_status", None)
    logger.info(
        "Verified checkout session %s for user %s: payment=%s subscription=%s updated=%s",
        session.id,
        current_user.id,
        payment_status,
        snapshot.status,
        updated,
    )
    return VerifySessionResponse(
        session_id=session.id,
        verified=payment_status == "paid",
        payment_status=payment_status,
        mode=getattr(session, "mode", None),
        customer_id=current_user.stripe_customer_id,
        is_subscription_active=snapshot.is_active,
        subscription_status=snapshot.status,
        subscription_id=snapshot.subscription_id,
        subscription_tier=snapshot.tier,
        subscription_updated=updated,
    )


def _checkout_state(user: User) -> CheckoutStateResponse:
    in_progress = _checkout_locked(user, _utcnow())
    return CheckoutStateResponse(
        checkout_in_progress=in_progress,
        checkout_started_at=user.checkout_started_at,
        stuck=user.checkout_started_at is not None and not in_progress,
    )


@router.get("/checkout/reset", response_model=CheckoutStateResponse)
async def get_checkout_state(
    current_user: User = Depends(get_current_active_user),
) -> CheckoutStateResponse:
    """Report the caller's checkout marker (``stuck`` once the lock window has passed)."""
    return _checkout_state(current_user)


@router.post("/checkout/reset", response_model=CheckoutStateResponse)
async def reset_checkout(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> CheckoutStateResponse:
    """Clear the caller's checkout marker, e.g. after canceling on the Stripe page."""
    if current_user.checkout_started_at is not None:
        logger.info("Resetting checkout marker for user %s (set at %s)", current_user.id, current_user.checkout_started_at)
        current_user.checkout_started_at = None
        await db.commit()
    return _checkout_state(current_user)
