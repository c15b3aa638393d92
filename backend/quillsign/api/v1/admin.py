"""Admin entitlement endpoints — inspect and repair a user's billing mirrors.

All routes require an admin user. Bodies identify the user by ``userId`` or
``email``.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from quillsign.api.deps import get_db, require_admin
from quillsign.billing.claims import sync_claims
from quillsign.billing.errors import CustomerConflictError, ProviderAPIError, UserNotFoundError
from quillsign.models.entitlement import Entitlement
from quillsign.models.user import User
from quillsign.schemas.entitlement import (
    AdminEntitlementResponse,
    EntitlementResponse,
    UserLookupRequest,
)
from quillsign.services.entitlement_events import EntitlementSnapshot, entitlement_broker
from quillsign.services.entitlement_service import (
    get_entitlement,
    reconcile_from_stripe,
    resolve_user,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/admin/entitlements",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
)


async def _load_user(db: AsyncSession, body: UserLookupRequest) -> User:
    try:
        return await resolve_user(db, user_id=body.user_id, email=body.email)
    except UserNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        ) from e


def _response(
    user: User,
    entitlement: Entitlement | None,
    message: str | None = None,
) -> AdminEntitlementResponse:
    snapshot = EntitlementSnapshot.from_entitlement(entitlement)
    return AdminEntitlementResponse(
        user_id=user.id,
        email=user.email,
        stripe_customer_id=user.stripe_customer_id,
        entitlement=EntitlementResponse(**snapshot.to_dict()),
        custom_claims=user.custom_claims,
        message=message,
    )


@router.post("/lookup", response_model=AdminEntitlementResponse)
async def lookup_entitlement(
    body: UserLookupRequest,
    db: AsyncSession = Depends(get_db),
) -> AdminEntitlementResponse:
    """Show a user's entitlement record next to their stored claims."""
    user = await _load_user(db, body)
    entitlement = await get_entitlement(db, user.id)
    return _response(user, entitlement)


@router.post("/reset-claims", response_model=AdminEntitlementResponse)
async def reset_claims(
    body: UserLookupRequest,
    db: AsyncSession = Depends(get_db),
) -> AdminEntitlementResponse:
    """Re-derive a user's claims from their entitlement record."""
    user = await _load_user(db, body)
    entitlement = await get_entitlement(db, user.id)
    previous = dict(user.custom_claims or {})
    await sync_claims(db, user, entitlement)
    await db.commit()

    logger.info("Admin reset claims for user %s: %s -> %s", user.id, previous, user.custom_claims)
    return _response(user, entitlement, message="Claims reset successfully")


@router.post("/reconcile", response_model=AdminEntitlementResponse)
async def reconcile_entitlement(
    body: UserLookupRequest,
    db: AsyncSession = Depends(get_db),
) -> AdminEntitlementResponse:
    """Rebuild a user's entitlement from Stripe, then re-sync claims."""
    user = await _load_user(db, body)

    try:
        entitlement = await reconcile_from_stripe(db, user)
    except CustomerConflictError as e:
        logger.error("Reconcile conflict for user %s: %s", user.id, e)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        ) from e
    except ProviderAPIError as e:
        logger.error("Reconcile failed for user %s: %s", user.id, e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(e),
        ) from e

    await sync_claims(db, user, entitlement)
    await db.commit()

    if entitlement is not None:
        entitlement_broker.publish(user.id, EntitlementSnapshot.from_entitlement(entitlement))

    message = "Entitlement reconciled from Stripe" if entitlement else "No Stripe subscription found"
    return _response(user, entitlement, message=message)


@router.post("/reset-checkout", response_model=AdminEntitlementResponse)
async def reset_checkout_marker(
    body: UserLookupRequest,
    db: AsyncSession = Depends(get_db),
) -> AdminEntitlementResponse:
    """Clear a user's stuck checkout-in-progress marker."""
    user = await _load_user(db, body)
    started_at = user.checkout_started_at
    user.checkout_started_at = None
    await db.commit()

    logger.info("Admin reset checkout marker for user %s (was %s)", user.id, started_at)
    entitlement = await get_entitlement(db, user.id)
    message = "Checkout marker cleared" if started_at else "No checkout in progress"
    return _response(user, entitlement, message=message)
