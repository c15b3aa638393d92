"""Claims synchronizer — mirrors entitlement state into the user's auth claims.

Claims are regenerated from the entitlement record and written wholesale, never
patched field by field. Anything outside the subscription fields survives only
because it is re-supplied here (currently just ``isAdmin``). Access tokens copy
``user.custom_claims`` when issued, so clients see new claims only after a
token refresh.
"""

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from quillsign.billing.plans import NO_SUBSCRIPTION, Tier, tier_for_status
from quillsign.models.entitlement import Entitlement
from quillsign.models.user import User
from quillsign.services.entitlement_service import get_entitlement

logger = logging.getLogger(__name__)


def build_subscription_claims(
    entitlement: Entitlement | None,
    is_admin: bool = False,
    customer_id: str | None = None,
) -> dict[str, Any]:
    """Derive the claims object for an entitlement record (deterministic)."""
    if entitlement is None:
        claims: dict[str, Any] = {
            "subscriptionStatus": NO_SUBSCRIPTION,
            "subscriptionTier": Tier.FREE.value,
        }
    else:
        claims = {
            "subscriptionStatus": entitlement.status,
            "subscriptionTier": tier_for_status(entitlement.status).value,
            "subscriptionId": entitlement.subscription_id,
        }
        customer_id = entitlement.customer_id or customer_id

    if customer_id:
        claims["stripeCustomerId"] = customer_id
    if is_admin:
        claims["isAdmin"] = True
    return claims


async def sync_claims(
    db: AsyncSession,
    user: User,
    entitlement: Entitlement | None = None,
) -> dict[str, Any]:
    """Overwrite the user's claims from their current entitlement record.

    Pass ``entitlement`` when the caller already holds the fresh record.
    """
    if entitlement is None:
        entitlement = await get_entitlement(db, user.id)

    claims = build_subscription_claims(
        entitlement,
        is_admin=user.is_admin,
        customer_id=user.stripe_customer_id,
    )
    if claims != user.custom_claims:
        logger.info("Updating claims for user %s: %s -> %s", user.id, user.custom_claims, claims)
    user.custom_claims = claims
    await db.flush()
    return claims
