"""Entitlement dependencies — load the caller's entitlement and plan limits."""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from quillsign.auth.dependencies import get_current_active_user
from quillsign.billing.plans import PlanLimits, get_plan
from quillsign.database import get_db
from quillsign.models.user import User
from quillsign.services.entitlement_events import EntitlementSnapshot
from quillsign.services.entitlement_service import get_entitlement


async def get_current_entitlement(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_active_user),
) -> EntitlementSnapshot:
    """Snapshot of the caller's entitlement (free tier when there is no record)."""
    entitlement = await get_entitlement(db, user.id)
    return EntitlementSnapshot.from_entitlement(entitlement)


async def get_plan_limits(
    snapshot: EntitlementSnapshot = Depends(get_current_entitlement),
) -> PlanLimits:
    """Account limits for the caller's current tier."""
    return get_plan(snapshot.tier)
