"""Entitlement endpoints — current snapshot and a live SSE stream of changes.

GET /api/v1/entitlements/me          — Current entitlement; also re-syncs the cookie
GET /api/v1/entitlements/me/stream   — Server-sent events, one per entitlement change
"""

import json
import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession
from sse_starlette.sse import EventSourceResponse

from quillsign.api.deps import get_current_active_user, get_current_entitlement, get_db
from quillsign.billing.cookies import synchronize_subscription_cookie
from quillsign.models.user import User
from quillsign.schemas.entitlement import EntitlementResponse
from quillsign.services.entitlement_events import (
    EntitlementSnapshot,
    EntitlementSubscription,
    SubscriptionClosed,
    entitlement_broker,
)
from quillsign.services.entitlement_service import get_entitlement

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/entitlements", tags=["entitlements"])

# How often the stream wakes up to check for a disconnected client
STREAM_POLL_SECONDS = 15.0


def _event(snapshot: EntitlementSnapshot) -> dict[str, str]:
    return {"event": "entitlement", "data": json.dumps(snapshot.to_dict())}


async def entitlement_event_stream(
    request: Request,
    subscription: EntitlementSubscription,
    initial: EntitlementSnapshot,
    poll_seconds: float = STREAM_POLL_SECONDS,
) -> AsyncIterator[dict[str, str]]:
    """Yield the initial snapshot, then every published change until disconnect or logout."""
    try:
        yield _event(initial)
        while True:
            if await request.is_disconnected():
                break
            try:
                snapshot = await subscription.get(timeout=poll_seconds)
            except TimeoutError:
                continue
            except SubscriptionClosed:
                break
            yield _event(snapshot)
    finally:
        subscription.close()
        logger.debug("Entitlement stream closed for user %s", subscription.user_id)


@router.get("/me", response_model=EntitlementResponse)
async def read_my_entitlement(
    request: Request,
    response: Response,
    snapshot: EntitlementSnapshot = Depends(get_current_entitlement),
    user: User = Depends(get_current_active_user),
) -> EntitlementResponse:
    """Return the caller's entitlement and bring the subscription cookie in line with their claims."""
    synchronize_subscription_cookie(request, response, user.custom_claims)
    return EntitlementResponse(**snapshot.to_dict())


@router.get("/me/stream")
async def stream_my_entitlement(
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_active_user),
) -> EventSourceResponse:
    """Stream entitlement changes for the caller as server-sent events."""
    # Subscribe before reading the record so a change published in between is queued
    subscription = entitlement_broker.subscribe(user.id)
    try:
        entitlement = await get_entitlement(db, user.id)
    except Exception:
        subscription.close()
        raise
    snapshot = EntitlementSnapshot.from_entitlement(entitlement)
    return EventSourceResponse(entitlement_event_stream(request, subscription, snapshot))
