"""Stripe webhook endpoint — receives and processes Stripe events."""

import logging

import stripe
from fastapi import APIRouter, HTTPException, Request, status

from quillsign.billing.errors import CustomerConflictError
from quillsign.billing.stripe_client import construct_webhook_event
from quillsign.billing.webhooks import (
    handle_checkout_session_completed,
    handle_invoice_payment_failed,
    handle_invoice_payment_succeeded,
    handle_subscription_changed,
    handle_subscription_deleted,
)
from quillsign.database import async_session_factory
from quillsign.services.entitlement_events import EntitlementSnapshot, entitlement_broker

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stripe", tags=["webhooks"])

# Map event types to handler functions
EVENT_HANDLERS = {
    "customer.subscription.created": handle_subscription_changed,
    "customer.subscription.updated": handle_subscription_changed,
    "customer.subscription.deleted": handle_subscription_deleted,
    "checkout.session.completed": handle_checkout_session_completed,
    "invoice.payment_succeeded": handle_invoice_payment_succeeded,
    "invoice.paid": handle_invoice_payment_succeeded,
    "invoice.payment_failed": handle_invoice_payment_failed,
}


@router.post("/webhooks")
async def stripe_webhook(request: Request) -> dict[str, str]:
    """Receive and process Stripe webhook events."""
    # 1. Read raw body (MUST be raw bytes for signature verification)
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")

    # 2. Verify signature and timestamp window
    try:
        event = construct_webhook_event(payload, sig_header)
    except stripe.SignatureVerificationError as e:
        logger.warning("Webhook signature verification failed")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature",
        ) from e
    except ValueError as e:
        logger.warning("Invalid webhook payload")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid payload",
        ) from e

    # 3. Dispatch to handler
    handler = EVENT_HANDLERS.get(event.type)
    if handler is None:
        logger.debug("Unhandled webhook event type: %s", event.type)
        return {"status": "ignored"}

    logger.info("Processing webhook event: %s (id=%s)", event.type, event.id)

    # 4. Create own DB session (webhook has no auth context)
    async with async_session_factory() as db:
        try:
            entitlement = await handler(db, event)
            await db.commit()
        except CustomerConflictError as e:
            await db.rollback()
            logger.error("Dropping webhook event %s: %s", event.id, e)
            return {"status": "dropped"}
        except Exception as e:
            await db.rollback()
            logger.exception("Error processing webhook event %s", event.id)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Webhook processing failed",
            ) from e

    # 5. Notify live listeners once the change is durable
    if entitlement is None:
        return {"status": "skipped"}

    entitlement_broker.publish(entitlement.user_id, EntitlementSnapshot.from_entitlement(entitlement))
    return {"status": "processed"}
