"""Pydantic v2 request/response schemas for billing endpoints."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

# --- Request schemas ---


class CheckoutRequest(BaseModel):
    """Request to create a Stripe Checkout session for Pro."""

    interval: Literal["month", "year"] = "month"
    success_url: str | None = None
    cancel_url: str | None = None


class PortalRequest(BaseModel):
    """Request to create a Stripe Customer Portal session."""

    return_url: str | None = None


class VerifySessionRequest(BaseModel):
    """Checkout Session ID from the success URL (``{CHECKOUT_SESSION_ID}``)."""

    session_id: str = Field(alias="sessionId", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


# --- Response schemas ---


class PlanResponse(BaseModel):
    """Plan details for display."""

    name: str
    display_name: str
    max_contracts: int | None
    max_invoices: int | None
    price_monthly_cents: int
    price_yearly_cents: int


class PlansListResponse(BaseModel):
    """All available plans."""

    plans: list[PlanResponse]


class SubscriptionResponse(BaseModel):
    """Entitlement record + plan limits for the authenticated user."""

    plan: PlanResponse
    status: str
    tier: str
    is_active: bool
    subscription_id: str | None
    customer_id: str | None
    current_period_end: int | None
    cancel_at_period_end: bool
    payment_failed: bool
    updated_at: datetime | None = None


class CheckoutResponse(BaseModel):
    """Stripe Checkout session URL returned to frontend."""

    checkout_url: str
    session_id: str


class PortalResponse(BaseModel):
    """Stripe Customer Portal URL returned to frontend."""

    portal_url: str


class VerifyResponse(BaseModel):
    """Result of re-verifying a subscription against the local record and Stripe."""

    user_id: str
    has_subscription: bool
    is_active: bool
    subscription_status: str
    subscription_id: str | None
    subscription_tier: str
    current_period_end: int | None
    was_updated_from_stripe: bool


class VerifySessionResponse(BaseModel):
    """Result of checking a completed Checkout Session against Stripe."""

    session_id: str
    verified: bool
    payment_status: str | None
    mode: str | None
    customer_id: str | None
    is_subscription_active: bool
    subscription_status: str
    subscription_id: str | None
    subscription_tier: str
    subscription_updated: bool


class CheckoutStateResponse(BaseModel):
    """Checkout-in-progress marker for the authenticated user."""

    checkout_in_progress: bool
    checkout_started_at: datetime | None
    stuck: bool
