"""Plan definitions — subscription statuses, tiers, and account limits."""

from dataclasses import dataclass
from enum import Enum

from quillsign.config import settings


class SubscriptionStatus(str, Enum):
    """Stripe subscription statuses tracked on an entitlement record."""

    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    UNPAID = "unpaid"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"


class Tier(str, Enum):
    """Coarse access level derived from subscription status."""

    FREE = "free"
    PRO = "pro"


# Reported for users that have never had an entitlement record.
NO_SUBSCRIPTION = "none"

ACTIVE_STATUSES: frozenset[str] = frozenset(
    {SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value}
)


def is_active_status(status: str | None) -> bool:
    """True for the statuses that grant the pro tier."""
    if isinstance(status, SubscriptionStatus):
        status = status.value
    return status in ACTIVE_STATUSES


def tier_for_status(status: str | None) -> Tier:
    """Tier is a pure function of status; it is never set independently."""
    return Tier.PRO if is_active_status(status) else Tier.FREE


def parse_status(value: str) -> SubscriptionStatus:
    """Parse a provider status string. Raises ValueError for unknown values."""
    return SubscriptionStatus(value)


@dataclass(frozen=True)
class PlanLimits:
    """Account limits for a tier."""

    name: str
    display_name: str
    max_contracts: int | None  # None = unlimited
    max_invoices: int | None  # None = unlimited
    price_monthly_cents: int
    price_yearly_cents: int
    stripe_monthly_price_id: str | None  # None for free tier
    stripe_yearly_price_id: str | None


PLANS: dict[str, PlanLimits] = {
    Tier.FREE.value: PlanLimits(
        name=Tier.FREE.value,
        display_name="Free",
        max_contracts=1,
        max_invoices=1,
        price_monthly_cents=0,
        price_yearly_cents=0,
        stripe_monthly_price_id=None,
        stripe_yearly_price_id=None,
    ),
    Tier.PRO.value: PlanLimits(
        name=Tier.PRO.value,
        display_name="Pro",
        max_contracts=None,
        max_invoices=None,
        price_monthly_cents=1500,
        price_yearly_cents=14400,
        stripe_monthly_price_id=settings.stripe_pro_monthly_price_id or None,
        stripe_yearly_price_id=settings.stripe_pro_yearly_price_id or None,
    ),
}


def get_plan(tier: str | Tier) -> PlanLimits:
    """Get plan limits by tier. Defaults to free if unknown."""
    if isinstance(tier, Tier):
        tier = tier.value
    return PLANS.get(tier, PLANS[Tier.FREE.value])


def get_price_id(interval: str) -> str | None:
    """Pro price ID for a billing interval ("month" or "year")."""
    pro = PLANS[Tier.PRO.value]
    if interval == "year":
        return pro.stripe_yearly_price_id
    return pro.stripe_monthly_price_id
