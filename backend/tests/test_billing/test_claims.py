"""Tests for claims derivation and the wholesale claims overwrite."""

from sqlalchemy.ext.asyncio import AsyncSession

from quillsign.billing.claims import build_subscription_claims, sync_claims
from quillsign.models.entitlement import Entitlement


class TestBuildSubscriptionClaims:
    """build_subscription_claims is a pure function of the record."""

    def test_no_record_is_free(self):
        assert build_subscription_claims(None) == {
            "subscriptionStatus": "none",
            "subscriptionTier": "free",
        }

    def test_active_record(self):
        entitlement = Entitlement(status="active", subscription_id="sub_1", customer_id="cus_1")
        assert build_subscription_claims(entitlement) == {
            "subscriptionStatus": "active",
            "subscriptionTier": "pro",
            "subscriptionId": "sub_1",
            "stripeCustomerId": "cus_1",
        }

    def test_canceled_record_is_free(self):
        entitlement = Entitlement(status="canceled", subscription_id="sub_1")
        claims = build_subscription_claims(entitlement)
        assert claims["subscriptionStatus"] == "canceled"
        assert claims["subscriptionTier"] == "free"
        assert "stripeCustomerId" not in claims

    def test_customer_id_fallback_and_admin_flag(self):
        claims = build_subscription_claims(None, is_admin=True, customer_id="cus_9")
        assert claims["stripeCustomerId"] == "cus_9"
        assert claims["isAdmin"] is True

    def test_deterministic(self):
        entitlement = Entitlement(status="trialing", subscription_id="sub_2", customer_id="cus_2")
        assert build_subscription_claims(entitlement) == build_subscription_claims(entitlement)


class TestSyncClaims:
    """sync_claims overwrites user.custom_claims from the stored record."""

    async def test_overwrites_wholesale(self, db_session: AsyncSession, make_user):
        user = await make_user(stripe_customer_id="cus_sync", status="active")
        user.custom_claims = {**user.custom_claims, "legacyFlag": True}
        await db_session.flush()

        claims = await sync_claims(db_session, user)

        assert "legacyFlag" not in claims
        assert user.custom_claims == claims
        assert claims["subscriptionTier"] == "pro"

    async def test_loads_record_when_not_given(self, db_session: AsyncSession, make_user):
        user = await make_user(stripe_customer_id="cus_load", status="past_due")
        user.custom_claims = {}

        claims = await sync_claims(db_session, user)

        assert claims["subscriptionStatus"] == "past_due"
        assert claims["subscriptionTier"] == "free"

    async def test_admin_flag_survives(self, db_session: AsyncSession, admin_user):
        claims = await sync_claims(db_session, admin_user)
        assert claims["isAdmin"] is True
        assert claims["subscriptionStatus"] == "none"
