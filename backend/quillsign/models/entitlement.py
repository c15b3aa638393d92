"""Entitlement model — what a user may access based on Stripe billing state."""

import uuid
from typing import Any

from sqlalchemy import JSON, BigInteger, Boolean, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates
from sqlalchemy.sql import expression

from quillsign.billing.plans import tier_for_status
from quillsign.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Entitlement(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Per-user subscription record. Never hard-deleted; cancellation keeps the row."""

    __tablename__ = "entitlements"

    # One record per user (UNIQUE enforces one-to-one)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
        index=True,
    )

    # Stripe identifiers
    subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Status & tier (tier always derived from status)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    tier: Mapped[str] = mapped_column(String(20), nullable=False, server_default="free")

    # Billing period, epoch seconds as sent by Stripe
    current_period_end: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    cancel_at_period_end: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=expression.false()
    )

    # Invoice bookkeeping
    payment_failed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=expression.false()
    )
    last_payment_failure: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    last_invoice: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    # Last provider event applied
    last_event_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_event_created: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    # Relationships
    user: Mapped["User"] = relationship(back_populates="entitlement", lazy="selectin")  # type: ignore[name-defined]  # noqa: F821

    @validates("status")
    def _derive_tier(self, key: str, value: str) -> str:
        """Keep tier in lockstep with every status assignment."""
        self.tier = tier_for_status(value).value
        return value

    def __repr__(self) -> str:
        return f"<Entitlement(id={self.id}, user_id={self.user_id}, status={self.status}, tier={self.tier})>"
