"""User model — authentication, Stripe customer link, and auth claims mirror."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from quillsign.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """User account for freelancers signing contracts."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    hashed_password: Mapped[str | None] = mapped_column(String(255), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    role: Mapped[str] = mapped_column(String(50), default="member", nullable=False)

    # Secondary index used by webhooks: Stripe customer -> user.
    # Never reassigned once set (see entitlement_service.link_customer).
    stripe_customer_id: Mapped[str | None] = mapped_column(
        String(255), unique=True, index=True, nullable=True
    )

    # Denormalized subscription claims, copied into access tokens when issued.
    # Always overwritten wholesale by the claims synchronizer.
    custom_claims: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    # Server-side checkout-in-progress marker
    checkout_started_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Relationships
    entitlement: Mapped["Entitlement | None"] = relationship(  # type: ignore[name-defined]  # noqa: F821
        "Entitlement", back_populates="user", uselist=False, lazy="selectin"
    )

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role!r}>"
