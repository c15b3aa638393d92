"""Pydantic v2 schemas for entitlement reads and admin repair endpoints."""

import uuid
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator


class EntitlementResponse(BaseModel):
    """Live entitlement view used by the UI to gate features."""

    status: str
    tier: str
    is_active: bool
    is_pro: bool
    subscription_id: str | None = None
    current_period_end: int | None = None
    cancel_at_period_end: bool = False


class UserLookupRequest(BaseModel):
    """Identify a user by ID or email (at least one is required)."""

    user_id: uuid.UUID | None = Field(default=None, alias="userId")
    email: EmailStr | None = None

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def _require_identifier(self) -> "UserLookupRequest":
        if self.user_id is None and self.email is None:
            raise ValueError("user_id or email is required")
        return self


class AdminEntitlementResponse(BaseModel):
    """Entitlement snapshot plus the mirrors derived from it."""

    user_id: uuid.UUID
    email: str
    stripe_customer_id: str | None
    entitlement: EntitlementResponse
    custom_claims: dict[str, Any]
    message: str | None = None
