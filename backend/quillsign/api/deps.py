"""Shared API dependencies — single import point for all routers.

Re-exports database session, authentication and entitlement dependencies so
that router modules can import everything they need from one place::

    from quillsign.api.deps import get_db, get_current_active_user
"""

from quillsign.auth.dependencies import (
    get_current_active_user,
    get_current_user,
    require_admin,
)
from quillsign.billing.dependencies import get_current_entitlement, get_plan_limits
from quillsign.database import get_db

__all__ = [
    "get_db",
    "get_current_user",
    "get_current_active_user",
    "require_admin",
    "get_current_entitlement",
    "get_plan_limits",
]
