"""SQLAlchemy models for Quillsign.

All models are imported here so that Alembic's autogenerate can discover
them via Base.metadata. If you add a new model, import it in this file.
"""

from quillsign.models.entitlement import Entitlement
from quillsign.models.user import User

__all__ = [
    "Entitlement",
    "User",
]
