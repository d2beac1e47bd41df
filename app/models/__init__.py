"""SQLAlchemy ORM models."""

from app.models.audit import PermissionAuditEntry
from app.models.base import Base, Lifecycle
from app.models.delegation import PermissionDelegation
from app.models.role import Role
from app.models.token import PermissionContext, RefreshToken
from app.models.user import User

__all__ = [
    "Base",
    "Lifecycle",
    "PermissionAuditEntry",
    "PermissionContext",
    "PermissionDelegation",
    "RefreshToken",
    "Role",
    "User",
]
