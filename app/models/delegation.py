"""ORM model for temporary permission delegations between users."""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text, func

from app.models.base import Base


class PermissionDelegation(Base):
    """
    Time-bounded grant of a subset of from_user's permissions to to_user.

    Rows are kept after expiry or revocation for the audit trail; is_active=False
    marks revoked (or swept) rows, expires_at is authoritative for expiry.
    """

    __tablename__ = "permission_delegations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    from_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    to_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    permissions = Column(JSON, nullable=False)
    delegation_type = Column(String(32), nullable=False, default="temporary")
    reason = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    revoked_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
