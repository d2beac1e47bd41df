"""ORM models for per-session state: refresh tokens and permission contexts."""

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint, func

from app.models.base import Base


class RefreshToken(Base):
    """
    Server-side record of an issued refresh token, keyed by its jti.

    revoked_at is set on logout or when the token is rotated; replaced_by_jti links
    a rotated token to its successor.
    """

    __tablename__ = "refresh_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    jti = Column(String(64), nullable=False, unique=True, index=True)
    session_id = Column(String(64), nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    replaced_by_jti = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PermissionContext(Base):
    """The organization/department a user is acting in for one session."""

    __tablename__ = "permission_contexts"
    __table_args__ = (UniqueConstraint("user_id", "session_id", name="uq_permission_context_session"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    session_id = Column(String(64), nullable=False)
    active_context = Column(String(128), nullable=True)
    available_contexts = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)
