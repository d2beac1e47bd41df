"""ORM model for application users (auth and RBAC)."""

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, func

from app.models.base import Base, Lifecycle


class User(Base):
    """
    User account for JWT authentication and role-based access control.

    Every user holds exactly one role. granted_permissions / denied_permissions are
    explicit per-user overrides on top of the role; a denial always wins.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    username = Column(String(255), nullable=False, unique=True, index=True)
    # Null for accounts created through OAuth first login.
    password_hash = Column(String(255), nullable=True)
    role_id = Column(Integer, ForeignKey("roles.id"), nullable=False, index=True)
    organization_id = Column(String(64), nullable=True, index=True)
    department_id = Column(String(64), nullable=True)
    oauth_accounts = Column(JSON, nullable=False, default=list)
    granted_permissions = Column(JSON, nullable=False, default=list)
    denied_permissions = Column(JSON, nullable=False, default=list)
    context_memberships = Column(JSON, nullable=False, default=list)
    lifecycle = Column(String(16), nullable=False, default=Lifecycle.ACTIVE.value)
    login_attempts = Column(Integer, nullable=False, default=0)
    locked_until = Column(DateTime(timezone=True), nullable=True)
    password_changed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    @property
    def is_active(self) -> bool:
        return self.lifecycle == Lifecycle.ACTIVE.value
