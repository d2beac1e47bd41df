"""ORM model for roles: hierarchy level, scope, base permissions and conditions."""

from sqlalchemy import JSON, Boolean, Column, Integer, String, Text

from app.models.base import Base, Lifecycle


class Role(Base):
    """
    Role in the permission hierarchy. Lower level = more privileged.

    scope: 'global', 'organization' or 'department'
    inherits_from: name of a parent role whose permissions are merged in
    conditions: constraints evaluated on every check (business hours, organization match, ...)
    """

    __tablename__ = "roles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(64), nullable=False, unique=True, index=True)
    display_name = Column(String(255), nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    level = Column(Integer, nullable=False)
    scope = Column(String(16), nullable=False, default="global")
    base_permissions = Column(JSON, nullable=False, default=list)
    denied_permissions = Column(JSON, nullable=False, default=list)
    inherits_from = Column(String(64), nullable=True)
    delegatable = Column(Boolean, nullable=False, default=False)
    is_system_role = Column(Boolean, nullable=False, default=False)
    conditions = Column(JSON, nullable=False, default=dict)
    lifecycle = Column(String(16), nullable=False, default=Lifecycle.ACTIVE.value)
