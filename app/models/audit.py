"""ORM model for the append-only permission audit log."""

from sqlalchemy import JSON, Column, DateTime, Integer, String

from app.models.base import Base


class PermissionAuditEntry(Base):
    """One authorization-relevant decision. Inserted once, never updated or deleted."""

    __tablename__ = "permission_audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=True, index=True)
    action = Column(String(64), nullable=False, index=True)
    permission = Column(String(128), nullable=True)
    result = Column(String(8), nullable=False)
    severity = Column(String(16), nullable=False, default="low")
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    # "metadata" is reserved on declarative classes; keep the column name, rename the attribute.
    details = Column("metadata", JSON, nullable=False, default=dict)
