"""SQLAlchemy declarative Base and shared model configuration."""

from enum import Enum

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""

    pass


class Lifecycle(str, Enum):
    """
    Lifecycle of users and roles. Rows are never physically deleted;
    archived rows are excluded from default queries.
    """

    ACTIVE = "active"
    DEACTIVATED = "deactivated"
    ARCHIVED = "archived"
