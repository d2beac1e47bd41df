"""Schemas for permission checks, contexts and role assignment."""

from pydantic import BaseModel, Field

from app.services.permissions import RoleName


class PermissionCheckResponse(BaseModel):
    permission: str
    allowed: bool
    context: str | None = None


class ContextResponse(BaseModel):
    session_id: str
    active_context: str | None = None
    available_contexts: list[str] = Field(default_factory=list)


class ContextSwitchRequest(BaseModel):
    context: str = Field(..., min_length=1, max_length=128, description="e.g. org:acme or dept:sales")


class RoleChangeRequest(BaseModel):
    role: RoleName


class RoleChangeResponse(BaseModel):
    user_id: int
    role: str
    role_level: int
