"""Request/response schemas for permission delegation."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.exceptions import InvalidPermissionError
from app.services.delegation import DelegationType
from app.services.permissions import normalize_permissions


class _PermissionList(BaseModel):
    permissions: list[str] = Field(..., min_length=1, max_length=50)

    @field_validator("permissions")
    @classmethod
    def validate_permissions(cls, v: list[str]) -> list[str]:
        try:
            return normalize_permissions(v)
        except InvalidPermissionError as e:
            raise ValueError(e.message) from e


class DelegationCreate(_PermissionList):
    to_user_id: int = Field(..., ge=1)
    ttl_minutes: int = Field(..., ge=1, le=30 * 24 * 60, description="Lifetime in minutes")
    delegation_type: DelegationType = DelegationType.TEMPORARY
    reason: str | None = Field(default=None, max_length=1000)


class EmergencyElevationCreate(_PermissionList):
    target_user_id: int = Field(..., ge=1)
    reason: str = Field(..., min_length=1, max_length=1000)
    ttl_minutes: int | None = Field(default=None, ge=1, description="Capped at the emergency maximum")


class DelegationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    from_user_id: int
    to_user_id: int
    permissions: list[str]
    delegation_type: str
    reason: str | None = None
    expires_at: datetime
    is_active: bool
    created_at: datetime | None = None
    revoked_at: datetime | None = None
    revoked_by_id: int | None = None


class DelegationListResponse(BaseModel):
    granted: list[DelegationResponse] = Field(default_factory=list, description="Delegations I gave")
    received: list[DelegationResponse] = Field(default_factory=list, description="Delegations I hold")
