"""Pydantic request/response schemas."""

from app.schemas.access import (
    ContextResponse,
    ContextSwitchRequest,
    PermissionCheckResponse,
    RoleChangeRequest,
    RoleChangeResponse,
)
from app.schemas.audit import AuditEntryResponse, AuditListResponse, AuditStatisticsResponse
from app.schemas.auth import (
    CurrentUser,
    LoginRequest,
    LogoutRequest,
    LogoutResponse,
    RefreshRequest,
    TokenResponse,
)
from app.schemas.delegation import (
    DelegationCreate,
    DelegationListResponse,
    DelegationResponse,
    EmergencyElevationCreate,
)
from app.schemas.health import HealthResponse
from app.schemas.session import SessionHealthResponse

__all__ = [
    "AuditEntryResponse",
    "AuditListResponse",
    "AuditStatisticsResponse",
    "ContextResponse",
    "ContextSwitchRequest",
    "CurrentUser",
    "DelegationCreate",
    "DelegationListResponse",
    "DelegationResponse",
    "EmergencyElevationCreate",
    "HealthResponse",
    "LoginRequest",
    "LogoutRequest",
    "LogoutResponse",
    "PermissionCheckResponse",
    "RefreshRequest",
    "RoleChangeRequest",
    "RoleChangeResponse",
    "SessionHealthResponse",
    "TokenResponse",
]
