"""Request/response schemas for auth endpoints."""

from datetime import datetime

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    """Credentials for login. identifier is an email address or a username."""

    identifier: str = Field(..., min_length=1, max_length=255, description="Email or username")
    password: str = Field(..., min_length=8, max_length=128, description="Password")


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1, description="Refresh token from login or a previous refresh")


class LogoutRequest(BaseModel):
    """Closes the session of the bearer token, or every session of the user."""

    everywhere: bool = Field(default=False, description="Revoke every session of the user")


class TokenResponse(BaseModel):
    """Token pair returned by login and refresh."""

    access_token: str = Field(..., description="JWT access token")
    refresh_token: str = Field(..., description="JWT refresh token (single use)")
    token_type: str = Field(default="bearer", description="Token type")
    expires_at: datetime = Field(..., description="Access token expiry")
    refresh_expires_at: datetime = Field(..., description="Refresh token expiry")
    session_id: str = Field(..., description="Session id, stable across refreshes")


class LogoutResponse(BaseModel):
    revoked: int = Field(..., description="Number of refresh tokens revoked")


class CurrentUser(BaseModel):
    """Authenticated user as seen by /auth/me."""

    id: int
    email: str
    username: str
    role: str
    role_level: int
    organization_id: str | None = None
    department_id: str | None = None
    session_id: str
    active_context: str | None = None
    permissions: list[str] = Field(default_factory=list, description="Effective permissions, delegations included")
