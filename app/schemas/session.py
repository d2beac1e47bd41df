"""Schema for the session health endpoint (camelCase on the wire)."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class SessionHealthResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    healthy: bool = Field(..., description="Session exists and its token is valid")
    expires_at: datetime | None = Field(default=None, alias="expiresAt")
    near_expiration: bool = Field(default=False, alias="nearExpiration")
    session_exists: bool = Field(default=False, alias="sessionExists")
