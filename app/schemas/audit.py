"""Read-only views of the permission audit log."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int | None = None
    action: str
    permission: str | None = None
    result: str
    severity: str
    timestamp: datetime
    details: dict[str, Any] = Field(default_factory=dict, serialization_alias="metadata")


class AuditListResponse(BaseModel):
    entries: list[AuditEntryResponse]


class AuditStatisticsResponse(BaseModel):
    by_action: dict[str, int]
    by_result: dict[str, int]
