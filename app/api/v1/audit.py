"""Read-only access to the permission audit log."""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from app.api.v1.deps import get_audit, require_permission
from app.models import User
from app.schemas.audit import AuditEntryResponse, AuditListResponse, AuditStatisticsResponse
from app.services.audit import AuditAction, PermissionAuditLogger

router = APIRouter()


@router.get("", response_model=AuditListResponse)
def list_audit_entries(
    _auditor: Annotated[User, Depends(require_permission("audit:read"))],
    audit: Annotated[PermissionAuditLogger, Depends(get_audit)],
    user_id: Annotated[int | None, Query(ge=1)] = None,
    action: AuditAction | None = None,
    since: datetime | None = None,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
) -> AuditListResponse:
    """Newest entries first."""
    entries = audit.entries(user_id=user_id, action=action, since=since, limit=limit)
    return AuditListResponse(entries=[AuditEntryResponse.model_validate(e) for e in entries])


@router.get("/statistics", response_model=AuditStatisticsResponse)
def audit_statistics(
    _auditor: Annotated[User, Depends(require_permission("audit:read"))],
    audit: Annotated[PermissionAuditLogger, Depends(get_audit)],
    since: datetime | None = None,
) -> AuditStatisticsResponse:
    return AuditStatisticsResponse(**audit.statistics(since=since))
