"""Ad hoc permission checks for clients deciding what to show."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from app.api.v1.deps import (
    get_audit,
    get_context_service,
    get_current_user,
    get_resolver,
    get_token_claims,
)
from app.models import User
from app.schemas.access import PermissionCheckResponse
from app.services.audit import AuditAction, AuditResult, PermissionAuditLogger
from app.services.permission_context import PermissionContextService, access_context_for
from app.services.role_resolver import AccessContext, RoleResolver
from app.services.token_service import TokenClaims

router = APIRouter()


@router.get("/check", response_model=PermissionCheckResponse)
def check_permission(
    user: Annotated[User, Depends(get_current_user)],
    claims: Annotated[TokenClaims, Depends(get_token_claims)],
    resolver: Annotated[RoleResolver, Depends(get_resolver)],
    audit: Annotated[PermissionAuditLogger, Depends(get_audit)],
    contexts: Annotated[PermissionContextService, Depends(get_context_service)],
    permission: Annotated[str, Query(min_length=1, max_length=128)],
    amount: Annotated[float | None, Query(ge=0)] = None,
) -> PermissionCheckResponse:
    """Evaluate permission for the caller in the session's active context (audited)."""
    context = contexts.current(user.id, claims.session_id)
    active = context.active_context if context is not None else None
    base = access_context_for(active)
    access = AccessContext(
        organization_id=base.organization_id,
        department_id=base.department_id,
        amount=amount,
    )
    allowed = resolver.has_permission(user, permission, access)
    audit.record(
        user.id,
        AuditAction.PERMISSION_CHECK,
        permission=permission,
        result=AuditResult.ALLOW if allowed else AuditResult.DENY,
        metadata={"session_id": claims.session_id, "context": active, "amount": amount},
    )
    return PermissionCheckResponse(permission=permission, allowed=allowed, context=active)
