"""User administration: role assignment under the role hierarchy."""

from typing import Annotated

from fastapi import APIRouter, Depends

from app.api.v1.deps import get_audit, get_clock, get_resolver, get_store, require_permission
from app.core.clock import Clock
from app.core.exceptions import UserNotFoundError
from app.models import User
from app.schemas.access import RoleChangeRequest, RoleChangeResponse
from app.services.audit import PermissionAuditLogger
from app.services.role_resolver import RoleResolver, change_user_role
from app.services.store import RecordStore

router = APIRouter()


@router.patch("/{user_id}/role", response_model=RoleChangeResponse)
def change_role(
    user_id: int,
    body: RoleChangeRequest,
    actor: Annotated[User, Depends(require_permission("role:assign"))],
    store: Annotated[RecordStore, Depends(get_store)],
    resolver: Annotated[RoleResolver, Depends(get_resolver)],
    audit: Annotated[PermissionAuditLogger, Depends(get_audit)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> RoleChangeResponse:
    """Assign a role. The caller must outrank both the user's current role and the new one."""
    target = store.get_user(user_id)
    if target is None:
        raise UserNotFoundError(f"User {user_id} not found")
    updated = change_user_role(store, resolver, audit, actor, target, body.role.value, clock)
    role = resolver.role_for(updated)
    return RoleChangeResponse(user_id=updated.id, role=role.name, role_level=role.level)
