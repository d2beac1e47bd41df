"""Per-session permission context endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends

from app.api.v1.deps import get_context_service, get_current_user, get_token_claims
from app.models import PermissionContext, User
from app.schemas.access import ContextResponse, ContextSwitchRequest
from app.services.permission_context import PermissionContextService
from app.services.token_service import TokenClaims

router = APIRouter()


def _context_response(context: PermissionContext) -> ContextResponse:
    return ContextResponse(
        session_id=context.session_id,
        active_context=context.active_context,
        available_contexts=list(context.available_contexts or []),
    )


@router.get("", response_model=ContextResponse)
def current_context(
    user: Annotated[User, Depends(get_current_user)],
    claims: Annotated[TokenClaims, Depends(get_token_claims)],
    contexts: Annotated[PermissionContextService, Depends(get_context_service)],
) -> ContextResponse:
    context = contexts.current(user.id, claims.session_id)
    if context is None:
        context = contexts.open(user, claims.session_id)
    return _context_response(context)


@router.post("/switch", response_model=ContextResponse)
def switch_context(
    body: ContextSwitchRequest,
    user: Annotated[User, Depends(get_current_user)],
    claims: Annotated[TokenClaims, Depends(get_token_claims)],
    contexts: Annotated[PermissionContextService, Depends(get_context_service)],
) -> ContextResponse:
    """Act in another organization or department the caller belongs to."""
    return _context_response(contexts.switch(user, claims.session_id, body.context))
