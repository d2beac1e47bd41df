"""Login, token refresh, logout and the current-user view."""

from typing import Annotated

from fastapi import APIRouter, Depends

from app.api.v1.deps import (
    get_audit,
    get_clock,
    get_context_service,
    get_current_user,
    get_resolver,
    get_store,
    get_token_claims,
    get_token_service,
)
from app.core.clock import Clock
from app.core.config import Settings, get_settings
from app.models import User
from app.schemas.auth import (
    CurrentUser,
    LoginRequest,
    LogoutRequest,
    LogoutResponse,
    RefreshRequest,
    TokenResponse,
)
from app.services.audit import PermissionAuditLogger
from app.services.authentication import LoginPolicy, authenticate
from app.services.permission_context import PermissionContextService
from app.services.role_resolver import RoleResolver
from app.services.store import RecordStore
from app.services.token_service import TokenClaims, TokenPair, TokenService

router = APIRouter()


def _token_response(pair: TokenPair) -> TokenResponse:
    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type=pair.token_type,
        expires_at=pair.access_expires_at,
        refresh_expires_at=pair.refresh_expires_at,
        session_id=pair.session_id,
    )


@router.post("/login", response_model=TokenResponse)
def login(
    body: LoginRequest,
    store: Annotated[RecordStore, Depends(get_store)],
    audit: Annotated[PermissionAuditLogger, Depends(get_audit)],
    token_service: Annotated[TokenService, Depends(get_token_service)],
    contexts: Annotated[PermissionContextService, Depends(get_context_service)],
    settings: Annotated[Settings, Depends(get_settings)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> TokenResponse:
    """
    Authenticate with email or username and password; returns a token pair.
    Include the access token in the Authorization header as: Bearer <access_token>
    """
    user = authenticate(
        store, audit, body.identifier, body.password, LoginPolicy.from_settings(settings), clock
    )
    pair = token_service.issue_token_pair(user)
    contexts.open(user, pair.session_id)
    return _token_response(pair)


@router.post("/refresh", response_model=TokenResponse)
def refresh(
    body: RefreshRequest,
    token_service: Annotated[TokenService, Depends(get_token_service)],
) -> TokenResponse:
    """Rotate a refresh token. The presented token cannot be used again."""
    return _token_response(token_service.refresh_tokens(body.refresh_token))


@router.post("/logout", response_model=LogoutResponse)
def logout(
    claims: Annotated[TokenClaims, Depends(get_token_claims)],
    token_service: Annotated[TokenService, Depends(get_token_service)],
    contexts: Annotated[PermissionContextService, Depends(get_context_service)],
    body: LogoutRequest | None = None,
) -> LogoutResponse:
    """Revoke the current session's refresh tokens (or all sessions) and drop its context."""
    if body is not None and body.everywhere:
        revoked = token_service.revoke_all_for_user(claims.user_id)
    else:
        revoked = token_service.revoke_session(claims.user_id, claims.session_id)
    contexts.close(claims.user_id, claims.session_id)
    return LogoutResponse(revoked=revoked)


@router.get("/me", response_model=CurrentUser)
def me(
    user: Annotated[User, Depends(get_current_user)],
    claims: Annotated[TokenClaims, Depends(get_token_claims)],
    resolver: Annotated[RoleResolver, Depends(get_resolver)],
    contexts: Annotated[PermissionContextService, Depends(get_context_service)],
) -> CurrentUser:
    """Current user with permissions resolved now (not the token snapshot)."""
    role = resolver.role_for(user)
    context = contexts.current(user.id, claims.session_id)
    return CurrentUser(
        id=user.id,
        email=user.email,
        username=user.username,
        role=role.name,
        role_level=role.level,
        organization_id=user.organization_id,
        department_id=user.department_id,
        session_id=claims.session_id,
        active_context=context.active_context if context is not None else None,
        permissions=resolver.resolve_effective_permissions(user).as_claims(),
    )
