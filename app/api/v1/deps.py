"""Request-scoped wiring: store, services, current user and permission guards."""

import logging
from collections.abc import Callable
from typing import Annotated

from fastapi import Cookie, Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.core.clock import Clock, utc_now
from app.core.config import Settings, get_settings
from app.core.database import get_db
from app.core.exceptions import InvalidTokenError, NotAuthorizedError
from app.models import User
from app.services.audit import AuditAction, AuditResult, PermissionAuditLogger
from app.services.delegation import DelegationConfig, DelegationLedger, GrantorLocks
from app.services.permission_context import PermissionContextService, access_context_for
from app.services.permissions import parse_permission
from app.services.role_resolver import RoleResolver
from app.services.store import RecordStore
from app.services.token_service import TokenClaims, TokenConfig, TokenService

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def get_clock() -> Clock:
    """Time source for request handling. Tests override this to simulate time."""
    return utc_now


def get_store(db: Annotated[Session, Depends(get_db)]) -> RecordStore:
    return RecordStore(db)


def get_resolver(
    store: Annotated[RecordStore, Depends(get_store)],
    settings: Annotated[Settings, Depends(get_settings)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> RoleResolver:
    return RoleResolver(
        store,
        clock=clock,
        business_hours=(settings.BUSINESS_HOURS_START, settings.BUSINESS_HOURS_END),
    )


def get_audit(
    store: Annotated[RecordStore, Depends(get_store)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> PermissionAuditLogger:
    return PermissionAuditLogger(store, clock=clock)


def get_token_service(
    store: Annotated[RecordStore, Depends(get_store)],
    resolver: Annotated[RoleResolver, Depends(get_resolver)],
    audit: Annotated[PermissionAuditLogger, Depends(get_audit)],
    settings: Annotated[Settings, Depends(get_settings)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> TokenService:
    return TokenService(TokenConfig.from_settings(settings), store, resolver, audit, clock=clock)


def get_grantor_locks(request: Request) -> GrantorLocks:
    """The application-wide delegation lock registry (see app.main)."""
    return request.app.state.grantor_locks


def get_delegation_ledger(
    store: Annotated[RecordStore, Depends(get_store)],
    resolver: Annotated[RoleResolver, Depends(get_resolver)],
    audit: Annotated[PermissionAuditLogger, Depends(get_audit)],
    settings: Annotated[Settings, Depends(get_settings)],
    clock: Annotated[Clock, Depends(get_clock)],
    locks: Annotated[GrantorLocks, Depends(get_grantor_locks)],
) -> DelegationLedger:
    return DelegationLedger(
        store,
        resolver,
        audit,
        config=DelegationConfig.from_settings(settings),
        clock=clock,
        locks=locks,
    )


def get_context_service(
    store: Annotated[RecordStore, Depends(get_store)],
    audit: Annotated[PermissionAuditLogger, Depends(get_audit)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> PermissionContextService:
    return PermissionContextService(store, audit, clock=clock)


def get_bearer_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    access_token: Annotated[str | None, Cookie(alias="accessToken")] = None,
) -> str | None:
    """Access token from the Authorization header, falling back to the accessToken cookie."""
    if credentials is not None:
        return credentials.credentials
    return access_token


def get_token_claims(
    token: Annotated[str | None, Depends(get_bearer_token)],
    token_service: Annotated[TokenService, Depends(get_token_service)],
) -> TokenClaims:
    """Dependency: require a valid access token. Raises 401 if missing, invalid or expired."""
    if not token:
        raise InvalidTokenError("Not authenticated")
    return token_service.verify_access_token(token)


def get_current_user(
    claims: Annotated[TokenClaims, Depends(get_token_claims)],
    store: Annotated[RecordStore, Depends(get_store)],
) -> User:
    """Dependency: the active user named by the token."""
    user = store.get_user(claims.user_id)
    if user is None or not user.is_active:
        raise InvalidTokenError("User not found or inactive")
    return user


def require_permission(permission: str) -> Callable[..., User]:
    """
    Dependency factory: require permission for the current user.

    Evaluated against the session's active context; every decision is audited.
    """
    wanted = str(parse_permission(permission))

    def dependency(
        user: Annotated[User, Depends(get_current_user)],
        claims: Annotated[TokenClaims, Depends(get_token_claims)],
        resolver: Annotated[RoleResolver, Depends(get_resolver)],
        audit: Annotated[PermissionAuditLogger, Depends(get_audit)],
        contexts: Annotated[PermissionContextService, Depends(get_context_service)],
    ) -> User:
        context = contexts.current(user.id, claims.session_id)
        active = context.active_context if context is not None else None
        allowed = resolver.has_permission(user, wanted, access_context_for(active))
        audit.record(
            user.id,
            AuditAction.PERMISSION_CHECK,
            permission=wanted,
            result=AuditResult.ALLOW if allowed else AuditResult.DENY,
            metadata={"session_id": claims.session_id, "context": active},
        )
        if not allowed:
            logger.warning("Permission %s denied for user %s", wanted, user.id)
            raise NotAuthorizedError(f"Permission '{wanted}' required")
        return user

    return dependency
