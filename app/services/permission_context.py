"""Per-session permission context: which organization or department a user is acting in."""

import logging

from app.core.clock import Clock, utc_now
from app.core.exceptions import ContextNotAvailableError
from app.models import PermissionContext, User
from app.services.audit import AuditAction, AuditResult, PermissionAuditLogger
from app.services.role_resolver import AccessContext
from app.services.store import RecordStore

logger = logging.getLogger(__name__)

ORG_PREFIX = "org:"
DEPT_PREFIX = "dept:"


def available_contexts(user: User) -> list[str]:
    """Contexts a user may act in: own organization, own department, then memberships."""
    contexts: list[str] = []
    if user.organization_id:
        contexts.append(f"{ORG_PREFIX}{user.organization_id}")
    if user.department_id:
        contexts.append(f"{DEPT_PREFIX}{user.department_id}")
    for membership in user.context_memberships or ():
        if (
            isinstance(membership, str)
            and membership.startswith((ORG_PREFIX, DEPT_PREFIX))
            and membership not in contexts
        ):
            contexts.append(membership)
    return contexts


def access_context_for(context_id: str | None) -> AccessContext:
    """Translate an active context id into the AccessContext used for condition checks."""
    if not context_id:
        return AccessContext()
    if context_id.startswith(ORG_PREFIX):
        return AccessContext(organization_id=context_id[len(ORG_PREFIX):])
    if context_id.startswith(DEPT_PREFIX):
        return AccessContext(department_id=context_id[len(DEPT_PREFIX):])
    return AccessContext()


class PermissionContextService:
    def __init__(
        self, store: RecordStore, audit: PermissionAuditLogger, clock: Clock = utc_now
    ) -> None:
        self._store = store
        self._audit = audit
        self._clock = clock

    def open(self, user: User, session_id: str) -> PermissionContext:
        """Create (or reset) the session's context. The first available context is active."""
        contexts = available_contexts(user)
        context = self._store.get_context(user.id, session_id)
        if context is None:
            context = PermissionContext(
                user_id=user.id,
                session_id=session_id,
                created_at=self._clock(),
            )
        context.available_contexts = contexts
        context.active_context = contexts[0] if contexts else None
        context.updated_at = self._clock()
        self._store.add(context)
        self._store.commit()
        return context

    def current(self, user_id: int, session_id: str) -> PermissionContext | None:
        return self._store.get_context(user_id, session_id)

    def switch(self, user: User, session_id: str, context_id: str) -> PermissionContext:
        """
        Make context_id the active context of the session.

        Raises ContextNotAvailableError when the user may not act in that context.
        """
        context = self._store.get_context(user.id, session_id)
        if context is None:
            context = self.open(user, session_id)
        previous = context.active_context
        # Recomputed from the user so revoked memberships stop working mid-session.
        allowed = available_contexts(user)
        if context_id not in allowed:
            self._audit.record(
                user.id,
                AuditAction.CONTEXT_SWITCH,
                result=AuditResult.DENY,
                metadata={"session_id": session_id, "from": previous, "to": context_id},
            )
            raise ContextNotAvailableError(
                f"Context '{context_id}' is not available to user {user.id}"
            )

        context.available_contexts = allowed
        context.active_context = context_id
        context.updated_at = self._clock()
        self._store.commit()
        logger.info("User %s switched context %s -> %s", user.id, previous, context_id)
        self._audit.record(
            user.id,
            AuditAction.CONTEXT_SWITCH,
            metadata={"session_id": session_id, "from": previous, "to": context_id},
        )
        return context

    def close(self, user_id: int, session_id: str) -> bool:
        deleted = self._store.delete_context(user_id, session_id)
        self._store.commit()
        return deleted > 0
