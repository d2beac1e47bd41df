"""Permission audit logger: append-only record of authorization-relevant decisions.

Recording never blocks the decision it describes: a failed write is rolled back,
logged, and reported to the caller as None. There is no update or delete path.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from app.core.clock import Clock, utc_now
from app.models import PermissionAuditEntry
from app.services.store import RecordStore

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    PERMISSION_CHECK = "PERMISSION_CHECK"
    DELEGATION_GRANTED = "DELEGATION_GRANTED"
    DELEGATION_REVOKED = "DELEGATION_REVOKED"
    DELEGATION_EXPIRED = "DELEGATION_EXPIRED"
    CONTEXT_SWITCH = "CONTEXT_SWITCH"
    EMERGENCY_ELEVATION = "EMERGENCY_ELEVATION"
    ROLE_CHANGED = "ROLE_CHANGED"
    TOKEN_ISSUED = "TOKEN_ISSUED"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    TOKEN_REVOKED = "TOKEN_REVOKED"
    LOGIN_FAILED = "LOGIN_FAILED"


class AuditResult(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


ACTION_SEVERITY: dict[AuditAction, str] = {
    AuditAction.PERMISSION_CHECK: "low",
    AuditAction.DELEGATION_GRANTED: "medium",
    AuditAction.DELEGATION_REVOKED: "medium",
    AuditAction.DELEGATION_EXPIRED: "low",
    AuditAction.CONTEXT_SWITCH: "low",
    AuditAction.EMERGENCY_ELEVATION: "critical",
    AuditAction.ROLE_CHANGED: "high",
    AuditAction.TOKEN_ISSUED: "low",
    AuditAction.TOKEN_REFRESHED: "low",
    AuditAction.TOKEN_REVOKED: "medium",
    AuditAction.LOGIN_FAILED: "medium",
}


def _severity(action: AuditAction, result: AuditResult) -> str:
    severity = ACTION_SEVERITY[action]
    # Denied checks are more interesting than allowed ones.
    if action is AuditAction.PERMISSION_CHECK and result is AuditResult.DENY:
        return "medium"
    return severity


class PermissionAuditLogger:
    """Writes and reads audit entries through a RecordStore."""

    def __init__(self, store: RecordStore, clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock

    def record(
        self,
        user_id: int | None,
        action: AuditAction,
        permission: str | None = None,
        result: AuditResult = AuditResult.ALLOW,
        metadata: dict[str, Any] | None = None,
    ) -> PermissionAuditEntry | None:
        """
        Append one audit entry. Returns the entry, or None when the write failed.

        Failures are logged for operational follow-up and never raised.
        """
        entry = PermissionAuditEntry(
            user_id=user_id,
            action=action.value,
            permission=permission,
            result=result.value,
            severity=_severity(action, result),
            timestamp=self._clock(),
            details=dict(metadata or {}),
        )
        try:
            self._store.insert_audit_entry(entry)
        except SQLAlchemyError:
            self._store.rollback()
            logger.exception(
                "Audit write failed: action=%s user_id=%s permission=%s result=%s",
                action.value,
                user_id,
                permission,
                result.value,
            )
            return None
        return entry

    def entries(
        self,
        user_id: int | None = None,
        action: AuditAction | None = None,
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[PermissionAuditEntry]:
        return self._store.audit_entries(
            user_id=user_id,
            action=action.value if action else None,
            since=since,
            limit=limit,
        )

    def statistics(self, since: datetime | None = None) -> dict[str, dict[str, int]]:
        """Entry counts grouped by action and by result."""
        return {
            "by_action": self._store.audit_counts("action", since=since),
            "by_result": self._store.audit_counts("result", since=since),
        }
