"""Record store: the single place the access-control services query the database.

Default user/role queries exclude archived rows. Writes that may contend
(refresh-token rotation, delegation revocation) are conditional updates that
report how many rows they changed, so callers can detect a lost race.
The audit log is only ever inserted into and selected from.
"""

from datetime import datetime

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.models import (
    Lifecycle,
    PermissionAuditEntry,
    PermissionContext,
    PermissionDelegation,
    RefreshToken,
    Role,
    User,
)


class RecordStore:
    """Thin query layer over a SQLAlchemy session."""

    def __init__(self, session: Session) -> None:
        self.session = session

    # Transactions

    def add(self, obj: object) -> None:
        self.session.add(obj)
        self.session.flush()

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    # Users

    def get_user(self, user_id: int, include_archived: bool = False) -> User | None:
        query = self.session.query(User).filter(User.id == user_id)
        if not include_archived:
            query = query.filter(User.lifecycle != Lifecycle.ARCHIVED.value)
        return query.first()

    def get_user_by_login(self, identifier: str) -> User | None:
        """Find a non-archived user by email (case-insensitive) or username."""
        ident = identifier.strip()
        return (
            self.session.query(User)
            .filter(
                or_(func.lower(User.email) == ident.lower(), User.username == ident),
                User.lifecycle != Lifecycle.ARCHIVED.value,
            )
            .first()
        )

    def lock_user(self, user_id: int) -> User | None:
        """Load a user with a row lock (SELECT ... FOR UPDATE where the backend supports it)."""
        return (
            self.session.query(User)
            .filter(User.id == user_id)
            .with_for_update()
            .first()
        )

    # Roles

    def get_role(self, role_id: int) -> Role | None:
        return (
            self.session.query(Role)
            .filter(Role.id == role_id, Role.lifecycle != Lifecycle.ARCHIVED.value)
            .first()
        )

    def get_role_by_name(self, name: str) -> Role | None:
        return (
            self.session.query(Role)
            .filter(Role.name == name, Role.lifecycle != Lifecycle.ARCHIVED.value)
            .first()
        )

    # Delegations

    def get_delegation(self, delegation_id: int) -> PermissionDelegation | None:
        return (
            self.session.query(PermissionDelegation)
            .filter(PermissionDelegation.id == delegation_id)
            .first()
        )

    def active_delegations_to(self, user_id: int, now: datetime) -> list[PermissionDelegation]:
        return (
            self.session.query(PermissionDelegation)
            .filter(
                PermissionDelegation.to_user_id == user_id,
                PermissionDelegation.is_active.is_(True),
                PermissionDelegation.expires_at > now,
            )
            .order_by(PermissionDelegation.id)
            .all()
        )

    def active_delegations_from(self, user_id: int, now: datetime) -> list[PermissionDelegation]:
        return (
            self.session.query(PermissionDelegation)
            .filter(
                PermissionDelegation.from_user_id == user_id,
                PermissionDelegation.is_active.is_(True),
                PermissionDelegation.expires_at > now,
            )
            .order_by(PermissionDelegation.id)
            .all()
        )

    def count_active_delegations_from(self, user_id: int, now: datetime) -> int:
        return (
            self.session.query(PermissionDelegation)
            .filter(
                PermissionDelegation.from_user_id == user_id,
                PermissionDelegation.is_active.is_(True),
                PermissionDelegation.expires_at > now,
            )
            .count()
        )

    def expired_active_delegations(self, now: datetime) -> list[PermissionDelegation]:
        return (
            self.session.query(PermissionDelegation)
            .filter(
                PermissionDelegation.is_active.is_(True),
                PermissionDelegation.expires_at <= now,
            )
            .order_by(PermissionDelegation.id)
            .all()
        )

    def deactivate_delegation(
        self, delegation_id: int, at: datetime, revoked_by_id: int | None = None
    ) -> int:
        """Set is_active=False only if still active. Returns the number of rows changed."""
        return (
            self.session.query(PermissionDelegation)
            .filter(
                PermissionDelegation.id == delegation_id,
                PermissionDelegation.is_active.is_(True),
            )
            .update(
                {
                    PermissionDelegation.is_active: False,
                    PermissionDelegation.revoked_at: at,
                    PermissionDelegation.revoked_by_id: revoked_by_id,
                }
            )
        )

    # Refresh tokens

    def get_refresh_token(self, jti: str) -> RefreshToken | None:
        return self.session.query(RefreshToken).filter(RefreshToken.jti == jti).first()

    def revoke_refresh_token(
        self, jti: str, at: datetime, replaced_by_jti: str | None = None
    ) -> int:
        """Set revoked_at only if unset. Returns the number of rows changed."""
        values: dict = {RefreshToken.revoked_at: at}
        if replaced_by_jti is not None:
            values[RefreshToken.replaced_by_jti] = replaced_by_jti
        return (
            self.session.query(RefreshToken)
            .filter(RefreshToken.jti == jti, RefreshToken.revoked_at.is_(None))
            .update(values)
        )

    def revoke_refresh_tokens(
        self, user_id: int, at: datetime, session_id: str | None = None
    ) -> int:
        query = self.session.query(RefreshToken).filter(
            RefreshToken.user_id == user_id,
            RefreshToken.revoked_at.is_(None),
        )
        if session_id is not None:
            query = query.filter(RefreshToken.session_id == session_id)
        return query.update({RefreshToken.revoked_at: at})

    # Audit log (insert + select only)

    def insert_audit_entry(self, entry: PermissionAuditEntry) -> None:
        self.session.add(entry)
        self.session.commit()

    def audit_entries(
        self,
        user_id: int | None = None,
        action: str | None = None,
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[PermissionAuditEntry]:
        query = self.session.query(PermissionAuditEntry)
        if user_id is not None:
            query = query.filter(PermissionAuditEntry.user_id == user_id)
        if action is not None:
            query = query.filter(PermissionAuditEntry.action == action)
        if since is not None:
            query = query.filter(PermissionAuditEntry.timestamp >= since)
        return (
            query.order_by(PermissionAuditEntry.timestamp.desc(), PermissionAuditEntry.id.desc())
            .limit(limit)
            .all()
        )

    def audit_counts(
        self, column: str, since: datetime | None = None
    ) -> dict[str, int]:
        """Count audit entries grouped by 'action' or 'result'."""
        group_col = getattr(PermissionAuditEntry, column)
        query = self.session.query(group_col, func.count(PermissionAuditEntry.id))
        if since is not None:
            query = query.filter(PermissionAuditEntry.timestamp >= since)
        return {key: count for key, count in query.group_by(group_col).all()}

    # Permission contexts

    def get_context(self, user_id: int, session_id: str) -> PermissionContext | None:
        return (
            self.session.query(PermissionContext)
            .filter(
                PermissionContext.user_id == user_id,
                PermissionContext.session_id == session_id,
            )
            .first()
        )

    def delete_context(self, user_id: int, session_id: str) -> int:
        return (
            self.session.query(PermissionContext)
            .filter(
                PermissionContext.user_id == user_id,
                PermissionContext.session_id == session_id,
            )
            .delete(synchronize_session=False)
        )
