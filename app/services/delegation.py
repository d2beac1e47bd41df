"""Permission delegation ledger.

A delegation hands a subset of the grantor's own permissions to another user for a
bounded time. Delegations are single-hop: the subset check runs against the
grantor's permissions with delegations excluded, so delegated permissions can
never be passed on. Expiry is evaluated at resolution time; expire_stale only
tidies rows for the audit trail.
"""

import logging
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING

from app.core.clock import Clock, utc_now
from app.core.exceptions import (
    DelegationLimitExceededError,
    DelegationNotFoundError,
    ExceedsGrantorPermissionsError,
    InvalidDelegationError,
    NotAuthorizedError,
    NotDelegatableError,
)
from app.models import PermissionDelegation, User
from app.services.audit import AuditAction, AuditResult, PermissionAuditLogger
from app.services.permissions import normalize_permissions, overlaps
from app.services.role_resolver import RoleResolver
from app.services.store import RecordStore

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)

ELEVATE_PERMISSION = "system:elevate"

# Security-critical permissions. A request for any pattern overlapping one of these
# ("*", "system:*", "user:*" ...) is refused by delegate(); emergency elevation is exempt.
NON_DELEGATABLE_PERMISSIONS = frozenset(
    {
        "system:elevate",
        "system:configure",
        "role:assign",
        "role:manage",
        "user:manage",
        "user:delete",
        "audit:read",
    }
)


class DelegationType(str, Enum):
    TEMPORARY = "temporary"
    PROJECT = "project"
    EMERGENCY = "emergency"
    COVERAGE = "coverage"


@dataclass(frozen=True)
class DelegationConfig:
    """Upper bound on delegation lifetime, and on a grantor's active delegations, per type."""

    max_ttl: dict[DelegationType, timedelta] = field(
        default_factory=lambda: {
            DelegationType.TEMPORARY: timedelta(hours=24),
            DelegationType.PROJECT: timedelta(days=30),
            DelegationType.EMERGENCY: timedelta(hours=4),
            DelegationType.COVERAGE: timedelta(days=7),
        }
    )
    # Compared against all of the grantor's active delegations, whatever their type.
    max_active: dict[DelegationType, int] = field(
        default_factory=lambda: {
            DelegationType.TEMPORARY: 10,
            DelegationType.PROJECT: 5,
            DelegationType.EMERGENCY: 3,
            DelegationType.COVERAGE: 3,
        }
    )

    @classmethod
    def from_settings(cls, settings: "Settings") -> "DelegationConfig":
        return cls(
            max_ttl={
                DelegationType.TEMPORARY: timedelta(hours=settings.DELEGATION_TEMPORARY_MAX_HOURS),
                DelegationType.PROJECT: timedelta(hours=settings.DELEGATION_PROJECT_MAX_HOURS),
                DelegationType.EMERGENCY: timedelta(hours=settings.DELEGATION_EMERGENCY_MAX_HOURS),
                DelegationType.COVERAGE: timedelta(hours=settings.DELEGATION_COVERAGE_MAX_HOURS),
            }
        )

    def limit_for(self, delegation_type: DelegationType) -> timedelta:
        return self.max_ttl[delegation_type]

    def active_limit_for(self, delegation_type: DelegationType) -> int:
        return self.max_active[delegation_type]


@dataclass
class _LockEntry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


class GrantorLocks:
    """
    Per-grantor locks serializing delegation writes within a process.

    An entry exists only while some thread holds or waits for it. The application
    keeps one instance for all requests; the row lock taken on the grantor covers
    concurrent workers on backends that support SELECT FOR UPDATE.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[int, _LockEntry] = {}

    @contextmanager
    def hold(self, user_id: int) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(user_id)
            if entry is None:
                entry = self._entries[user_id] = _LockEntry()
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._entries[user_id]

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


def _parse_type(value: DelegationType | str) -> DelegationType:
    try:
        return DelegationType(value)
    except ValueError as e:
        raise InvalidDelegationError(f"Unknown delegation type '{value}'", cause=e) from e


class DelegationLedger:
    """Creates, revokes and lists permission delegations."""

    def __init__(
        self,
        store: RecordStore,
        resolver: RoleResolver,
        audit: PermissionAuditLogger,
        config: DelegationConfig | None = None,
        clock: Clock = utc_now,
        locks: GrantorLocks | None = None,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._audit = audit
        self._config = config or DelegationConfig()
        self._clock = clock
        self._locks = locks or GrantorLocks()

    def _check_ttl(self, ttl: timedelta, delegation_type: DelegationType) -> None:
        limit = self._config.limit_for(delegation_type)
        if ttl <= timedelta(0) or ttl > limit:
            raise InvalidDelegationError(
                f"Delegation TTL must be positive and at most {limit} for {delegation_type.value}"
            )

    def _check_subset(self, grantor: User, permissions: list[str]) -> None:
        own = self._resolver.resolve_effective_permissions(grantor, include_delegations=False)
        missing = [p for p in permissions if not own.allows(p)]
        if missing:
            raise ExceedsGrantorPermissionsError(
                f"User {grantor.id} cannot delegate permissions they do not hold: {', '.join(missing)}"
            )

    def _record(
        self,
        grantor: User,
        grantee: User,
        permissions: list[str],
        ttl: timedelta,
        delegation_type: DelegationType,
        reason: str | None,
        active_limit: int | None = None,
    ) -> PermissionDelegation:
        """
        Write a delegation row under the grantor's lock and commit it.

        With active_limit set, the grantor's active delegations are counted under the
        same lock, so concurrent requests cannot overshoot the limit.
        """
        with self._locks.hold(grantor.id):
            locked = self._store.lock_user(grantor.id)
            if locked is None or not locked.is_active:
                raise InvalidDelegationError(f"Grantor {grantor.id} is not active")
            now = self._clock()
            if active_limit is not None:
                active = self._store.count_active_delegations_from(grantor.id, now)
                if active >= active_limit:
                    self._store.rollback()
                    logger.warning(
                        "User %s reached the limit of %d active delegations", grantor.id, active_limit
                    )
                    raise DelegationLimitExceededError(
                        f"Maximum active delegations ({active_limit}) reached for "
                        f"{delegation_type.value} delegations"
                    )
            # Re-check under the lock: the grantor's role may have changed meanwhile.
            self._resolver.clear_cache()
            self._check_subset(locked, permissions)
            delegation = PermissionDelegation(
                from_user_id=grantor.id,
                to_user_id=grantee.id,
                permissions=permissions,
                delegation_type=delegation_type.value,
                reason=reason,
                expires_at=now + ttl,
                is_active=True,
                created_at=now,
            )
            self._store.add(delegation)
            self._store.commit()
        self._resolver.clear_cache()
        return delegation

    def _validate_request(
        self, grantor: User, grantee: User, permissions: Iterable[str]
    ) -> list[str]:
        normalized = normalize_permissions(permissions)
        if not normalized:
            raise InvalidDelegationError("At least one permission must be delegated")
        if grantor.id == grantee.id:
            raise InvalidDelegationError("Users cannot delegate permissions to themselves")
        if not grantee.is_active:
            raise InvalidDelegationError(f"Grantee {grantee.id} is not active")
        return normalized

    def delegate(
        self,
        from_user: User,
        to_user: User,
        permissions: Iterable[str],
        ttl: timedelta,
        delegation_type: DelegationType | str = DelegationType.TEMPORARY,
        reason: str | None = None,
    ) -> PermissionDelegation:
        """
        Delegate permissions from from_user to to_user for ttl.

        Security-critical permissions (NON_DELEGATABLE_PERMISSIONS) are refused, and
        the grantor may hold at most the type's number of active delegations.

        Raises InvalidPermissionError, InvalidDelegationError, NotDelegatableError,
        ExceedsGrantorPermissionsError or DelegationLimitExceededError.
        """
        kind = _parse_type(delegation_type)
        normalized = self._validate_request(from_user, to_user, permissions)
        self._check_ttl(ttl, kind)

        grantor_role = self._resolver.role_for(from_user)
        grantee_role = self._resolver.role_for(to_user)
        if not grantor_role.delegatable:
            raise NotDelegatableError(f"Role '{grantor_role.name}' cannot delegate permissions")
        if not self._resolver.outranks(grantor_role, grantee_role):
            raise NotDelegatableError(
                f"Role '{grantor_role.name}' cannot delegate to role '{grantee_role.name}'"
            )
        restricted = sorted(
            p for p in normalized if any(overlaps(p, r) for r in NON_DELEGATABLE_PERMISSIONS)
        )
        if restricted:
            raise NotDelegatableError(
                f"Permissions cannot be delegated: {', '.join(restricted)}"
            )
        self._check_subset(from_user, normalized)

        delegation = self._record(
            from_user,
            to_user,
            normalized,
            ttl,
            kind,
            reason,
            active_limit=self._config.active_limit_for(kind),
        )
        logger.info(
            "User %s delegated %s to user %s until %s",
            from_user.id,
            normalized,
            to_user.id,
            delegation.expires_at,
        )
        self._audit.record(
            from_user.id,
            AuditAction.DELEGATION_GRANTED,
            metadata={
                "delegation_id": delegation.id,
                "to_user_id": to_user.id,
                "permissions": normalized,
                "delegation_type": kind.value,
                "expires_at": delegation.expires_at.isoformat(),
                "reason": reason,
            },
        )
        return delegation

    def emergency_elevation(
        self,
        actor: User,
        target: User,
        permissions: Iterable[str],
        reason: str,
        ttl: timedelta | None = None,
    ) -> PermissionDelegation:
        """
        Grant target temporary permissions in an emergency.

        The actor needs system:elevate. The delegatable flag and rank check do not
        apply, but the subset check does and the TTL is capped at the emergency maximum.
        """
        if not reason or not reason.strip():
            raise InvalidDelegationError("Emergency elevation requires a reason")
        if not self._resolver.has_permission(actor, ELEVATE_PERMISSION):
            self._audit.record(
                actor.id,
                AuditAction.EMERGENCY_ELEVATION,
                permission=ELEVATE_PERMISSION,
                result=AuditResult.DENY,
                metadata={"target_user_id": target.id, "reason": reason},
            )
            raise NotAuthorizedError(f"User {actor.id} may not perform emergency elevation")

        limit = self._config.limit_for(DelegationType.EMERGENCY)
        ttl = min(ttl, limit) if ttl is not None else limit
        normalized = self._validate_request(actor, target, permissions)
        self._check_ttl(ttl, DelegationType.EMERGENCY)
        self._check_subset(actor, normalized)

        delegation = self._record(
            actor, target, normalized, ttl, DelegationType.EMERGENCY, reason.strip()
        )
        logger.warning(
            "Emergency elevation by user %s for user %s: %s until %s",
            actor.id,
            target.id,
            normalized,
            delegation.expires_at,
        )
        self._audit.record(
            actor.id,
            AuditAction.EMERGENCY_ELEVATION,
            permission=ELEVATE_PERMISSION,
            metadata={
                "delegation_id": delegation.id,
                "target_user_id": target.id,
                "permissions": normalized,
                "expires_at": delegation.expires_at.isoformat(),
                "reason": reason.strip(),
            },
        )
        return delegation

    def revoke(self, delegation_id: int, by_user: User) -> PermissionDelegation:
        """
        Revoke a delegation. Allowed for the grantor or anyone outranking the grantor.

        Revoking an inactive delegation returns it unchanged.
        """
        delegation = self._store.get_delegation(delegation_id)
        if delegation is None:
            raise DelegationNotFoundError(f"Delegation {delegation_id} not found")

        if by_user.id != delegation.from_user_id:
            grantor = self._store.get_user(delegation.from_user_id, include_archived=True)
            allowed = grantor is not None and self._resolver.outranks(
                self._resolver.role_for(by_user), self._resolver.role_for(grantor)
            )
            if not allowed:
                self._audit.record(
                    by_user.id,
                    AuditAction.DELEGATION_REVOKED,
                    result=AuditResult.DENY,
                    metadata={"delegation_id": delegation_id},
                )
                raise NotAuthorizedError(
                    f"User {by_user.id} may not revoke delegation {delegation_id}"
                )

        changed = self._store.deactivate_delegation(delegation_id, self._clock(), by_user.id)
        self._store.commit()
        self._resolver.clear_cache()
        if changed:
            logger.info("User %s revoked delegation %s", by_user.id, delegation_id)
            self._audit.record(
                by_user.id,
                AuditAction.DELEGATION_REVOKED,
                metadata={
                    "delegation_id": delegation_id,
                    "from_user_id": delegation.from_user_id,
                    "to_user_id": delegation.to_user_id,
                },
            )
        return self._store.get_delegation(delegation_id)

    def active_for_grantee(self, user: User) -> list[PermissionDelegation]:
        return self._store.active_delegations_to(user.id, self._clock())

    def active_for_grantor(self, user: User) -> list[PermissionDelegation]:
        return self._store.active_delegations_from(user.id, self._clock())

    def expire_stale(self) -> int:
        """Mark expired delegations inactive. Returns how many rows this call changed."""
        now = self._clock()
        expired = 0
        for delegation in self._store.expired_active_delegations(now):
            if self._store.deactivate_delegation(delegation.id, now) == 0:
                continue
            self._store.commit()
            expired += 1
            self._audit.record(
                delegation.from_user_id,
                AuditAction.DELEGATION_EXPIRED,
                metadata={
                    "delegation_id": delegation.id,
                    "to_user_id": delegation.to_user_id,
                    "expired_at": delegation.expires_at.isoformat(),
                },
            )
        if expired:
            self._resolver.clear_cache()
            logger.info("Expired %d delegation(s)", expired)
        return expired
