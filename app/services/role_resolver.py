"""Role resolver: effective permissions, condition checks and role-hierarchy comparisons.

Resolution order for a user:

1. Role base permissions, plus those of every role reached through inherits_from.
2. Scope filter: an organization-scoped role grants nothing to a user without an
   organization, a department-scoped role nothing to a user without a department.
3. Explicit per-user grants.
4. Active, unexpired delegations to the user (grantor must still be active).
5. Denials (role chain + user) override every grant, delegated ones included.

Lower role level = more privileged. A resolver memoizes per user, so create one per request.
"""

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime

from app.core.clock import Clock, as_utc, utc_now
from app.core.exceptions import (
    InvalidPermissionError,
    NotAuthorizedError,
    RoleNotFoundError,
)
from app.models import Role, User
from app.services.audit import AuditAction, AuditResult, PermissionAuditLogger
from app.services.permissions import RoleScope, covers, expand_permission, overlaps, parse_permission
from app.services.store import RecordStore

logger = logging.getLogger(__name__)

KNOWN_CONDITIONS = frozenset(
    {
        "business_hours_only",
        "organization_scope",
        "department_scope",
        "allowed_departments",
        "max_amount",
    }
)

DEFAULT_BUSINESS_HOURS = (9, 18)


@dataclass(frozen=True)
class AccessContext:
    """Request-side facts that role conditions are evaluated against."""

    organization_id: str | None = None
    department_id: str | None = None
    amount: float | None = None
    at: datetime | None = None


@dataclass(frozen=True)
class EffectivePermissions:
    """Resolved grants and denials for one user. Denials always win."""

    granted: frozenset[str] = field(default_factory=frozenset)
    denied: frozenset[str] = field(default_factory=frozenset)

    def allows(self, permission: str) -> bool:
        if any(overlaps(d, permission) for d in self.denied):
            return False
        return any(covers(g, permission) for g in self.granted)

    def as_claims(self) -> list[str]:
        """
        Grants with every denial applied, sorted for token claims.

        A wildcard grant a denial only partly overlaps is expanded into its concrete
        permissions minus the denied ones, so no claim ever covers a denied permission.
        """
        claims: set[str] = set()
        for granted in self.granted:
            if not any(overlaps(d, granted) for d in self.denied):
                claims.add(granted)
                continue
            claims.update(
                p
                for p in expand_permission(granted)
                if not any(covers(d, p) for d in self.denied)
            )
        return sorted(claims)

    def __contains__(self, permission: object) -> bool:
        return isinstance(permission, str) and self.allows(permission)

    def __iter__(self) -> Iterator[str]:
        return iter(self.as_claims())

    def __len__(self) -> int:
        return len(self.as_claims())


def _valid_permissions(values: Iterable[str] | None, source: str) -> set[str]:
    """Parse stored permission strings; malformed entries are dropped (fail closed)."""
    valid: set[str] = set()
    for value in values or ():
        try:
            valid.add(str(parse_permission(value)))
        except InvalidPermissionError as e:
            logger.error("Dropping invalid stored permission from %s: %s", source, e.message)
    return valid


def _user_contexts(user: User, kind: str) -> set[str]:
    """Ids of kind ('org' or 'dept') the user belongs to, own plus memberships."""
    own = user.organization_id if kind == "org" else user.department_id
    ids = {own} if own else set()
    prefix = f"{kind}:"
    for membership in user.context_memberships or ():
        if isinstance(membership, str) and membership.startswith(prefix):
            ids.add(membership[len(prefix):])
    return ids


class RoleResolver:
    """Computes effective permissions from the record store."""

    def __init__(
        self,
        store: RecordStore,
        clock: Clock = utc_now,
        business_hours: tuple[int, int] = DEFAULT_BUSINESS_HOURS,
    ) -> None:
        self._store = store
        self._clock = clock
        self._business_hours = business_hours
        # (user id, include_delegations) -> (result, valid until: earliest delegation expiry)
        self._cache: dict[tuple[int, bool], tuple[EffectivePermissions, datetime | None]] = {}

    def clear_cache(self) -> None:
        self._cache.clear()

    def role_for(self, user: User) -> Role:
        """Load the user's role. A dangling reference is a configuration error."""
        role = self._store.get_role(user.role_id) if user.role_id is not None else None
        if role is None:
            logger.error("User %s references missing role id %s", user.id, user.role_id)
            raise RoleNotFoundError(f"Role {user.role_id} for user {user.id} not found")
        return role

    def _role_chain(self, role: Role) -> list[Role]:
        """The role followed by its inherits_from ancestors."""
        chain = [role]
        seen = {role.name}
        current = role
        while current.inherits_from:
            parent = self._store.get_role_by_name(current.inherits_from)
            if parent is None:
                logger.error(
                    "Role %s inherits from missing role %s", current.name, current.inherits_from
                )
                raise RoleNotFoundError(
                    f"Parent role '{current.inherits_from}' of '{current.name}' not found"
                )
            if parent.name in seen:
                logger.warning("Role inheritance cycle at %s; stopping", parent.name)
                break
            seen.add(parent.name)
            chain.append(parent)
            current = parent
        return chain

    @staticmethod
    def _scope_satisfied(role: Role, user: User) -> bool:
        if role.scope == RoleScope.ORGANIZATION.value:
            return bool(user.organization_id)
        if role.scope == RoleScope.DEPARTMENT.value:
            return bool(user.department_id)
        return True

    def resolve_effective_permissions(
        self, user: User, include_delegations: bool = True
    ) -> EffectivePermissions:
        """
        Resolve the user's effective permissions.

        include_delegations=False yields the user's own permissions only; that is
        the set a user may delegate from (delegation is single-hop).
        Raises RoleNotFoundError when the user's role (or an ancestor) is missing.
        """
        key = (user.id, include_delegations)
        cached = self._cache.get(key)
        if cached is not None:
            result, valid_until = cached
            if valid_until is None or self._clock() < valid_until:
                return result

        if not user.is_active:
            result = EffectivePermissions()
            self._cache[key] = (result, None)
            return result

        role = self.role_for(user)
        granted: set[str] = set()
        denied: set[str] = set()
        for r in self._role_chain(role):
            granted |= _valid_permissions(r.base_permissions, f"role {r.name}")
            denied |= _valid_permissions(r.denied_permissions, f"role {r.name} denials")

        if not self._scope_satisfied(role, user):
            logger.warning(
                "User %s has %s-scoped role %s without a matching binding; role grants ignored",
                user.id,
                role.scope,
                role.name,
            )
            granted = set()

        granted |= _valid_permissions(user.granted_permissions, f"user {user.id}")
        denied |= _valid_permissions(user.denied_permissions, f"user {user.id} denials")

        valid_until = None
        if include_delegations:
            delegated, valid_until = self._delegated_permissions(user)
            granted |= delegated

        result = EffectivePermissions(granted=frozenset(granted), denied=frozenset(denied))
        self._cache[key] = (result, valid_until)
        return result

    def _delegated_permissions(self, user: User) -> tuple[set[str], datetime | None]:
        """Permissions from live delegations, and the earliest expiry among them."""
        now = self._clock()
        delegated: set[str] = set()
        earliest: datetime | None = None
        for delegation in self._store.active_delegations_to(user.id, now):
            expires_at = as_utc(delegation.expires_at)
            if expires_at <= now:
                continue
            grantor = self._store.get_user(delegation.from_user_id)
            if grantor is None or not grantor.is_active:
                logger.debug(
                    "Skipping delegation %s: grantor %s inactive",
                    delegation.id,
                    delegation.from_user_id,
                )
                continue
            delegated |= _valid_permissions(delegation.permissions, f"delegation {delegation.id}")
            if earliest is None or expires_at < earliest:
                earliest = expires_at
        return delegated, earliest

    def has_permission(
        self, user: User, permission: str, context: AccessContext | None = None
    ) -> bool:
        """
        True if permission is in the user's effective set and the role's conditions hold.

        Raises InvalidPermissionError for a malformed permission string.
        """
        wanted = str(parse_permission(permission))
        if not self.resolve_effective_permissions(user).allows(wanted):
            return False
        role = self.role_for(user)
        return self.conditions_met(role.conditions or {}, user, context)

    def conditions_met(
        self, conditions: dict, user: User, context: AccessContext | None = None
    ) -> bool:
        """Evaluate role conditions. Unknown condition keys deny."""
        ctx = context or AccessContext()
        unknown = set(conditions) - KNOWN_CONDITIONS
        if unknown:
            logger.warning("Denying: unknown role conditions %s", sorted(unknown))
            return False

        if conditions.get("business_hours_only"):
            at = as_utc(ctx.at) or self._clock()
            start, end = self._business_hours
            if not start <= at.hour < end:
                return False

        if conditions.get("organization_scope") == "own" and ctx.organization_id is not None:
            if ctx.organization_id not in _user_contexts(user, "org"):
                return False

        if conditions.get("department_scope") == "own" and ctx.department_id is not None:
            if ctx.department_id not in _user_contexts(user, "dept"):
                return False

        allowed_departments = conditions.get("allowed_departments")
        if allowed_departments and ctx.department_id is not None:
            if ctx.department_id not in allowed_departments:
                return False

        max_amount = conditions.get("max_amount")
        if max_amount is not None and ctx.amount is not None and ctx.amount > max_amount:
            return False

        return True

    @staticmethod
    def outranks(role_a: Role, role_b: Role) -> bool:
        """Role A outranks role B iff A.level < B.level."""
        return role_a.level < role_b.level

    def can_modify_role(self, actor: User, target: User) -> bool:
        """Strictly higher rank required; equal levels (and self) never qualify."""
        if actor.id == target.id:
            return False
        return self.outranks(self.role_for(actor), self.role_for(target))


def change_user_role(
    store: RecordStore,
    resolver: RoleResolver,
    audit: PermissionAuditLogger,
    actor: User,
    target: User,
    role_name: str,
    clock: Clock = utc_now,
) -> User:
    """
    Assign role_name to target on behalf of actor.

    The actor must outrank the target's current role and the new role. The target's
    refresh tokens are revoked so the next token carries the new claims.
    """
    new_role = store.get_role_by_name(role_name)
    if new_role is None:
        raise RoleNotFoundError(f"Role '{role_name}' not found")
    actor_role = resolver.role_for(actor)
    previous_role = resolver.role_for(target)
    if not resolver.can_modify_role(actor, target) or not resolver.outranks(actor_role, new_role):
        audit.record(
            actor.id,
            AuditAction.ROLE_CHANGED,
            result=AuditResult.DENY,
            metadata={"target_user_id": target.id, "from": previous_role.name, "to": role_name},
        )
        raise NotAuthorizedError(
            f"User {actor.id} may not change user {target.id} to role '{role_name}'"
        )

    target.role_id = new_role.id
    store.revoke_refresh_tokens(target.id, clock())
    store.commit()
    resolver.clear_cache()
    logger.info(
        "User %s changed role of user %s from %s to %s",
        actor.id,
        target.id,
        previous_role.name,
        new_role.name,
    )
    audit.record(
        actor.id,
        AuditAction.ROLE_CHANGED,
        metadata={"target_user_id": target.id, "from": previous_role.name, "to": new_role.name},
    )
    return target


