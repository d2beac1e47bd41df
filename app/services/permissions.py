"""Permission strings, role names and the seeded system-role catalog.

Permissions are "resource:action" strings checked against a closed vocabulary of
actions per resource. Two wildcards exist: "*" (everything) and "resource:*"
(every action on one resource). Anything else is rejected at the boundary.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

from app.core.exceptions import InvalidPermissionError

WILDCARD = "*"

PERMISSION_ACTIONS: dict[str, frozenset[str]] = {
    "user": frozenset({"read", "create", "update", "delete", "manage"}),
    "role": frozenset({"read", "assign", "manage"}),
    "client": frozenset({"read", "create", "update", "delete"}),
    "department": frozenset({"read", "create", "update", "delete"}),
    "event": frozenset({"read", "create", "update", "delete"}),
    "booking": frozenset({"read", "write", "create", "update", "approve", "cancel"}),
    "service": frozenset({"read", "create", "update"}),
    "pricing": frozenset({"read", "update"}),
    "report": frozenset({"read", "generate"}),
    "vehicle": frozenset({"read", "update"}),
    "schedule": frozenset({"read", "update"}),
    "route": frozenset({"read"}),
    "trip": frozenset({"read", "accept", "complete", "cancel"}),
    "location": frozenset({"update"}),
    "earning": frozenset({"read"}),
    "request": frozenset({"read", "create"}),
    "quote": frozenset({"read", "create"}),
    "audit": frozenset({"read"}),
    "delegation": frozenset({"read", "create", "revoke"}),
    "system": frozenset({"elevate", "configure"}),
}

_PERMISSION_RE = re.compile(r"^([a-z_]+):([a-z_]+|\*)$")


class RoleName(str, Enum):
    """Known system roles."""

    SUPERADMIN = "superadmin"
    ADMIN = "admin"
    CLIENT = "client"
    DEPARTMENT_MANAGER = "department_manager"
    EMPLOYEE = "employee"
    DRIVER = "driver"
    GUEST = "guest"


class RoleScope(str, Enum):
    GLOBAL = "global"
    ORGANIZATION = "organization"
    DEPARTMENT = "department"


@dataclass(frozen=True)
class Permission:
    """A parsed permission. action is "*" for a resource wildcard."""

    resource: str
    action: str

    def __str__(self) -> str:
        if self.resource == WILDCARD:
            return WILDCARD
        return f"{self.resource}:{self.action}"


def parse_permission(value: str) -> Permission:
    """
    Parse and validate a permission string.

    Raises InvalidPermissionError for unknown resources, unknown actions or a bad shape.
    """
    if not isinstance(value, str):
        raise InvalidPermissionError(f"Permission must be a string, got {type(value).__name__}")
    candidate = value.strip()
    if candidate == WILDCARD:
        return Permission(resource=WILDCARD, action=WILDCARD)
    match = _PERMISSION_RE.match(candidate)
    if match is None:
        raise InvalidPermissionError(
            f"Invalid permission '{value}': expected 'resource:action'"
        )
    resource, action = match.groups()
    actions = PERMISSION_ACTIONS.get(resource)
    if actions is None:
        raise InvalidPermissionError(f"Unknown permission resource '{resource}'")
    if action != WILDCARD and action not in actions:
        raise InvalidPermissionError(
            f"Unknown action '{action}' for resource '{resource}'"
        )
    return Permission(resource=resource, action=action)


def normalize_permissions(values: Iterable[str]) -> list[str]:
    """Validate every permission and return them de-duplicated and sorted."""
    return sorted({str(parse_permission(v)) for v in values})


def covers(pattern: str, permission: str) -> bool:
    """True if pattern grants permission. Both must already be valid permission strings."""
    if pattern == WILDCARD:
        return True
    if permission == WILDCARD:
        return False
    if pattern == permission:
        return True
    resource, _, action = pattern.partition(":")
    return action == WILDCARD and permission.partition(":")[0] == resource


def overlaps(a: str, b: str) -> bool:
    """True if the two permission patterns share at least one concrete permission."""
    return covers(a, b) or covers(b, a)


def expand_permission(pattern: str) -> frozenset[str]:
    """Every concrete permission a valid pattern grants. Concrete permissions expand to themselves."""
    if pattern == WILDCARD:
        return frozenset(
            f"{resource}:{action}"
            for resource, actions in PERMISSION_ACTIONS.items()
            for action in actions
        )
    resource, _, action = pattern.partition(":")
    if action == WILDCARD:
        return frozenset(f"{resource}:{a}" for a in PERMISSION_ACTIONS[resource])
    return frozenset({pattern})


@dataclass(frozen=True)
class RoleDefinition:
    """Seed data for one system role."""

    name: RoleName
    display_name: str
    description: str
    level: int
    scope: RoleScope
    base_permissions: tuple[str, ...]
    delegatable: bool = False
    conditions: dict = field(default_factory=dict)
    inherits_from: RoleName | None = None


SYSTEM_ROLES: tuple[RoleDefinition, ...] = (
    RoleDefinition(
        name=RoleName.SUPERADMIN,
        display_name="Super Administrator",
        description="Full system access and administration",
        level=1,
        scope=RoleScope.GLOBAL,
        base_permissions=(WILDCARD,),
        delegatable=True,
    ),
    RoleDefinition(
        name=RoleName.ADMIN,
        display_name="Administrator",
        description="System administration and client management",
        level=10,
        scope=RoleScope.GLOBAL,
        base_permissions=(
            "user:read",
            "user:create",
            "user:update",
            "user:manage",
            "role:read",
            "role:assign",
            "client:*",
            "event:read",
            "event:create",
            "event:update",
            "booking:read",
            "booking:write",
            "booking:create",
            "booking:update",
            "booking:approve",
            "report:read",
            "report:generate",
            "audit:read",
            "delegation:*",
            "system:elevate",
        ),
        delegatable=True,
    ),
    RoleDefinition(
        name=RoleName.CLIENT,
        display_name="Client Administrator",
        description="Organization administrator for client companies",
        level=20,
        scope=RoleScope.ORGANIZATION,
        base_permissions=(
            "user:read",
            "user:create",
            "user:update",
            "department:read",
            "department:create",
            "department:update",
            "event:read",
            "event:create",
            "event:update",
            "booking:read",
            "booking:create",
            "booking:approve",
            "service:read",
            "pricing:read",
            "delegation:*",
        ),
        delegatable=True,
        conditions={"organization_scope": "own"},
    ),
    RoleDefinition(
        name=RoleName.DEPARTMENT_MANAGER,
        display_name="Department Manager",
        description="Department supervisor with delegation capabilities",
        level=30,
        scope=RoleScope.DEPARTMENT,
        base_permissions=(
            "user:read",
            "user:update",
            "booking:read",
            "booking:write",
            "booking:create",
            "booking:approve",
            "service:read",
            "pricing:read",
            "report:read",
            "delegation:*",
        ),
        delegatable=True,
        conditions={"max_amount": 10000, "department_scope": "own"},
    ),
    RoleDefinition(
        name=RoleName.EMPLOYEE,
        display_name="Employee",
        description="Corporate client employee with departmental access",
        level=50,
        scope=RoleScope.DEPARTMENT,
        base_permissions=(
            "booking:read",
            "booking:create",
            "service:read",
            "pricing:read",
        ),
        conditions={"max_amount": 2000, "business_hours_only": True, "department_scope": "own"},
    ),
    RoleDefinition(
        name=RoleName.DRIVER,
        display_name="Driver",
        description="Transportation service driver",
        level=60,
        scope=RoleScope.GLOBAL,
        base_permissions=(
            "trip:read",
            "trip:accept",
            "trip:complete",
            "trip:cancel",
            "vehicle:read",
            "route:read",
            "location:update",
            "earning:read",
        ),
    ),
    RoleDefinition(
        name=RoleName.GUEST,
        display_name="Guest",
        description="Public access for service requests",
        level=100,
        scope=RoleScope.GLOBAL,
        base_permissions=("service:read", "request:create", "quote:read"),
    ),
)
