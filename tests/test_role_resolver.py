"""Tests for effective-permission resolution, role conditions and the role hierarchy."""

import unittest
from datetime import timedelta

from sqlalchemy import inspect

from app.core.exceptions import InvalidPermissionError, NotAuthorizedError, RoleNotFoundError
from app.models import Lifecycle, PermissionAuditEntry, PermissionDelegation, RefreshToken, Role, User
from app.services.role_resolver import AccessContext, EffectivePermissions, change_user_role
from tests.support import START, FakeClock, build_services, make_session, make_user


class TestEffectivePermissions(unittest.TestCase):
    def test_denial_beats_wildcard_grant(self) -> None:
        perms = EffectivePermissions(granted=frozenset({"*"}), denied=frozenset({"booking:cancel"}))
        self.assertTrue(perms.allows("booking:read"))
        self.assertFalse(perms.allows("booking:cancel"))
        self.assertNotIn("booking:cancel", perms)

    def test_wildcard_denial_blocks_specific_grant(self) -> None:
        perms = EffectivePermissions(
            granted=frozenset({"booking:read", "quote:read"}), denied=frozenset({"booking:*"})
        )
        self.assertFalse(perms.allows("booking:read"))
        self.assertEqual(perms.as_claims(), ["quote:read"])
        self.assertEqual(len(perms), 1)

    def test_partly_denied_wildcard_is_expanded_in_claims(self) -> None:
        perms = EffectivePermissions(
            granted=frozenset({"delegation:*", "trip:read"}), denied=frozenset({"delegation:revoke"})
        )
        self.assertEqual(perms.as_claims(), ["delegation:create", "delegation:read", "trip:read"])
        self.assertNotIn("delegation:revoke", list(perms))


class TestResolveEffectivePermissions(unittest.TestCase):
    def setUp(self) -> None:
        self.session = make_session()
        self.services = build_services(self.session)
        self.resolver = self.services.resolver

    def tearDown(self) -> None:
        self.session.close()

    def test_guest_gets_base_permissions(self) -> None:
        guest = make_user(self.session, "guest")
        perms = self.resolver.resolve_effective_permissions(guest)
        self.assertEqual(perms.as_claims(), ["quote:read", "request:create", "service:read"])

    def test_explicit_grants_and_denials(self) -> None:
        guest = make_user(
            self.session,
            "guest",
            granted_permissions=["trip:read"],
            denied_permissions=["quote:read"],
        )
        perms = self.resolver.resolve_effective_permissions(guest)
        self.assertTrue(perms.allows("trip:read"))
        self.assertFalse(perms.allows("quote:read"))

    def test_invalid_stored_permissions_are_dropped(self) -> None:
        guest = make_user(self.session, "guest", granted_permissions=["not a permission", "trip:read"])
        with self.assertLogs("app.services.role_resolver", level="ERROR"):
            perms = self.resolver.resolve_effective_permissions(guest)
        self.assertEqual(perms.as_claims(), ["quote:read", "request:create", "service:read", "trip:read"])

    def test_inactive_user_resolves_to_nothing(self) -> None:
        admin = make_user(self.session, "admin", lifecycle=Lifecycle.DEACTIVATED.value)
        self.assertEqual(len(self.resolver.resolve_effective_permissions(admin)), 0)

    def test_inherited_role_permissions_and_denials(self) -> None:
        self.session.add(
            Role(
                name="senior_guest",
                level=90,
                scope="global",
                base_permissions=["trip:read"],
                denied_permissions=["request:create"],
                inherits_from="guest",
                conditions={},
            )
        )
        self.session.commit()
        user = make_user(self.session, "senior_guest")
        perms = self.resolver.resolve_effective_permissions(user)
        self.assertTrue(perms.allows("trip:read"))
        self.assertTrue(perms.allows("service:read"))
        self.assertFalse(perms.allows("request:create"))

    def test_missing_parent_role_raises(self) -> None:
        self.session.add(
            Role(name="orphan", level=95, scope="global", base_permissions=[], denied_permissions=[],
                 inherits_from="nonexistent", conditions={})
        )
        self.session.commit()
        user = make_user(self.session, "orphan")
        with self.assertRaises(RoleNotFoundError):
            self.resolver.resolve_effective_permissions(user)

    def test_archived_role_is_not_found(self) -> None:
        guest = make_user(self.session, "guest")
        role = self.session.query(Role).filter(Role.name == "guest").one()
        role.lifecycle = Lifecycle.ARCHIVED.value
        self.session.commit()
        with self.assertRaises(RoleNotFoundError):
            self.resolver.role_for(guest)

    def test_user_loads_without_role_join(self) -> None:
        make_user(self.session, "guest", username="plain")
        self.session.expunge_all()
        user = self.services.store.get_user_by_login("plain")
        self.assertNotIn("role", inspect(User).relationships.keys())
        self.assertEqual(self.resolver.role_for(user).name, "guest")

    def test_department_scoped_role_requires_department(self) -> None:
        employee = make_user(self.session, "employee")
        with self.assertLogs("app.services.role_resolver", level="WARNING"):
            perms = self.resolver.resolve_effective_permissions(employee)
        self.assertFalse(perms.allows("booking:read"))

    def test_expired_delegation_contributes_nothing(self) -> None:
        manager = make_user(self.session, "department_manager", department_id="ops")
        employee = make_user(self.session, "employee", department_id="ops")
        self.session.add(
            PermissionDelegation(
                from_user_id=manager.id,
                to_user_id=employee.id,
                permissions=["booking:approve"],
                expires_at=START - timedelta(minutes=1),
                is_active=True,
            )
        )
        self.session.commit()
        self.assertFalse(self.resolver.resolve_effective_permissions(employee).allows("booking:approve"))

    def test_delegation_from_inactive_grantor_is_ignored(self) -> None:
        manager = make_user(self.session, "department_manager", department_id="ops")
        employee = make_user(self.session, "employee", department_id="ops")
        self.session.add(
            PermissionDelegation(
                from_user_id=manager.id,
                to_user_id=employee.id,
                permissions=["booking:approve"],
                expires_at=START + timedelta(hours=1),
                is_active=True,
            )
        )
        manager.lifecycle = Lifecycle.DEACTIVATED.value
        self.session.commit()
        self.assertFalse(self.resolver.resolve_effective_permissions(employee).allows("booking:approve"))

    def test_denial_overrides_delegated_grant(self) -> None:
        manager = make_user(self.session, "department_manager", department_id="ops")
        employee = make_user(
            self.session, "employee", department_id="ops", denied_permissions=["booking:approve"]
        )
        self.session.add(
            PermissionDelegation(
                from_user_id=manager.id,
                to_user_id=employee.id,
                permissions=["booking:approve"],
                expires_at=START + timedelta(hours=1),
                is_active=True,
            )
        )
        self.session.commit()
        self.assertFalse(self.resolver.resolve_effective_permissions(employee).allows("booking:approve"))


class TestHasPermissionConditions(unittest.TestCase):
    def setUp(self) -> None:
        self.session = make_session()
        self.clock = FakeClock()
        self.resolver = build_services(self.session, self.clock).resolver
        self.employee = make_user(self.session, "employee", department_id="ops")

    def tearDown(self) -> None:
        self.session.close()

    def test_invalid_permission_raises(self) -> None:
        with self.assertRaises(InvalidPermissionError):
            self.resolver.has_permission(self.employee, "booking")

    def test_business_hours_only(self) -> None:
        self.assertTrue(self.resolver.has_permission(self.employee, "booking:read"))
        self.clock.advance(hours=10)  # 20:00 UTC
        self.assertFalse(self.resolver.has_permission(self.employee, "booking:read"))
        at_noon = AccessContext(at=START.replace(hour=12))
        self.assertTrue(self.resolver.has_permission(self.employee, "booking:read", at_noon))

    def test_max_amount(self) -> None:
        self.assertTrue(self.resolver.has_permission(self.employee, "booking:create", AccessContext(amount=2000)))
        self.assertFalse(self.resolver.has_permission(self.employee, "booking:create", AccessContext(amount=2500)))

    def test_department_scope_own(self) -> None:
        own = AccessContext(department_id="ops")
        other = AccessContext(department_id="finance")
        self.assertTrue(self.resolver.has_permission(self.employee, "booking:read", own))
        self.assertFalse(self.resolver.has_permission(self.employee, "booking:read", other))

    def test_department_membership_counts_as_own(self) -> None:
        self.employee.context_memberships = ["dept:finance"]
        self.session.commit()
        self.resolver.clear_cache()
        ctx = AccessContext(department_id="finance")
        self.assertTrue(self.resolver.has_permission(self.employee, "booking:read", ctx))

    def test_unknown_condition_denies(self) -> None:
        self.assertFalse(self.resolver.conditions_met({"moon_phase": "full"}, self.employee))

    def test_allowed_departments(self) -> None:
        conditions = {"allowed_departments": ["ops"]}
        self.assertTrue(self.resolver.conditions_met(conditions, self.employee, AccessContext(department_id="ops")))
        self.assertFalse(self.resolver.conditions_met(conditions, self.employee, AccessContext(department_id="hr")))


class TestRoleHierarchy(unittest.TestCase):
    def setUp(self) -> None:
        self.session = make_session()
        self.services = build_services(self.session)
        self.resolver = self.services.resolver

    def tearDown(self) -> None:
        self.session.close()

    def test_can_modify_role_only_when_strictly_higher(self) -> None:
        admin = make_user(self.session, "admin")
        other_admin = make_user(self.session, "admin")
        guest = make_user(self.session, "guest")
        self.assertTrue(self.resolver.can_modify_role(admin, guest))
        self.assertFalse(self.resolver.can_modify_role(guest, admin))
        self.assertFalse(self.resolver.can_modify_role(admin, other_admin))
        self.assertFalse(self.resolver.can_modify_role(admin, admin))

    def test_change_user_role_revokes_tokens_and_audits(self) -> None:
        admin = make_user(self.session, "admin")
        guest = make_user(self.session, "guest")
        self.services.tokens.issue_token_pair(guest)
        change_user_role(
            self.services.store, self.resolver, self.services.audit, admin, guest, "driver", self.services.clock
        )
        self.assertEqual(self.resolver.role_for(guest).name, "driver")
        tokens = self.session.query(RefreshToken).filter(RefreshToken.user_id == guest.id).all()
        self.assertTrue(all(t.revoked_at is not None for t in tokens))
        entry = (
            self.session.query(PermissionAuditEntry)
            .filter(PermissionAuditEntry.action == "ROLE_CHANGED")
            .one()
        )
        self.assertEqual(entry.result, "allow")
        self.assertEqual(entry.details["to"], "driver")

    def test_change_user_role_cannot_grant_own_level(self) -> None:
        admin = make_user(self.session, "admin")
        guest = make_user(self.session, "guest")
        with self.assertRaises(NotAuthorizedError):
            change_user_role(
                self.services.store, self.resolver, self.services.audit, admin, guest, "admin", self.services.clock
            )
        self.assertEqual(self.resolver.role_for(guest).name, "guest")

    def test_change_user_role_unknown_role(self) -> None:
        admin = make_user(self.session, "admin")
        guest = make_user(self.session, "guest")
        with self.assertRaises(RoleNotFoundError):
            change_user_role(
                self.services.store, self.resolver, self.services.audit, admin, guest, "pilot", self.services.clock
            )


if __name__ == "__main__":
    unittest.main()
