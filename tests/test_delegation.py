"""Tests for the delegation ledger: subset rule, rank checks, expiry, revocation and emergencies."""

import threading
import unittest
from datetime import timedelta

from app.core.exceptions import (
    DelegationLimitExceededError,
    DelegationNotFoundError,
    ExceedsGrantorPermissionsError,
    InvalidDelegationError,
    InvalidPermissionError,
    NotAuthorizedError,
    NotDelegatableError,
)
from app.models import Lifecycle, PermissionAuditEntry, PermissionDelegation
from app.services.delegation import DelegationConfig, DelegationLedger, DelegationType, GrantorLocks
from tests.support import build_services, make_session, make_user


class DelegationTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.session = make_session()
        self.services = build_services(self.session)
        self.ledger = self.services.ledger
        self.resolver = self.services.resolver
        self.clock = self.services.clock
        self.manager = make_user(self.session, "department_manager", department_id="ops")
        self.employee = make_user(self.session, "employee", department_id="ops")

    def tearDown(self) -> None:
        self.session.close()

    def audit_actions(self) -> list[str]:
        return [e.action for e in self.session.query(PermissionAuditEntry).order_by(PermissionAuditEntry.id)]


class TestDelegateScenario(DelegationTestCase):
    def test_delegated_permission_lapses_after_ttl(self) -> None:
        self.assertFalse(self.resolver.has_permission(self.employee, "booking:write"))
        self.ledger.delegate(self.manager, self.employee, ["booking:write"], timedelta(hours=1))
        self.assertTrue(self.resolver.has_permission(self.employee, "booking:write"))
        self.clock.advance(minutes=61)
        self.assertFalse(self.resolver.has_permission(self.employee, "booking:write"))

    def test_record_fields_and_audit(self) -> None:
        delegation = self.ledger.delegate(
            self.manager,
            self.employee,
            ["booking:write", "booking:write"],
            timedelta(hours=2),
            delegation_type="coverage",
            reason="vacation cover",
        )
        self.assertEqual(delegation.permissions, ["booking:write"])
        self.assertEqual(delegation.delegation_type, "coverage")
        self.assertTrue(delegation.is_active)
        self.assertEqual(delegation.from_user_id, self.manager.id)
        self.assertEqual(self.audit_actions(), ["DELEGATION_GRANTED"])
        self.assertEqual(self.ledger.active_for_grantee(self.employee)[0].id, delegation.id)
        self.assertEqual(self.ledger.active_for_grantor(self.manager)[0].id, delegation.id)


class TestDelegateValidation(DelegationTestCase):
    def test_exceeding_grantor_permissions(self) -> None:
        for permissions in (["event:create"], ["booking:*"], ["booking:write", "trip:read"]):
            with self.subTest(permissions=permissions):
                with self.assertRaises(ExceedsGrantorPermissionsError):
                    self.ledger.delegate(self.manager, self.employee, permissions, timedelta(hours=1))
        self.assertEqual(self.session.query(PermissionDelegation).count(), 0)

    def test_denied_permission_cannot_be_delegated(self) -> None:
        self.manager.denied_permissions = ["booking:write"]
        self.session.commit()
        with self.assertRaises(ExceedsGrantorPermissionsError):
            self.ledger.delegate(self.manager, self.employee, ["booking:write"], timedelta(hours=1))

    def test_delegated_permissions_cannot_be_redelegated(self) -> None:
        admin = make_user(self.session, "admin")
        self.ledger.delegate(admin, self.manager, ["event:create"], timedelta(hours=1))
        self.assertTrue(self.resolver.resolve_effective_permissions(self.manager).allows("event:create"))
        with self.assertRaises(ExceedsGrantorPermissionsError):
            self.ledger.delegate(self.manager, self.employee, ["event:create"], timedelta(hours=1))

    def test_invalid_permission_string(self) -> None:
        with self.assertRaises(InvalidPermissionError):
            self.ledger.delegate(self.manager, self.employee, ["booking"], timedelta(hours=1))

    def test_empty_permissions(self) -> None:
        with self.assertRaises(InvalidDelegationError):
            self.ledger.delegate(self.manager, self.employee, [], timedelta(hours=1))

    def test_self_delegation(self) -> None:
        with self.assertRaises(InvalidDelegationError):
            self.ledger.delegate(self.manager, self.manager, ["booking:write"], timedelta(hours=1))

    def test_inactive_grantee(self) -> None:
        self.employee.lifecycle = Lifecycle.DEACTIVATED.value
        self.session.commit()
        with self.assertRaises(InvalidDelegationError):
            self.ledger.delegate(self.manager, self.employee, ["booking:write"], timedelta(hours=1))

    def test_ttl_bounds_per_type(self) -> None:
        for ttl, kind in (
            (timedelta(0), DelegationType.TEMPORARY),
            (timedelta(hours=25), DelegationType.TEMPORARY),
            (timedelta(hours=5), DelegationType.EMERGENCY),
        ):
            with self.subTest(ttl=ttl, kind=kind):
                with self.assertRaises(InvalidDelegationError):
                    self.ledger.delegate(self.manager, self.employee, ["booking:write"], ttl, delegation_type=kind)
        self.ledger.delegate(
            self.manager, self.employee, ["booking:write"], timedelta(days=20), delegation_type="project"
        )

    def test_unknown_delegation_type(self) -> None:
        with self.assertRaises(InvalidDelegationError):
            self.ledger.delegate(
                self.manager, self.employee, ["booking:write"], timedelta(hours=1), delegation_type="forever"
            )

    def test_non_delegatable_role(self) -> None:
        guest = make_user(self.session, "guest")
        with self.assertRaises(NotDelegatableError):
            self.ledger.delegate(self.employee, guest, ["booking:read"], timedelta(hours=1))

    def test_grantee_must_rank_below_grantor(self) -> None:
        other_manager = make_user(self.session, "department_manager", department_id="ops")
        with self.assertRaises(NotDelegatableError):
            self.ledger.delegate(self.manager, other_manager, ["booking:write"], timedelta(hours=1))

    def test_config_from_settings_limits(self) -> None:
        config = DelegationConfig()
        self.assertEqual(config.limit_for(DelegationType.EMERGENCY), timedelta(hours=4))
        self.assertEqual(config.limit_for(DelegationType.PROJECT), timedelta(days=30))

    def test_security_critical_permissions_are_refused(self) -> None:
        root = make_user(self.session, "superadmin")
        admin = make_user(self.session, "admin")
        for permissions in (["*"], ["system:*"], ["system:configure"], ["role:assign"], ["audit:read"], ["user:*"]):
            with self.subTest(permissions=permissions):
                with self.assertRaises(NotDelegatableError):
                    self.ledger.delegate(root, admin, permissions, timedelta(hours=1))
        self.assertFalse(self.resolver.has_permission(admin, "system:configure"))
        self.assertEqual(self.session.query(PermissionDelegation).count(), 0)

    def test_active_delegation_limit_per_type(self) -> None:
        config = DelegationConfig()
        self.assertEqual(config.active_limit_for(DelegationType.TEMPORARY), 10)
        self.assertEqual(config.active_limit_for(DelegationType.COVERAGE), 3)
        for _ in range(10):
            self.ledger.delegate(self.manager, self.employee, ["booking:write"], timedelta(hours=1))
        with self.assertRaises(DelegationLimitExceededError):
            self.ledger.delegate(self.manager, self.employee, ["booking:write"], timedelta(hours=1))
        with self.assertRaises(DelegationLimitExceededError):
            self.ledger.delegate(
                self.manager, self.employee, ["booking:write"], timedelta(hours=1), delegation_type="coverage"
            )
        self.assertEqual(len(self.ledger.active_for_grantor(self.manager)), 10)

    def test_expired_and_revoked_delegations_free_the_limit(self) -> None:
        config = DelegationConfig(max_active={kind: 1 for kind in DelegationType})
        ledger = DelegationLedger(self.services.store, self.resolver, self.services.audit, config=config, clock=self.clock)
        first = ledger.delegate(self.manager, self.employee, ["booking:write"], timedelta(hours=1))
        with self.assertRaises(DelegationLimitExceededError):
            ledger.delegate(self.manager, self.employee, ["booking:write"], timedelta(hours=1))
        ledger.revoke(first.id, self.manager)
        second = ledger.delegate(self.manager, self.employee, ["booking:write"], timedelta(hours=1))
        self.clock.advance(minutes=61)
        third = ledger.delegate(self.manager, self.employee, ["booking:write"], timedelta(hours=1))
        self.assertEqual([d.id for d in ledger.active_for_grantor(self.manager)], [third.id])
        self.assertNotEqual(second.id, third.id)


class TestGrantorLocks(DelegationTestCase):
    def test_registry_is_empty_after_delegating(self) -> None:
        locks = GrantorLocks()
        ledger = DelegationLedger(self.services.store, self.resolver, self.services.audit, clock=self.clock, locks=locks)
        ledger.delegate(self.manager, self.employee, ["booking:write"], timedelta(hours=1))
        self.assertEqual(len(locks), 0)

    def test_same_grantor_is_serialized(self) -> None:
        locks = GrantorLocks()
        acquired = threading.Event()

        def contend() -> None:
            with locks.hold(1):
                acquired.set()

        with locks.hold(1):
            worker = threading.Thread(target=contend)
            worker.start()
            self.assertFalse(acquired.wait(0.05))
            with locks.hold(2):
                self.assertEqual(len(locks), 2)
        worker.join(timeout=1)
        self.assertTrue(acquired.is_set())
        self.assertEqual(len(locks), 0)


class TestRevoke(DelegationTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.delegation = self.ledger.delegate(
            self.manager, self.employee, ["booking:write"], timedelta(hours=1)
        )

    def test_grantor_revokes(self) -> None:
        revoked = self.ledger.revoke(self.delegation.id, self.manager)
        self.assertFalse(revoked.is_active)
        self.assertEqual(revoked.revoked_by_id, self.manager.id)
        self.assertFalse(self.resolver.has_permission(self.employee, "booking:write"))
        self.assertEqual(self.audit_actions(), ["DELEGATION_GRANTED", "DELEGATION_REVOKED"])

    def test_higher_rank_revokes(self) -> None:
        admin = make_user(self.session, "admin")
        self.assertFalse(self.ledger.revoke(self.delegation.id, admin).is_active)

    def test_grantee_cannot_revoke(self) -> None:
        with self.assertRaises(NotAuthorizedError):
            self.ledger.revoke(self.delegation.id, self.employee)
        self.assertTrue(self.session.get(PermissionDelegation, self.delegation.id).is_active)
        self.assertEqual(self.audit_actions()[-1], "DELEGATION_REVOKED")

    def test_unknown_delegation(self) -> None:
        with self.assertRaises(DelegationNotFoundError):
            self.ledger.revoke(9999, self.manager)

    def test_revoke_is_idempotent(self) -> None:
        self.ledger.revoke(self.delegation.id, self.manager)
        again = self.ledger.revoke(self.delegation.id, self.manager)
        self.assertFalse(again.is_active)
        self.assertEqual(self.audit_actions().count("DELEGATION_REVOKED"), 1)


class TestExpireStale(DelegationTestCase):
    def test_marks_expired_rows_inactive(self) -> None:
        self.ledger.delegate(self.manager, self.employee, ["booking:write"], timedelta(hours=1))
        self.ledger.delegate(self.manager, self.employee, ["booking:approve"], timedelta(hours=3))
        self.clock.advance(hours=2)
        self.assertEqual(self.ledger.expire_stale(), 1)
        self.assertEqual(self.ledger.expire_stale(), 0)
        active = self.session.query(PermissionDelegation).filter(PermissionDelegation.is_active.is_(True)).all()
        self.assertEqual([d.permissions for d in active], [["booking:approve"]])
        self.assertIn("DELEGATION_EXPIRED", self.audit_actions())


class TestEmergencyElevation(DelegationTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.admin = make_user(self.session, "admin")

    def test_requires_elevate_permission(self) -> None:
        guest = make_user(self.session, "guest")
        with self.assertRaises(NotAuthorizedError):
            self.ledger.emergency_elevation(self.manager, guest, ["service:read"], "outage")
        self.assertEqual(self.audit_actions(), ["EMERGENCY_ELEVATION"])

    def test_ttl_capped_at_emergency_maximum(self) -> None:
        delegation = self.ledger.emergency_elevation(
            self.admin, self.employee, ["booking:approve"], "outage", ttl=timedelta(hours=12)
        )
        self.assertEqual(delegation.delegation_type, "emergency")
        self.clock.advance(hours=3, minutes=59)
        self.assertTrue(self.resolver.resolve_effective_permissions(self.employee).allows("booking:approve"))
        self.clock.advance(minutes=2)
        self.assertFalse(self.resolver.resolve_effective_permissions(self.employee).allows("booking:approve"))

    def test_subset_rule_still_applies(self) -> None:
        with self.assertRaises(ExceedsGrantorPermissionsError):
            self.ledger.emergency_elevation(self.admin, self.employee, ["system:configure"], "outage")

    def test_reason_required(self) -> None:
        with self.assertRaises(InvalidDelegationError):
            self.ledger.emergency_elevation(self.admin, self.employee, ["booking:approve"], "  ")

    def test_not_subject_to_active_delegation_limit(self) -> None:
        for _ in range(4):
            self.ledger.emergency_elevation(self.admin, self.employee, ["booking:approve"], "outage")
        self.assertEqual(len(self.ledger.active_for_grantor(self.admin)), 4)


if __name__ == "__main__":
    unittest.main()
