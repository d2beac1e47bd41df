"""Tests for token issuance, verification, refresh rotation and revocation."""

import unittest
from datetime import timedelta

import jwt

from app.core.exceptions import (
    AuthenticationError,
    ExpiredTokenError,
    InvalidTokenError,
    RefreshTokenExpiredError,
    RefreshTokenNotFoundError,
    RefreshTokenRevokedError,
)
from app.models import Lifecycle, PermissionAuditEntry, RefreshToken
from app.services.token_service import TokenConfig, TokenService
from tests.support import SECRET, build_services, make_session, make_user, token_config


class TestTokenConfig(unittest.TestCase):
    def test_rejects_lifetimes_over_compliance_caps(self) -> None:
        with self.assertRaises(ValueError):
            token_config(access_ttl=timedelta(hours=9))
        with self.assertRaises(ValueError):
            token_config(refresh_ttl=timedelta(days=8))
        with self.assertRaises(ValueError):
            token_config(access_ttl=timedelta(0))

    def test_defaults(self) -> None:
        config = token_config()
        self.assertEqual(config.access_ttl, timedelta(hours=8))
        self.assertEqual(config.refresh_ttl, timedelta(days=7))


class TestIssueAndVerify(unittest.TestCase):
    def setUp(self) -> None:
        self.session = make_session()
        self.services = build_services(self.session)
        self.tokens = self.services.tokens
        self.clock = self.services.clock

    def tearDown(self) -> None:
        self.session.close()

    def test_round_trip(self) -> None:
        user = make_user(self.session, "admin", organization_id="acme")
        pair = self.tokens.issue_token_pair(user)
        claims = self.tokens.verify_access_token(pair.access_token)
        self.assertEqual(claims.user_id, user.id)
        self.assertEqual(claims.email, user.email)
        self.assertEqual(claims.role, "admin")
        self.assertEqual(claims.role_id, user.role_id)
        self.assertEqual(claims.organization_id, "acme")
        self.assertEqual(claims.session_id, pair.session_id)
        self.assertEqual(claims.expires_at, self.clock() + timedelta(hours=8))

    def test_guest_claims_equal_base_permissions(self) -> None:
        guest = make_user(self.session, "guest")
        pair = self.tokens.issue_token_pair(guest)
        payload = jwt.decode(
            pair.access_token, SECRET, algorithms=["HS256"], options={"verify_exp": False, "verify_iat": False}
        )
        self.assertEqual(payload["permissions"], ["quote:read", "request:create", "service:read"])
        self.assertEqual(payload["type"], "access")
        self.assertEqual(payload["sub"], str(guest.id))
        self.assertNotEqual(payload["jti"], jwt.decode(
            pair.refresh_token, SECRET, algorithms=["HS256"], options={"verify_exp": False, "verify_iat": False}
        )["jti"])

    def test_denied_permission_never_appears_in_claims(self) -> None:
        admin = make_user(self.session, "admin", denied_permissions=["delegation:revoke"])
        pair = self.tokens.issue_token_pair(admin)
        claims = self.tokens.verify_access_token(pair.access_token)
        self.assertNotIn("delegation:*", claims.permissions)
        self.assertNotIn("delegation:revoke", claims.permissions)
        self.assertIn("delegation:create", claims.permissions)
        self.assertIn("delegation:read", claims.permissions)
        self.assertFalse(self.services.resolver.has_permission(admin, "delegation:revoke"))

    def test_expiry_boundary(self) -> None:
        user = make_user(self.session, "guest")
        pair = self.tokens.issue_token_pair(user)
        self.clock.advance(hours=7, minutes=59)
        self.assertEqual(self.tokens.verify_access_token(pair.access_token).user_id, user.id)
        self.clock.advance(minutes=2)
        with self.assertRaises(ExpiredTokenError):
            self.tokens.verify_access_token(pair.access_token)

    def test_rejects_tampered_and_foreign_tokens(self) -> None:
        user = make_user(self.session, "guest")
        pair = self.tokens.issue_token_pair(user)
        with self.assertRaises(InvalidTokenError):
            self.tokens.verify_access_token(pair.access_token[:-2] + "xx")
        foreign = jwt.encode({"sub": str(user.id)}, "another-secret-of-sufficient-length-000", algorithm="HS256")
        with self.assertRaises(InvalidTokenError):
            self.tokens.verify_access_token(foreign)
        with self.assertRaises(InvalidTokenError):
            self.tokens.verify_access_token("")

    def test_refresh_token_is_not_an_access_token(self) -> None:
        user = make_user(self.session, "guest")
        pair = self.tokens.issue_token_pair(user)
        with self.assertRaises(InvalidTokenError):
            self.tokens.verify_access_token(pair.refresh_token)

    def test_wrong_issuer_rejected(self) -> None:
        user = make_user(self.session, "guest")
        other = TokenService(
            token_config(issuer="someone-else"),
            self.services.store,
            self.services.resolver,
            self.services.audit,
            clock=self.clock,
        )
        pair = other.issue_token_pair(user)
        with self.assertRaises(InvalidTokenError):
            self.tokens.verify_access_token(pair.access_token)

    def test_inactive_user_cannot_get_tokens(self) -> None:
        user = make_user(self.session, "guest", lifecycle=Lifecycle.DEACTIVATED.value)
        with self.assertRaises(AuthenticationError):
            self.tokens.issue_token_pair(user)

    def test_issuance_is_audited(self) -> None:
        user = make_user(self.session, "guest")
        self.tokens.issue_token_pair(user)
        actions = [e.action for e in self.session.query(PermissionAuditEntry).all()]
        self.assertEqual(actions, ["TOKEN_ISSUED"])


class TestRefresh(unittest.TestCase):
    def setUp(self) -> None:
        self.session = make_session()
        self.services = build_services(self.session)
        self.tokens = self.services.tokens
        self.clock = self.services.clock
        self.user = make_user(self.session, "guest")

    def tearDown(self) -> None:
        self.session.close()

    def test_rotation_revokes_presented_token(self) -> None:
        pair = self.tokens.issue_token_pair(self.user)
        self.clock.advance(minutes=5)
        rotated = self.tokens.refresh_tokens(pair.refresh_token)
        self.assertEqual(rotated.session_id, pair.session_id)
        self.assertNotEqual(rotated.refresh_token, pair.refresh_token)
        self.assertEqual(self.tokens.verify_access_token(rotated.access_token).user_id, self.user.id)

        with self.assertLogs("app.services.token_service", level="WARNING"):
            with self.assertRaises(RefreshTokenRevokedError):
                self.tokens.refresh_tokens(pair.refresh_token)
        # The successor keeps working.
        self.tokens.refresh_tokens(rotated.refresh_token)

    def test_rotation_links_successor(self) -> None:
        pair = self.tokens.issue_token_pair(self.user)
        self.tokens.refresh_tokens(pair.refresh_token)
        records = self.session.query(RefreshToken).order_by(RefreshToken.id).all()
        self.assertEqual(len(records), 2)
        self.assertIsNotNone(records[0].revoked_at)
        self.assertEqual(records[0].replaced_by_jti, records[1].jti)
        self.assertIsNone(records[1].revoked_at)

    def test_expired_refresh_token(self) -> None:
        pair = self.tokens.issue_token_pair(self.user)
        self.clock.advance(days=7, seconds=1)
        with self.assertRaises(RefreshTokenExpiredError):
            self.tokens.refresh_tokens(pair.refresh_token)

    def test_unknown_refresh_token(self) -> None:
        pair = self.tokens.issue_token_pair(self.user)
        self.session.query(RefreshToken).delete()
        self.session.commit()
        with self.assertRaises(RefreshTokenNotFoundError):
            self.tokens.refresh_tokens(pair.refresh_token)

    def test_access_token_cannot_refresh(self) -> None:
        pair = self.tokens.issue_token_pair(self.user)
        with self.assertRaises(InvalidTokenError):
            self.tokens.refresh_tokens(pair.access_token)

    def test_deactivated_user_cannot_refresh(self) -> None:
        pair = self.tokens.issue_token_pair(self.user)
        self.user.lifecycle = Lifecycle.DEACTIVATED.value
        self.session.commit()
        with self.assertRaises(InvalidTokenError):
            self.tokens.refresh_tokens(pair.refresh_token)

    def test_refresh_picks_up_new_permissions(self) -> None:
        pair = self.tokens.issue_token_pair(self.user)
        self.user.granted_permissions = ["trip:read"]
        self.session.commit()
        self.services.resolver.clear_cache()
        rotated = self.tokens.refresh_tokens(pair.refresh_token)
        self.assertIn("trip:read", self.tokens.verify_access_token(rotated.access_token).permissions)


class TestRevocation(unittest.TestCase):
    def setUp(self) -> None:
        self.session = make_session()
        self.services = build_services(self.session)
        self.tokens = self.services.tokens
        self.user = make_user(self.session, "guest")

    def tearDown(self) -> None:
        self.session.close()

    def _jti(self, refresh_token: str) -> str:
        return jwt.decode(
            refresh_token, SECRET, algorithms=["HS256"], options={"verify_exp": False, "verify_iat": False}
        )["jti"]

    def test_revoke_is_idempotent(self) -> None:
        pair = self.tokens.issue_token_pair(self.user)
        jti = self._jti(pair.refresh_token)
        self.assertTrue(self.tokens.revoke_refresh_token(jti))
        self.assertFalse(self.tokens.revoke_refresh_token(jti))
        self.assertFalse(self.tokens.revoke_refresh_token("no-such-jti"))
        with self.assertRaises(RefreshTokenRevokedError):
            self.tokens.refresh_tokens(pair.refresh_token)

    def test_revoke_session_leaves_other_sessions(self) -> None:
        first = self.tokens.issue_token_pair(self.user)
        second = self.tokens.issue_token_pair(self.user)
        self.assertEqual(self.tokens.revoke_session(self.user.id, first.session_id), 1)
        with self.assertRaises(RefreshTokenRevokedError):
            self.tokens.refresh_tokens(first.refresh_token)
        self.tokens.refresh_tokens(second.refresh_token)

    def test_revoke_all_for_user(self) -> None:
        self.tokens.issue_token_pair(self.user)
        self.tokens.issue_token_pair(self.user)
        self.assertEqual(self.tokens.revoke_all_for_user(self.user.id), 2)
        self.assertEqual(self.tokens.revoke_all_for_user(self.user.id), 0)


class TestRsaSigning(unittest.TestCase):
    def test_rs256_round_trip(self) -> None:
        from cryptography.hazmat.primitives import serialization
        from cryptography.hazmat.primitives.asymmetric import rsa

        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        private_pem = key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        ).decode()
        public_pem = key.public_key().public_bytes(
            serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
        ).decode()

        session = make_session()
        try:
            services = build_services(session)
            tokens = TokenService(
                TokenConfig(signing_key=private_pem, verification_key=public_pem, algorithm="RS256"),
                services.store,
                services.resolver,
                services.audit,
                clock=services.clock,
            )
            user = make_user(session, "driver")
            pair = tokens.issue_token_pair(user)
            self.assertEqual(tokens.verify_access_token(pair.access_token).role, "driver")
        finally:
            session.close()


if __name__ == "__main__":
    unittest.main()
