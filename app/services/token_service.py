"""JWT access/refresh token issuance, verification, rotation and revocation.

Access tokens are stateless: verification checks signature, issuer, type and expiry
and never touches the store. Refresh tokens are tracked by jti in refresh_tokens
and rotated on every use; a rotated token cannot be replayed.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

import jwt

from app.core.clock import Clock, as_utc, utc_now
from app.core.config import (
    MAX_ACCESS_TOKEN_MINUTES,
    MAX_REFRESH_TOKEN_DAYS,
    RSA_ALGORITHMS,
)
from app.core.exceptions import (
    AuthenticationError,
    ExpiredTokenError,
    InvalidTokenError,
    RefreshTokenExpiredError,
    RefreshTokenNotFoundError,
    RefreshTokenRevokedError,
)
from app.models import RefreshToken, User
from app.services.audit import AuditAction, PermissionAuditLogger
from app.services.role_resolver import RoleResolver
from app.services.store import RecordStore

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"
REQUIRED_CLAIMS = ["sub", "iat", "exp", "jti", "type", "iss"]


@dataclass(frozen=True)
class TokenConfig:
    """Signing keys and lifetimes. For HS* both keys are the shared secret."""

    signing_key: str
    verification_key: str
    algorithm: str = "HS256"
    issuer: str = "amexing"
    access_ttl: timedelta = timedelta(minutes=MAX_ACCESS_TOKEN_MINUTES)
    refresh_ttl: timedelta = timedelta(days=MAX_REFRESH_TOKEN_DAYS)

    def __post_init__(self) -> None:
        if not timedelta(0) < self.access_ttl <= timedelta(minutes=MAX_ACCESS_TOKEN_MINUTES):
            raise ValueError("access_ttl must be positive and at most 8 hours")
        if not timedelta(0) < self.refresh_ttl <= timedelta(days=MAX_REFRESH_TOKEN_DAYS):
            raise ValueError("refresh_ttl must be positive and at most 7 days")

    @classmethod
    def from_settings(cls, settings: "Settings") -> "TokenConfig":
        secret = settings.JWT_SECRET.get_secret_value()
        if settings.JWT_ALGORITHM in RSA_ALGORITHMS:
            verification_key = settings.JWT_PUBLIC_KEY or ""
        else:
            verification_key = secret
        return cls(
            signing_key=secret,
            verification_key=verification_key,
            algorithm=settings.JWT_ALGORITHM,
            issuer=settings.JWT_ISSUER,
            access_ttl=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
            refresh_ttl=timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
        )


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime
    session_id: str
    token_type: str = "bearer"


@dataclass(frozen=True)
class TokenClaims:
    """Verified access-token payload."""

    user_id: int
    email: str
    role: str
    role_id: int
    permissions: tuple[str, ...]
    organization_id: str | None
    session_id: str
    issued_at: datetime
    expires_at: datetime
    jti: str


def _timestamp(value: datetime) -> int:
    return int(value.timestamp())


def _from_timestamp(value: Any) -> datetime:
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        raise InvalidTokenError("Token timestamp claims must be numeric")
    return datetime.fromtimestamp(value, tz=utc_now().tzinfo)


class TokenService:
    """Issues and validates token pairs for users of the record store."""

    def __init__(
        self,
        config: TokenConfig,
        store: RecordStore,
        resolver: RoleResolver,
        audit: PermissionAuditLogger,
        clock: Clock = utc_now,
    ) -> None:
        self._config = config
        self._store = store
        self._resolver = resolver
        self._audit = audit
        self._clock = clock

    def _encode(self, payload: dict[str, Any]) -> str:
        return jwt.encode(payload, self._config.signing_key, algorithm=self._config.algorithm)

    def _decode(self, token: str, expected_type: str) -> dict[str, Any]:
        """
        Verify signature, issuer and type, then expiry against the service clock.

        Raises ExpiredTokenError when exp has passed, InvalidTokenError otherwise.
        """
        if not token or not isinstance(token, str):
            raise InvalidTokenError("Token is missing")
        try:
            # Expiry is checked below against the injected clock, not the wall clock.
            payload = jwt.decode(
                token,
                self._config.verification_key,
                algorithms=[self._config.algorithm],
                issuer=self._config.issuer,
                options={"verify_exp": False, "verify_iat": False, "require": REQUIRED_CLAIMS},
            )
        except jwt.PyJWTError as e:
            logger.warning("Rejected %s token: %s", expected_type, e)
            raise InvalidTokenError("Invalid token", cause=e) from e

        if payload.get("type") != expected_type:
            logger.warning("Rejected token: expected type %s, got %r", expected_type, payload.get("type"))
            raise InvalidTokenError(f"Not an {expected_type} token")

        expires_at = _from_timestamp(payload["exp"])
        if self._clock() >= expires_at:
            raise ExpiredTokenError("Token has expired")
        return payload

    def _new_pair(self, user: User, session_id: str, now: datetime) -> tuple[TokenPair, str]:
        """Sign a pair and stage its RefreshToken row (caller commits). Returns (pair, refresh jti)."""
        role = self._resolver.role_for(user)
        permissions = self._resolver.resolve_effective_permissions(user).as_claims()
        access_expires = now + self._config.access_ttl
        refresh_expires = now + self._config.refresh_ttl
        access_jti = uuid.uuid4().hex
        refresh_jti = uuid.uuid4().hex

        access_token = self._encode(
            {
                "sub": str(user.id),
                "email": user.email,
                "role": role.name,
                "roleId": role.id,
                "permissions": permissions,
                "organizationId": user.organization_id,
                "sid": session_id,
                "iat": _timestamp(now),
                "exp": _timestamp(access_expires),
                "jti": access_jti,
                "type": ACCESS_TOKEN_TYPE,
                "iss": self._config.issuer,
            }
        )
        refresh_token = self._encode(
            {
                "sub": str(user.id),
                "sid": session_id,
                "iat": _timestamp(now),
                "exp": _timestamp(refresh_expires),
                "jti": refresh_jti,
                "type": REFRESH_TOKEN_TYPE,
                "iss": self._config.issuer,
            }
        )
        self._store.add(
            RefreshToken(
                user_id=user.id,
                jti=refresh_jti,
                session_id=session_id,
                expires_at=refresh_expires,
                created_at=now,
            )
        )
        pair = TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            access_expires_at=access_expires,
            refresh_expires_at=refresh_expires,
            session_id=session_id,
        )
        return pair, refresh_jti

    def issue_token_pair(self, user: User, session_id: str | None = None) -> TokenPair:
        """Issue an access/refresh pair carrying the user's current permission snapshot."""
        if not user.is_active:
            raise AuthenticationError(f"User {user.id} is not active")
        now = self._clock()
        sid = session_id or uuid.uuid4().hex
        pair, refresh_jti = self._new_pair(user, sid, now)
        self._store.commit()
        logger.debug("Issued token pair for user %s (session %s)", user.id, sid)
        self._audit.record(
            user.id,
            AuditAction.TOKEN_ISSUED,
            metadata={"session_id": sid, "refresh_jti": refresh_jti},
        )
        return pair

    def verify_access_token(self, token: str) -> TokenClaims:
        """Stateless verification. Raises InvalidTokenError or ExpiredTokenError."""
        payload = self._decode(token, ACCESS_TOKEN_TYPE)
        try:
            return TokenClaims(
                user_id=int(payload["sub"]),
                email=payload["email"],
                role=payload["role"],
                role_id=int(payload["roleId"]),
                permissions=tuple(payload.get("permissions") or ()),
                organization_id=payload.get("organizationId"),
                session_id=payload["sid"],
                issued_at=_from_timestamp(payload["iat"]),
                expires_at=_from_timestamp(payload["exp"]),
                jti=payload["jti"],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidTokenError("Invalid token payload", cause=e) from e

    def refresh_tokens(self, refresh_token: str) -> TokenPair:
        """
        Rotate a refresh token: revoke it and issue a new pair in the same session.

        Raises RefreshTokenNotFoundError, RefreshTokenRevokedError, RefreshTokenExpiredError,
        or InvalidTokenError for a malformed token or an inactive user.
        """
        try:
            payload = self._decode(refresh_token, REFRESH_TOKEN_TYPE)
        except ExpiredTokenError as e:
            raise RefreshTokenExpiredError("Refresh token has expired") from e

        jti = payload["jti"]
        record = self._store.get_refresh_token(jti)
        if record is None:
            raise RefreshTokenNotFoundError("Refresh token not recognized")
        if record.revoked_at is not None:
            if record.replaced_by_jti:
                logger.warning(
                    "Replay of rotated refresh token for user %s (session %s)",
                    record.user_id,
                    record.session_id,
                )
            raise RefreshTokenRevokedError("Refresh token has been revoked")

        now = self._clock()
        if as_utc(record.expires_at) <= now:
            raise RefreshTokenExpiredError("Refresh token has expired")

        user = self._store.get_user(record.user_id)
        if user is None or not user.is_active:
            raise InvalidTokenError("Refresh token subject is not an active user")

        pair, new_jti = self._new_pair(user, record.session_id, now)
        if self._store.revoke_refresh_token(jti, now, replaced_by_jti=new_jti) == 0:
            # Another request rotated this token first.
            self._store.rollback()
            raise RefreshTokenRevokedError("Refresh token has been revoked")
        self._store.commit()
        logger.debug("Rotated refresh token for user %s (session %s)", user.id, record.session_id)
        self._audit.record(
            user.id,
            AuditAction.TOKEN_REFRESHED,
            metadata={"session_id": record.session_id, "previous_jti": jti, "refresh_jti": new_jti},
        )
        return pair

    def revoke_refresh_token(self, jti: str) -> bool:
        """Revoke one refresh token. Idempotent; returns True if this call revoked it."""
        record = self._store.get_refresh_token(jti)
        if record is None:
            return False
        changed = self._store.revoke_refresh_token(jti, self._clock())
        self._store.commit()
        if changed:
            self._audit.record(
                record.user_id,
                AuditAction.TOKEN_REVOKED,
                metadata={"session_id": record.session_id, "refresh_jti": jti},
            )
        return changed > 0

    def revoke_session(self, user_id: int, session_id: str) -> int:
        """Revoke every live refresh token of one session (logout)."""
        changed = self._store.revoke_refresh_tokens(user_id, self._clock(), session_id=session_id)
        self._store.commit()
        if changed:
            self._audit.record(
                user_id,
                AuditAction.TOKEN_REVOKED,
                metadata={"session_id": session_id, "count": changed},
            )
        return changed

    def revoke_all_for_user(self, user_id: int) -> int:
        """Revoke every live refresh token of a user (logout everywhere)."""
        changed = self._store.revoke_refresh_tokens(user_id, self._clock())
        self._store.commit()
        if changed:
            self._audit.record(user_id, AuditAction.TOKEN_REVOKED, metadata={"count": changed})
        return changed

