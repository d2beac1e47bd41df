"""Password login with failed-attempt counting and temporary lockout."""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from app.core.clock import Clock, as_utc, utc_now
from app.core.exceptions import AccountLockedError, AuthenticationError
from app.core.security import verify_password
from app.models import User
from app.services.audit import AuditAction, AuditResult, PermissionAuditLogger
from app.services.store import RecordStore

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoginPolicy:
    max_attempts: int = 5
    lockout: timedelta = timedelta(minutes=30)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "LoginPolicy":
        return cls(
            max_attempts=settings.MAX_LOGIN_ATTEMPTS,
            lockout=timedelta(minutes=settings.LOCKOUT_MINUTES),
        )


def authenticate(
    store: RecordStore,
    audit: PermissionAuditLogger,
    identifier: str,
    password: str,
    policy: LoginPolicy | None = None,
    clock: Clock = utc_now,
) -> User:
    """
    Return the active user matching identifier (email or username) and password.

    Raises AccountLockedError while a lockout is in force, AuthenticationError otherwise.
    The error message never says which of identifier or password was wrong.
    """
    policy = policy or LoginPolicy()
    now = clock()
    user = store.get_user_by_login(identifier)
    if user is None or not user.is_active:
        logger.info("Login rejected for unknown or inactive account")
        raise AuthenticationError("Invalid credentials")

    locked_until = as_utc(user.locked_until)
    if locked_until is not None and locked_until > now:
        logger.warning("Login attempt for locked user %s", user.id)
        raise AccountLockedError(f"Account locked until {locked_until.isoformat()}")

    if not verify_password(password, user.password_hash):
        attempts = (user.login_attempts or 0) + 1
        user.login_attempts = attempts
        locked = attempts >= policy.max_attempts
        lock_expiry = now + policy.lockout
        if locked:
            user.locked_until = lock_expiry
            user.login_attempts = 0
        store.commit()
        audit.record(
            user.id,
            AuditAction.LOGIN_FAILED,
            result=AuditResult.DENY,
            metadata={"attempts": attempts, "locked": locked},
        )
        if locked:
            logger.warning("User %s locked out after %d failed logins", user.id, attempts)
            raise AccountLockedError(f"Account locked until {lock_expiry.isoformat()}")
        raise AuthenticationError("Invalid credentials")

    if user.login_attempts or user.locked_until is not None:
        user.login_attempts = 0
        user.locked_until = None
        store.commit()
    return user
