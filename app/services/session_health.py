"""Server-side session health: is the caller's access token alive, and for how long."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

from app.core.clock import utc_now
from app.core.exceptions import AccessControlError
from app.services.token_service import TokenService

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    HEALTHY = "healthy"
    NEAR_EXPIRATION = "near_expiration"
    EXPIRED = "expired"


@dataclass(frozen=True)
class SessionHealthConfig:
    warning_threshold: timedelta = timedelta(minutes=5)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "SessionHealthConfig":
        return cls(warning_threshold=timedelta(seconds=settings.SESSION_WARNING_THRESHOLD_SEC))


def classify(expires_at: datetime | None, now: datetime, config: SessionHealthConfig) -> SessionState:
    """Healthy above the warning threshold, near expiration within it, expired at or past exp."""
    if expires_at is None or expires_at <= now:
        return SessionState.EXPIRED
    if expires_at - now <= config.warning_threshold:
        return SessionState.NEAR_EXPIRATION
    return SessionState.HEALTHY


def get_session_health(
    token: str | None,
    token_service: TokenService,
    config: SessionHealthConfig,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Report {healthy, expiresAt, nearExpiration, sessionExists} for an access token.

    An absent, invalid or expired token yields sessionExists=False; this never raises.
    """
    now = now or utc_now()
    expires_at = None
    if token:
        try:
            expires_at = token_service.verify_access_token(token).expires_at
        except AccessControlError as e:
            logger.debug("Session health: token rejected (%s)", e.code)

    state = classify(expires_at, now, config)
    exists = state is not SessionState.EXPIRED
    return {
        "healthy": exists,
        "expiresAt": expires_at.isoformat() if exists else None,
        "nearExpiration": state is SessionState.NEAR_EXPIRATION,
        "sessionExists": exists,
    }
