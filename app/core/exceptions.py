"""Access-control error taxonomy. Each error carries the HTTP status it maps to."""


class AccessControlError(Exception):
    """Base class for errors raised by the access-control services."""

    status_code = 500
    code = "access_control_error"

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        self.message = message
        self.cause = cause
        super().__init__(message)


class InvalidTokenError(AccessControlError):
    """Signature mismatch, malformed token, wrong token type or unknown subject."""

    status_code = 401
    code = "invalid_token"


class ExpiredTokenError(AccessControlError):
    status_code = 401
    code = "expired_token"


class RefreshTokenRevokedError(AccessControlError):
    status_code = 401
    code = "refresh_token_revoked"


class RefreshTokenExpiredError(AccessControlError):
    status_code = 401
    code = "refresh_token_expired"


class RefreshTokenNotFoundError(AccessControlError):
    status_code = 401
    code = "refresh_token_not_found"


class AuthenticationError(AccessControlError):
    """Wrong credentials or an account that may not sign in."""

    status_code = 401
    code = "authentication_failed"


class AccountLockedError(AccessControlError):
    status_code = 423
    code = "account_locked"


class RoleNotFoundError(AccessControlError):
    """A user references a role that does not exist. Server misconfiguration."""

    status_code = 500
    code = "role_not_found"


class InvalidPermissionError(AccessControlError):
    status_code = 400
    code = "invalid_permission"


class InvalidDelegationError(AccessControlError):
    status_code = 400
    code = "invalid_delegation"


class NotDelegatableError(AccessControlError):
    status_code = 400
    code = "not_delegatable"


class ExceedsGrantorPermissionsError(AccessControlError):
    status_code = 400
    code = "exceeds_grantor_permissions"


class DelegationLimitExceededError(AccessControlError):
    """The grantor already holds the maximum number of active delegations."""

    status_code = 409
    code = "delegation_limit_exceeded"


class NotAuthorizedError(AccessControlError):
    status_code = 403
    code = "not_authorized"


class ContextNotAvailableError(AccessControlError):
    status_code = 403
    code = "context_not_available"


class DelegationNotFoundError(AccessControlError):
    status_code = 404
    code = "delegation_not_found"


class UserNotFoundError(AccessControlError):
    status_code = 404
    code = "user_not_found"
