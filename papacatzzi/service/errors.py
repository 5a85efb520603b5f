from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for domain errors raised by the authentication core.

    Each subclass carries a stable ``error_code`` and the HTTP ``status_code``
    the boundary layer should answer with. The core itself never builds HTTP
    responses.
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Malformed input (400)."""
    status_code = 400
    error_code = "validation_error"


class AccountAlreadyActive(ServiceError):
    """An active account already holds the email (409)."""
    status_code = 409
    error_code = "account_active"


class CodeExpiredOrMissing(ServiceError):
    """No outstanding verification code for the email (410)."""
    status_code = 410
    error_code = "code_expired"


class IncorrectCode(ServiceError):
    """Verification code did not match (400)."""
    status_code = 400
    error_code = "incorrect_code"


class VerificationRequired(ServiceError):
    """Sign-up finish attempted before the email was verified (403)."""
    status_code = 403
    error_code = "verification_required"


class UsernameTaken(ServiceError):
    status_code = 409
    error_code = "username_taken"


class InvalidCredentials(ServiceError):
    """Login failed. The message never says which part was wrong (401)."""
    status_code = 401
    error_code = "invalid_credentials"

    MESSAGE = "invalid email or password"

    def __init__(self, message: str = MESSAGE, **kwargs) -> None:
        super().__init__(message, **kwargs)


class TokenInvalid(ServiceError):
    """Token failed verification for any reason (401)."""
    status_code = 401
    error_code = "token_invalid"


class AccountNotFound(ServiceError):
    status_code = 404
    error_code = "not_found"


class IdentityConflict(ServiceError):
    """Email already linked to a different federated identity (409)."""
    status_code = 409
    error_code = "identity_conflict"


class SamePassword(ServiceError):
    status_code = 400
    error_code = "same_password"


class HashingError(ServiceError):
    """Password hashing primitive failed or digest is malformed (500)."""
    status_code = 500
    error_code = "server_error"


class DependencyFailure(ServiceError):
    """Store, cache or provider call failed or timed out (503)."""
    status_code = 503
    error_code = "dependency_failure"

    def __init__(
        self,
        dependency: str,
        operation: str,
        *,
        cause: Optional[BaseException] = None,
        message: Optional[str] = None,
    ) -> None:
        detail = {"dependency": dependency, "operation": operation}
        if cause is not None:
            detail["reason"] = type(cause).__name__
        super().__init__(
            message or f"{dependency} unavailable during {operation}",
            detail=detail,
        )
        self.dependency = dependency
        self.operation = operation


__all__ = [
    "ServiceError",
    "ValidationError",
    "AccountAlreadyActive",
    "CodeExpiredOrMissing",
    "IncorrectCode",
    "VerificationRequired",
    "UsernameTaken",
    "InvalidCredentials",
    "TokenInvalid",
    "AccountNotFound",
    "IdentityConflict",
    "SamePassword",
    "HashingError",
    "DependencyFailure",
]
