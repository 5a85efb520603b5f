from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from papacatzzi.logging import get_correlation_id

# Every error_code a response may carry
VALID_ERROR_CODES = frozenset(
    {
        "validation_error",
        "account_active",
        "code_expired",
        "incorrect_code",
        "verification_required",
        "username_taken",
        "invalid_credentials",
        "token_invalid",
        "unauthorized",
        "not_found",
        "identity_conflict",
        "same_password",
        "conflict",
        "server_error",
        "dependency_failure",
    }
)


class ErrorBody(BaseModel):
    code: str
    message: str
    details: Optional[Any] = None

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in VALID_ERROR_CODES:
            raise ValueError(f"unknown error code: {value}")
        return value


def _request_id() -> str:
    return get_correlation_id() or str(uuid4())


class Envelope(BaseModel):
    """Response envelope shared by every endpoint."""

    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=_request_id)


# Requests carry only length limits; format rules live in the service layer
class LoginRequest(BaseModel):
    email: str = Field(..., max_length=320)
    password: str = Field(..., max_length=1024)


class SignupBeginRequest(BaseModel):
    email: str = Field(..., max_length=320)


class SignupVerifyRequest(BaseModel):
    email: str = Field(..., max_length=320)
    code: str = Field(..., max_length=16)


class SignupFinishRequest(BaseModel):
    email: str = Field(..., max_length=320)
    username: str = Field(..., max_length=64)
    password: str = Field(..., max_length=1024)


class SignupResendRequest(BaseModel):
    email: str = Field(..., max_length=320)


class RefreshRequest(BaseModel):
    refresh_token: Optional[str] = Field(default=None, max_length=4096)


class ForgotPasswordRequest(BaseModel):
    email: str = Field(..., max_length=320)


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., max_length=4096)
    new_password: str = Field(..., max_length=1024)


class PendingVerificationResponse(BaseModel):
    email: str
    expires_in: int
    delivery_queued: bool = True


class AccountResponse(BaseModel):
    id: str
    email: str
    username: Optional[str] = None
    federated: bool = False
    is_active: bool
    created_at: datetime


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: int


class AuthResponse(BaseModel):
    account: AccountResponse
    tokens: TokenResponse


class OAuthStartResponse(BaseModel):
    authorization_url: str
    state: str
    provider: str
