from __future__ import annotations

import re

from papacatzzi.service.errors import ValidationError

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]{3,32}$")
CODE_LENGTH = 6
PASSWORD_MIN_LENGTH = 10
PASSWORD_MAX_LENGTH = 128
EMAIL_MAX_LENGTH = 254


def validate_email(email: str) -> str:
    """Return the canonical (trimmed, lower-cased) address or raise."""
    if not isinstance(email, str):
        raise ValidationError("email is required", detail={"field": "email"})
    normalized = email.strip().lower()
    if len(normalized) > EMAIL_MAX_LENGTH or not EMAIL_PATTERN.match(normalized):
        raise ValidationError("invalid email address", detail={"field": "email"})
    return normalized


def validate_code(code: str) -> str:
    # str.isdigit() accepts non-ASCII digits, so check the range explicitly
    if (
        not isinstance(code, str)
        or len(code) != CODE_LENGTH
        or not all("0" <= ch <= "9" for ch in code)
    ):
        raise ValidationError(
            f"code must be exactly {CODE_LENGTH} digits", detail={"field": "code"}
        )
    return code


def validate_password(password: str, *, field: str = "password") -> str:
    if not isinstance(password, str):
        raise ValidationError("password is required", detail={"field": field})
    if not PASSWORD_MIN_LENGTH <= len(password) <= PASSWORD_MAX_LENGTH:
        raise ValidationError(
            f"password must be between {PASSWORD_MIN_LENGTH} and {PASSWORD_MAX_LENGTH} characters",
            detail={"field": field},
        )
    return password


def validate_username(username: str) -> str:
    if not isinstance(username, str) or not USERNAME_PATTERN.match(username):
        raise ValidationError(
            "username must be 3-32 characters of letters, digits, '.', '_' or '-'",
            detail={"field": "username"},
        )
    return username
