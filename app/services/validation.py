"""Input validation for the credential endpoints."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Optional

EMAIL_PATTERN = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)
EMAIL_MAX_LENGTH = 254
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128
NAME_MAX_LENGTH = 100

COMMON_PASSWORDS = frozenset(
    {
        "password",
        "password123",
        "123456789",
        "qwerty",
        "abc123",
        "password1",
        "admin",
        "welcome",
        "letmein",
        "monkey",
    }
)

ERROR_MESSAGES = {
    "EMAIL_REQUIRED": "Email address is required",
    "EMAIL_INVALID": "Please enter a valid email address",
    "EMAIL_TOO_LONG": "Email address is too long",
    "PASSWORD_REQUIRED": "Password is required",
    "PASSWORD_TOO_SHORT": "Password must be at least 8 characters long",
    "PASSWORD_TOO_LONG": "Password is too long (max 128 characters)",
    "PASSWORD_NO_LOWERCASE": "Password must contain at least one lowercase letter",
    "PASSWORD_NO_UPPERCASE": "Password must contain at least one uppercase letter",
    "PASSWORD_NO_NUMBER": "Password must contain at least one number",
    "PASSWORD_TOO_COMMON": "This password is too common. Please choose a stronger password",
    "PASSWORD_MISMATCH": "Passwords do not match",
    "NAME_REQUIRED": "Name is required",
    "NAME_INVALID_TYPE": "Name must be a string",
    "NAME_TOO_LONG": "Name is too long (max 100 characters)",
}

_UNSAFE_FRAGMENTS = (
    re.compile(r"[<>]"),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+=", re.IGNORECASE),
)


@dataclass(slots=True, frozen=True)
class FieldError:
    field: str
    code: str
    message: str


@dataclass(slots=True)
class ValidationResult:
    is_valid: bool
    errors: list[FieldError] = field(default_factory=list)
    sanitized_data: Optional[dict[str, Any]] = None


def _error(field_name: str, code: str) -> FieldError:
    return FieldError(field=field_name, code=code, message=ERROR_MESSAGES[code])


class AuthValidator:
    """Validate and normalize credential payload fields."""

    @staticmethod
    def validate_email(email: Any) -> ValidationResult:
        if not email or not isinstance(email, str):
            return ValidationResult(False, [_error("email", "EMAIL_REQUIRED")])

        errors: list[FieldError] = []
        if not EMAIL_PATTERN.match(email):
            errors.append(_error("email", "EMAIL_INVALID"))
        if len(email) > EMAIL_MAX_LENGTH:
            errors.append(_error("email", "EMAIL_TOO_LONG"))
        return ValidationResult(
            not errors, errors, {"email": email.strip().lower()}
        )

    @staticmethod
    def validate_password(password: Any) -> ValidationResult:
        if not password or not isinstance(password, str):
            return ValidationResult(False, [_error("password", "PASSWORD_REQUIRED")])

        errors: list[FieldError] = []
        if len(password) < PASSWORD_MIN_LENGTH:
            errors.append(_error("password", "PASSWORD_TOO_SHORT"))
        if len(password) > PASSWORD_MAX_LENGTH:
            errors.append(_error("password", "PASSWORD_TOO_LONG"))
        if not re.search(r"[a-z]", password):
            errors.append(_error("password", "PASSWORD_NO_LOWERCASE"))
        if not re.search(r"[A-Z]", password):
            errors.append(_error("password", "PASSWORD_NO_UPPERCASE"))
        if not re.search(r"[0-9]", password):
            errors.append(_error("password", "PASSWORD_NO_NUMBER"))
        if password.lower() in COMMON_PASSWORDS:
            errors.append(_error("password", "PASSWORD_TOO_COMMON"))
        return ValidationResult(not errors, errors, {"password": password})

    @classmethod
    def validate_name(cls, name: Any) -> ValidationResult:
        if name is None:
            return ValidationResult(False, [_error("name", "NAME_REQUIRED")])
        if not isinstance(name, str):
            return ValidationResult(False, [_error("name", "NAME_INVALID_TYPE")])
        trimmed = name.strip()
        if not trimmed:
            return ValidationResult(False, [_error("name", "NAME_REQUIRED")])
        if len(trimmed) > NAME_MAX_LENGTH:
            return ValidationResult(False, [_error("name", "NAME_TOO_LONG")])
        return ValidationResult(True, [], {"name": cls.sanitize_input(trimmed)})

    @staticmethod
    def validate_password_confirmation(password: Any, confirmation: Any) -> ValidationResult:
        if password != confirmation:
            return ValidationResult(False, [_error("confirm_password", "PASSWORD_MISMATCH")])
        return ValidationResult(True)

    @staticmethod
    def sanitize_input(value: Any) -> str:
        """Strip markup fragments that could be replayed into HTML."""
        if not isinstance(value, str):
            return ""
        cleaned = value.strip()
        for pattern in _UNSAFE_FRAGMENTS:
            cleaned = pattern.sub("", cleaned)
        return cleaned

    @staticmethod
    def error_message(errors: list[FieldError]) -> str:
        return errors[0].message if errors else ""


def merge_results(*results: ValidationResult) -> ValidationResult:
    """Combine several field validations, keeping errors in order."""
    errors: list[FieldError] = []
    sanitized: dict[str, Any] = {}
    for result in results:
        errors.extend(result.errors)
        if result.sanitized_data:
            sanitized.update(result.sanitized_data)
    return ValidationResult(not errors, errors, sanitized)


__all__ = [
    "AuthValidator",
    "FieldError",
    "ValidationResult",
    "merge_results",
]
