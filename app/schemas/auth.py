"""Request bodies for the authentication endpoints."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class _LenientPayload(BaseModel):
    """Fields are validated by ``AuthValidator`` so bad input yields field codes."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class SignupRequest(_LenientPayload):
    email: Optional[Any] = None
    password: Optional[Any] = None
    name: Optional[Any] = None
    timezone: Optional[str] = None


class SigninRequest(_LenientPayload):
    email: Optional[Any] = None
    password: Optional[Any] = None


class ForgotPasswordRequest(_LenientPayload):
    email: Optional[Any] = None


class ResetPasswordRequest(_LenientPayload):
    password: Optional[Any] = None
    confirm_password: Optional[Any] = Field(None, alias="confirmPassword")


__all__ = [
    "ForgotPasswordRequest",
    "ResetPasswordRequest",
    "SigninRequest",
    "SignupRequest",
]
