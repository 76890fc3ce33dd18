"""Public schema exports."""

from .auth import (
    ForgotPasswordRequest,
    ResetPasswordRequest,
    SigninRequest,
    SignupRequest,
)

__all__ = [
    "ForgotPasswordRequest",
    "ResetPasswordRequest",
    "SigninRequest",
    "SignupRequest",
]
