"""
Error taxonomy shared by the middleware, services and routes.

Every error carries the HTTP status and the stable machine code that the
client sees. Messages are safe for display; provider bodies and storage
details stay in the logs.
"""

from __future__ import annotations

import math
from datetime import datetime
from http import HTTPStatus
from typing import Any, Sequence

from fastapi.responses import JSONResponse


class AppError(Exception):
    """Base class for errors translated into a JSON envelope."""

    status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR
    code: str = "unexpected_error"
    message: str = "An unexpected error occurred. Please try again."

    def __init__(self, message: str | None = None, *, detail: str | None = None) -> None:
        self.message = message or type(self).message
        # Internal detail is logged, never returned to the client.
        self.detail = detail
        super().__init__(detail or self.message)

    def envelope(self) -> dict[str, Any]:
        return error_envelope(self.code, self.message)

    def headers(self) -> dict[str, str] | None:
        return None


class InputValidationError(AppError):
    status_code = HTTPStatus.BAD_REQUEST
    code = "validation_error"
    message = "The request contains invalid data."

    def __init__(self, errors: Sequence[Any], message: str | None = None) -> None:
        self.errors = list(errors)
        super().__init__(message)

    def envelope(self) -> dict[str, Any]:
        codes = [getattr(error, "code", str(error)) for error in self.errors]
        return error_envelope(self.code, self.message, validationErrors=codes)


class AuthError(AppError):
    status_code = HTTPStatus.UNAUTHORIZED
    code = "unauthorized"
    message = "Authentication required."

    def __init__(self, message: str | None = None, *, requires_login: bool = True, detail: str | None = None) -> None:
        self.requires_login = requires_login
        super().__init__(message, detail=detail)

    def envelope(self) -> dict[str, Any]:
        return error_envelope(self.code, self.message, requiresLogin=self.requires_login)


class RateLimitError(AppError):
    status_code = HTTPStatus.TOO_MANY_REQUESTS
    code = "rate_limited"
    message = "Too many requests. Please try again later."

    def __init__(self, retry_after: float, message: str | None = None, *, reset_at: datetime | None = None) -> None:
        self.retry_after = max(0, math.ceil(retry_after))
        self.reset_at = reset_at
        super().__init__(message)

    def envelope(self) -> dict[str, Any]:
        return error_envelope(self.code, self.message, retryAfter=self.retry_after)

    def headers(self) -> dict[str, str]:
        return {"Retry-After": str(self.retry_after)}


class UpstreamProviderError(AppError):
    status_code = HTTPStatus.BAD_REQUEST
    code = "upstream_error"
    message = "The external provider rejected the request."


class TokenExchangeFailedError(UpstreamProviderError):
    code = "token_exchange_failed"
    message = "Failed to exchange authorization code."


class NoAccessTokenError(TokenExchangeFailedError):
    code = "no_access_token"
    message = "The provider did not return an access token."


class TokenRefreshFailedError(UpstreamProviderError):
    code = "token_refresh_failed"
    message = "Failed to refresh token."


class IdentityProviderError(UpstreamProviderError):
    """Raised by the identity provider client for non-success responses."""

    code = "identity_provider_error"

    def __init__(self, status_code: int, provider_message: str) -> None:
        self.provider_status = status_code
        self.provider_message = provider_message
        super().__init__(detail=f"{status_code}: {provider_message}")


class IntegrationNotFoundError(AppError):
    status_code = HTTPStatus.NOT_FOUND
    code = "integration_not_found"
    message = "Calendar integration not found."


class NoRefreshTokenError(AppError):
    status_code = HTTPStatus.BAD_REQUEST
    code = "no_refresh_token"
    message = "No refresh token available."


class StorageError(AppError):
    status_code = HTTPStatus.INTERNAL_SERVER_ERROR
    code = "storage_failed"
    message = "Failed to persist changes."


class UnexpectedError(AppError):
    pass


def error_envelope(code: str, message: str, **extra: Any) -> dict[str, Any]:
    return {"success": False, "error": code, "message": message, **extra}


def error_response(error: AppError) -> JSONResponse:
    """Render an ``AppError`` as the standard JSON envelope."""
    return JSONResponse(
        status_code=int(error.status_code),
        content=error.envelope(),
        headers=error.headers(),
    )


__all__ = [
    "AppError",
    "AuthError",
    "IdentityProviderError",
    "InputValidationError",
    "IntegrationNotFoundError",
    "NoAccessTokenError",
    "NoRefreshTokenError",
    "RateLimitError",
    "StorageError",
    "TokenExchangeFailedError",
    "TokenRefreshFailedError",
    "UnexpectedError",
    "UpstreamProviderError",
    "error_envelope",
    "error_response",
]
