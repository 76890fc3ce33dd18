"""
FastAPI routes for account sessions and the calendar integration.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Annotated, Any, Optional
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from app.clients import IdentityProviderClient
from app.core.config import AppSettings
from app.core.errors import (
    AuthError,
    IdentityProviderError,
    InputValidationError,
    IntegrationNotFoundError,
    NoAccessTokenError,
    NoRefreshTokenError,
    StorageError,
    TokenExchangeFailedError,
    UpstreamProviderError,
    error_response,
)
from app.core.logging import audit, log_event
from app.dependencies import (
    get_app_settings,
    get_auth_attempt_limiter,
    get_current_user,
    get_google_oauth_client,
    get_identity_client,
    get_oauth_token_lifecycle,
    get_request_session,
    get_session_refresh_decider,
)
from app.dependencies.auth import ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE, bearer_token
from app.models.session import Failed, IdentityUser, NotNeeded, Session
from app.schemas import (
    ForgotPasswordRequest,
    ResetPasswordRequest,
    SigninRequest,
    SignupRequest,
)
from app.services import AuthAttemptLimiter, AuthValidator
from app.services.rate_limit import client_ip
from app.services.validation import merge_results

router = APIRouter()
logger = logging.getLogger(__name__)

REFRESH_COOKIE_MAX_AGE = 60 * 60 * 24 * 30
EXPIRING_SOON_SECONDS = 600
NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

Settings = Annotated[AppSettings, Depends(get_app_settings)]
Limiter = Annotated[AuthAttemptLimiter, Depends(get_auth_attempt_limiter)]
Identity = Annotated[IdentityProviderClient, Depends(get_identity_client)]
CurrentUser = Annotated[IdentityUser, Depends(get_current_user)]


def _client_ip(request: Request) -> str:
    return getattr(request.state, "client_ip", None) or client_ip(request.headers)


def _public_base_url(request: Request, settings: AppSettings) -> str:
    if settings.base_url is not None:
        return str(settings.base_url).rstrip("/")
    return str(request.base_url).rstrip("/")


def _dashboard_redirect(request: Request, settings: AppSettings, **params: str) -> RedirectResponse:
    url = f"{_public_base_url(request, settings)}{settings.dashboard_path}?{urlencode(params)}"
    return RedirectResponse(url=url, status_code=HTTPStatus.TEMPORARY_REDIRECT)


def _session_payload(session: Session) -> dict[str, Any]:
    time_until_expiry = session.time_until_expiry(datetime.now(timezone.utc))
    return {
        "expiresAt": int(session.expires_at.timestamp() * 1000),
        "timeUntilExpiry": int(time_until_expiry * 1000),
        "isExpiringSoon": time_until_expiry < EXPIRING_SOON_SECONDS,
    }


def _set_session_cookies(response: JSONResponse, session: Session, settings: AppSettings) -> None:
    max_age = max(0, int(session.time_until_expiry(datetime.now(timezone.utc))))
    response.set_cookie(
        ACCESS_TOKEN_COOKIE,
        session.access_token,
        max_age=max_age,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )
    if session.refresh_token:
        response.set_cookie(
            REFRESH_TOKEN_COOKIE,
            session.refresh_token,
            max_age=REFRESH_COOKIE_MAX_AGE,
            httponly=True,
            secure=settings.is_production,
            samesite="lax",
        )


def _require_valid(*results) -> dict[str, Any]:
    merged = merge_results(*results)
    if not merged.is_valid:
        raise InputValidationError(merged.errors, AuthValidator.error_message(merged.errors))
    return merged.sanitized_data or {}


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.post("/auth/signup", status_code=HTTPStatus.OK)
async def signup(
    payload: SignupRequest,
    request: Request,
    limiter: Limiter,
    identity: Identity,
    settings: Settings,
) -> dict:
    ip = _client_ip(request)
    limiter.enforce("signup", ip)

    data = _require_valid(
        AuthValidator.validate_email(payload.email),
        AuthValidator.validate_password(payload.password),
        AuthValidator.validate_name(payload.name),
    )

    try:
        user = await identity.sign_up(
            data["email"],
            data["password"],
            name=data["name"],
            redirect_to=f"{_public_base_url(request, settings)}/auth/callback?next={settings.dashboard_path}",
        )
    except (IdentityProviderError, httpx.HTTPError) as exc:
        log_event(logger, logging.WARNING, "Signup rejected", client_ip=ip, error=str(exc))
        raise UpstreamProviderError("Failed to create account. Please try again.") from exc

    limiter.clear("signup", ip)
    audit("signup", user_id=user.id, client_ip=ip)
    return {
        "success": True,
        "message": "Account created successfully! Please check your email to verify your account.",
        "user": {"id": user.id, "email": user.email, "emailVerified": False},
    }


@router.post("/auth/signin", status_code=HTTPStatus.OK)
async def signin(
    payload: SigninRequest,
    request: Request,
    limiter: Limiter,
    identity: Identity,
    settings: Settings,
) -> JSONResponse:
    ip = _client_ip(request)
    limiter.enforce("signin", ip)

    data = _require_valid(AuthValidator.validate_email(payload.email))
    if not payload.password or not isinstance(payload.password, str):
        errors = AuthValidator.validate_password(None).errors
        raise InputValidationError(errors, AuthValidator.error_message(errors))

    try:
        session, user = await identity.sign_in_with_password(data["email"], payload.password)
    except IdentityProviderError as exc:
        log_event(
            logger,
            logging.WARNING,
            "Signin failed",
            client_ip=ip,
            email=data["email"],
            reason=exc.provider_message,
        )
        audit("signin_failed", severity="medium", client_ip=ip)
        raise AuthError("Invalid email or password.", requires_login=False) from exc
    except httpx.HTTPError as exc:
        log_event(logger, logging.ERROR, "Identity provider unreachable", error=type(exc).__name__)
        raise UpstreamProviderError("Unable to sign in right now. Please try again.") from exc

    limiter.clear("signin", ip)
    audit("signin", user_id=user.id, client_ip=ip)
    response = JSONResponse(
        {
            "success": True,
            "user": user.public_fields(),
            "session": _session_payload(session),
        }
    )
    _set_session_cookies(response, session, settings)
    return response


@router.post("/auth/forgot-password", status_code=HTTPStatus.OK)
async def forgot_password(
    payload: ForgotPasswordRequest,
    request: Request,
    limiter: Limiter,
    identity: Identity,
    settings: Settings,
) -> dict:
    ip = _client_ip(request)
    limiter.enforce("forgot_password", ip)

    data = _require_valid(AuthValidator.validate_email(payload.email))
    try:
        await identity.reset_password_for_email(
            data["email"],
            redirect_to=f"{_public_base_url(request, settings)}/reset-password",
        )
    except (IdentityProviderError, httpx.HTTPError) as exc:
        log_event(logger, logging.WARNING, "Password reset request failed", client_ip=ip, error=str(exc))
        raise UpstreamProviderError("Failed to send password reset email. Please try again.") from exc

    limiter.clear("forgot_password", ip)
    audit("password_reset_requested", client_ip=ip)
    return {
        "success": True,
        "message": "If an account exists for this email, a password reset link has been sent.",
    }


@router.post("/auth/reset-password", status_code=HTTPStatus.OK)
async def reset_password(
    payload: ResetPasswordRequest,
    request: Request,
    limiter: Limiter,
    identity: Identity,
) -> dict:
    """Set a new password using the recovery session from the reset email."""
    ip = _client_ip(request)
    limiter.enforce("reset_password", ip)

    access_token = bearer_token(request) or request.cookies.get(ACCESS_TOKEN_COOKIE)
    if not access_token:
        raise AuthError("Password reset session is missing or has expired.")

    data = _require_valid(
        AuthValidator.validate_password(payload.password),
        AuthValidator.validate_password_confirmation(payload.password, payload.confirm_password),
    )

    try:
        user = await identity.update_password(access_token, data["password"])
    except IdentityProviderError as exc:
        log_event(
            logger,
            logging.WARNING,
            "Password update rejected",
            client_ip=ip,
            provider_status=exc.provider_status,
            reason=exc.provider_message,
        )
        if exc.provider_status in (HTTPStatus.UNAUTHORIZED, HTTPStatus.FORBIDDEN):
            raise AuthError("Password reset session is missing or has expired.") from exc
        raise UpstreamProviderError("Failed to update password. Please try again.") from exc
    except httpx.HTTPError as exc:
        log_event(logger, logging.ERROR, "Identity provider unreachable", error=type(exc).__name__)
        raise UpstreamProviderError("Failed to update password. Please try again.") from exc

    limiter.clear("reset_password", ip)
    audit("password_changed", severity="medium", user_id=user.id, client_ip=ip)
    return {"success": True, "message": "Password updated successfully."}


@router.post("/auth/refresh", status_code=HTTPStatus.OK)
async def refresh_session(
    settings: Settings,
    session: Annotated[Optional[Session], Depends(get_request_session)],
    decider: Annotated[Any, Depends(get_session_refresh_decider)],
) -> JSONResponse:
    """Refresh the browser session when it is within fifteen minutes of expiry."""
    if session is None:
        raise AuthError("No active session to refresh")

    outcome = await decider.maybe_refresh(session)
    if isinstance(outcome, NotNeeded):
        return JSONResponse(
            {
                "success": True,
                "refreshed": False,
                "message": "Session is still valid, no refresh needed",
                "session": _session_payload(session),
            }
        )
    if isinstance(outcome, Failed):
        raise AuthError(outcome.reason, requires_login=outcome.requires_login)

    response = JSONResponse(
        {
            "success": True,
            "refreshed": True,
            "message": "Session refreshed successfully",
            "session": {**_session_payload(outcome.session), "refreshedAt": int(time.time() * 1000)},
            "user": outcome.user.public_fields(),
        }
    )
    _set_session_cookies(response, outcome.session, settings)
    return response


@router.post("/auth/logout", status_code=HTTPStatus.OK)
async def logout(
    request: Request,
    identity: Identity,
    session: Annotated[Optional[Session], Depends(get_request_session)],
) -> JSONResponse:
    access_token = bearer_token(request) or request.cookies.get(ACCESS_TOKEN_COOKIE)
    if access_token:
        try:
            await identity.sign_out(access_token)
        except (IdentityProviderError, httpx.HTTPError) as exc:
            # Local cookies are cleared regardless of the provider's answer.
            log_event(logger, logging.WARNING, "Provider sign-out failed", error=str(exc))

    if session is not None:
        audit("logout", user_id=session.user_id, client_ip=_client_ip(request))

    response = JSONResponse(
        {
            "success": True,
            "message": "Logged out successfully",
            "timestamp": int(time.time() * 1000),
        },
        headers=NO_CACHE_HEADERS,
    )
    response.delete_cookie(ACCESS_TOKEN_COOKIE)
    response.delete_cookie(REFRESH_TOKEN_COOKIE)
    return response


@router.get("/auth/session", status_code=HTTPStatus.OK)
async def session_status(
    session: Annotated[Optional[Session], Depends(get_request_session)],
) -> JSONResponse:
    """Report whether the browser holds an unexpired session, e.g. a password recovery one."""
    if session is None or session.time_until_expiry(datetime.now(timezone.utc)) <= 0:
        return JSONResponse({"hasSession": False}, headers=NO_CACHE_HEADERS)
    return JSONResponse(
        {"hasSession": True, "userId": session.user_id, "session": _session_payload(session)},
        headers=NO_CACHE_HEADERS,
    )


@router.get("/auth/calendar/connect", status_code=HTTPStatus.OK)
async def connect_calendar(
    request: Request,
    user: CurrentUser,
    oauth_client: Annotated[Any, Depends(get_google_oauth_client)],
    redirect: bool = Query(
        default=False,
        description="When true, respond with a redirect to the Google consent screen.",
    ),
):
    """Start the Google consent flow for the signed-in user."""
    authorization_url = oauth_client.build_authorization_url(state=user.id)

    accept_header = request.headers.get("accept", "")
    wants_html = "text/html" in accept_header.lower()
    if redirect or wants_html:
        return RedirectResponse(url=authorization_url, status_code=HTTPStatus.TEMPORARY_REDIRECT)

    return {"authorization_url": authorization_url, "state": user.id}


@router.get("/auth/calendar/callback")
async def calendar_callback(
    request: Request,
    settings: Settings,
    lifecycle: Annotated[Any, Depends(get_oauth_token_lifecycle)],
    code: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None, description="Internal user identifier."),
    error: Optional[str] = Query(default=None),
    error_description: Optional[str] = Query(default=None),
) -> RedirectResponse:
    """
    Complete the consent flow and send the browser back to the dashboard.

    Every outcome is a redirect; failures carry ``calendar_error`` and
    success carries ``calendar_success=true``.
    """
    if error:
        log_event(logger, logging.ERROR, "Calendar OAuth error", error=error, description=error_description)
        return _dashboard_redirect(request, settings, calendar_error=error)

    if not code or not state:
        log_event(
            logger,
            logging.ERROR,
            "Missing required OAuth parameters",
            has_code=bool(code),
            has_state=bool(state),
        )
        return _dashboard_redirect(request, settings, calendar_error="invalid_callback")

    try:
        await lifecycle.exchange_code(code, state)
    except NoAccessTokenError:
        return _dashboard_redirect(request, settings, calendar_error="no_access_token")
    except TokenExchangeFailedError:
        return _dashboard_redirect(request, settings, calendar_error="token_exchange_failed")
    except StorageError as exc:
        log_event(logger, logging.ERROR, "Failed to store calendar integration", user_id=state, error=exc.detail)
        return _dashboard_redirect(request, settings, calendar_error="storage_failed")
    except Exception:
        log_event(
            logger,
            logging.ERROR,
            "Unexpected error in calendar OAuth callback",
            user_id=state,
            exc_info=True,
        )
        return _dashboard_redirect(request, settings, calendar_error="unexpected_error")

    return _dashboard_redirect(request, settings, calendar_success="true")


@router.post("/auth/calendar/refresh", status_code=HTTPStatus.OK)
async def refresh_calendar_token(
    user: CurrentUser,
    lifecycle: Annotated[Any, Depends(get_oauth_token_lifecycle)],
):
    try:
        integration = await lifecycle.refresh_token(user.id)
    except (IntegrationNotFoundError, NoRefreshTokenError, UpstreamProviderError, StorageError) as exc:
        return error_response(exc)

    return {"success": True, "integration": integration.public_fields()}


@router.post("/auth/calendar/disconnect", status_code=HTTPStatus.OK)
async def disconnect_calendar(
    user: CurrentUser,
    lifecycle: Annotated[Any, Depends(get_oauth_token_lifecycle)],
):
    try:
        lifecycle.disconnect(user.id)
    except StorageError as exc:
        log_event(logger, logging.ERROR, "Failed to disconnect calendar", user_id=user.id, error=exc.detail)
        return error_response(exc)

    return {"success": True}


__all__ = ["router"]
