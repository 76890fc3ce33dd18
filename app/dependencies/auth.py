"""
Session dependencies for routes that act on behalf of a signed-in user.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx
from fastapi import Depends, Request

from app.clients import IdentityProviderClient
from app.core.errors import AuthError, IdentityProviderError
from app.core.logging import log_event
from app.models.session import IdentityUser, Session, session_from_tokens

from .clients import get_identity_client

logger = logging.getLogger(__name__)

ACCESS_TOKEN_COOKIE = "sb-access-token"
REFRESH_TOKEN_COOKIE = "sb-refresh-token"


def bearer_token(request: Request) -> Optional[str]:
    """Return the bearer token from the Authorization header, if any."""
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_request_session(request: Request) -> Optional[Session]:
    """Read the browser session from the bearer header or the session cookies."""
    access_token = bearer_token(request) or request.cookies.get(ACCESS_TOKEN_COOKIE)
    return session_from_tokens(access_token, request.cookies.get(REFRESH_TOKEN_COOKIE))


async def get_current_user(
    request: Request,
    identity: IdentityProviderClient = Depends(get_identity_client),
) -> IdentityUser:
    """Resolve the signed-in user or raise ``AuthError`` (401)."""
    access_token = bearer_token(request) or request.cookies.get(ACCESS_TOKEN_COOKIE)
    if not access_token:
        raise AuthError("Authorization required.")

    try:
        user = await identity.get_user(access_token)
    except IdentityProviderError as exc:
        log_event(
            logger,
            logging.WARNING,
            "Session token rejected",
            provider_status=exc.provider_status,
            reason=exc.provider_message,
        )
        raise AuthError("Invalid or expired session.") from exc
    except httpx.HTTPError as exc:
        log_event(logger, logging.ERROR, "Identity provider unreachable", error=type(exc).__name__)
        raise AuthError("Unable to verify session.") from exc

    request.state.user_id = user.id
    return user


__all__ = [
    "ACCESS_TOKEN_COOKIE",
    "REFRESH_TOKEN_COOKIE",
    "bearer_token",
    "get_current_user",
    "get_request_session",
]
