"""
Factory functions to provide shared clients and services as FastAPI dependencies.

Clients are built from the settings the running app was created with and
cached on ``app.state`` so each app instance holds one of each.
"""

from typing import Any, Callable

from fastapi import Depends, Request

from app.clients import GoogleOAuthClient, IdentityProviderClient, SQLiteCredentialStore
from app.core.config import AppSettings
from app.services import (
    AuthAttemptLimiter,
    OAuthTokenLifecycle,
    RateLimitStore,
    SessionRefreshDecider,
    TokenCipherService,
)

from .config import get_app_settings


def _app_scoped(request: Request, key: str, build: Callable[[AppSettings], Any]) -> Any:
    """Return the app's cached instance for ``key``, building it on first use."""
    state = request.app.state
    cache = getattr(state, "clients", None)
    if cache is None:
        cache = state.clients = {}
    if key not in cache:
        cache[key] = build(get_app_settings(request))
    return cache[key]


def get_google_oauth_client(request: Request) -> GoogleOAuthClient:
    """Create the app's Google OAuth client."""
    return _app_scoped(
        request,
        "google_oauth",
        lambda settings: GoogleOAuthClient(settings.google, timeout=settings.http_timeout_seconds),
    )


def get_identity_client(request: Request) -> IdentityProviderClient:
    """Create the app's identity provider client."""
    return _app_scoped(
        request,
        "identity",
        lambda settings: IdentityProviderClient(settings.identity, timeout=settings.http_timeout_seconds),
    )


def build_token_cipher(settings: AppSettings) -> TokenCipherService:
    """Token cipher keyed by the encryption secret, or the Google client secret when unset."""
    secret = settings.security.token_encryption_secret or settings.google.client_secret
    return TokenCipherService(
        secret=secret,
        previous_secrets=settings.security.previous_token_encryption_secrets,
    )


def get_token_cipher_service(request: Request) -> TokenCipherService:
    """Provide symmetric encryption helper for token storage."""
    return _app_scoped(request, "token_cipher", build_token_cipher)


def get_credential_store(
    request: Request,
    cipher: TokenCipherService = Depends(get_token_cipher_service),
) -> SQLiteCredentialStore:
    """Provide the app's credential store."""
    return _app_scoped(
        request,
        "credential_store",
        lambda settings: SQLiteCredentialStore(settings.credential_db_path, cipher),
    )


def get_rate_limit_store(request: Request) -> RateLimitStore:
    """Return the store shared with the gatekeeper middleware of this app."""
    return request.app.state.rate_limit_store


def get_auth_attempt_limiter(request: Request) -> AuthAttemptLimiter:
    """Build the strict per-purpose limiter over the app's rate limit store."""
    gatekeeper = get_app_settings(request).gatekeeper
    return AuthAttemptLimiter(
        get_rate_limit_store(request),
        limit=gatekeeper.auth_attempt_limit,
        window_seconds=gatekeeper.auth_attempt_window_seconds,
        overrides={"signin": gatekeeper.signin_attempt_limit},
    )


def get_session_refresh_decider(
    identity: IdentityProviderClient = Depends(get_identity_client),
) -> SessionRefreshDecider:
    """Build a refresh decider over the identity provider client."""
    return SessionRefreshDecider(identity)


def get_oauth_token_lifecycle(
    store: SQLiteCredentialStore = Depends(get_credential_store),
    oauth_client: GoogleOAuthClient = Depends(get_google_oauth_client),
) -> OAuthTokenLifecycle:
    """Build the calendar token lifecycle service."""
    return OAuthTokenLifecycle(store=store, oauth_client=oauth_client)


__all__ = [
    "build_token_cipher",
    "get_auth_attempt_limiter",
    "get_credential_store",
    "get_google_oauth_client",
    "get_identity_client",
    "get_oauth_token_lifecycle",
    "get_rate_limit_store",
    "get_session_refresh_decider",
    "get_token_cipher_service",
]
