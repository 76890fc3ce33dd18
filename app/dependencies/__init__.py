"""Expose dependency helpers for FastAPI routers."""

from .auth import get_current_user, get_request_session
from .clients import (
    get_auth_attempt_limiter,
    get_credential_store,
    get_google_oauth_client,
    get_identity_client,
    get_oauth_token_lifecycle,
    get_rate_limit_store,
    get_session_refresh_decider,
    get_token_cipher_service,
)
from .config import get_app_settings

__all__ = [
    "get_app_settings",
    "get_auth_attempt_limiter",
    "get_credential_store",
    "get_current_user",
    "get_google_oauth_client",
    "get_identity_client",
    "get_oauth_token_lifecycle",
    "get_rate_limit_store",
    "get_request_session",
    "get_session_refresh_decider",
    "get_token_cipher_service",
]
