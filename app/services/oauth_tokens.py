"""
Lifecycle of the Google Calendar OAuth credentials.

Covers the authorization-code exchange, refreshing an expired access token,
disconnecting, and handing fresh ``Credentials`` to calendar API callers.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

import httpx
from google.oauth2.credentials import Credentials

from app.clients.credential_store import CredentialStore
from app.clients.google_auth import ProviderHTTPError
from app.core.errors import (
    IntegrationNotFoundError,
    NoAccessTokenError,
    NoRefreshTokenError,
    TokenExchangeFailedError,
    TokenRefreshFailedError,
)
from app.core.logging import audit, log_event
from app.models.oauth import IntegrationProvider, OAuthIntegration, TokenGrant

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN_SECONDS = 3600


class TokenEndpointClient(Protocol):
    TOKEN_URL: str
    client_id: str
    client_secret: str
    scopes: tuple[str, ...]

    async def exchange_authorization_code(self, code: str) -> TokenGrant:
        ...

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        ...


class OAuthTokenLifecycle:
    """Exchange, refresh and remove a user's calendar integration."""

    _CREDENTIALS_REFRESH_WINDOW = timedelta(minutes=5)

    def __init__(
        self,
        store: CredentialStore,
        oauth_client: TokenEndpointClient,
        *,
        provider: IntegrationProvider = IntegrationProvider.GOOGLE_CALENDAR,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._store = store
        self._oauth = oauth_client
        self._provider = provider
        self._clock = clock

    async def exchange_code(self, code: str, user_id: str) -> OAuthIntegration:
        """
        Trade an authorization code for tokens and persist them.

        Raises ``TokenExchangeFailedError`` when the provider rejects the
        code and ``NoAccessTokenError`` when it answers without an access
        token. Storage failures surface as ``StorageError``.
        """
        try:
            grant = await self._oauth.exchange_authorization_code(code)
        except ProviderHTTPError as exc:
            log_event(
                logger,
                logging.ERROR,
                "Failed to exchange code for tokens",
                user_id=user_id,
                status=exc.status_code,
                error=exc.body,
            )
            raise TokenExchangeFailedError(detail=exc.body) from exc
        except httpx.HTTPError as exc:
            log_event(
                logger,
                logging.ERROR,
                "Token endpoint unreachable during code exchange",
                user_id=user_id,
                error=type(exc).__name__,
            )
            raise TokenExchangeFailedError(detail=str(exc)) from exc

        if not grant.access_token:
            log_event(logger, logging.ERROR, "No access token received", user_id=user_id)
            raise NoAccessTokenError()

        now = self._clock()
        integration, created = self._store.upsert(
            user_id=user_id,
            provider=self._provider,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token or None,
            expires_at=self._expires_at(grant, now),
            now=now,
        )
        log_event(
            logger,
            logging.INFO,
            "Calendar integration stored",
            user_id=user_id,
            operation="created" if created else "updated",
        )
        audit("calendar_connected", user_id=user_id, provider=self._provider.value)
        return integration

    async def refresh_token(self, user_id: str) -> OAuthIntegration:
        """
        Replace the stored access token using the stored refresh token.

        The refresh token itself is never altered, and nothing is written
        when the provider refuses.
        """
        integration = self._store.get(user_id, self._provider)
        if integration is None:
            raise IntegrationNotFoundError()
        if not integration.refresh_token:
            raise NoRefreshTokenError()

        try:
            grant = await self._oauth.refresh_access_token(integration.refresh_token)
        except ProviderHTTPError as exc:
            log_event(
                logger,
                logging.ERROR,
                "Failed to refresh calendar token",
                user_id=user_id,
                status=exc.status_code,
                error=exc.body,
            )
            raise TokenRefreshFailedError(detail=exc.body) from exc
        except httpx.HTTPError as exc:
            log_event(
                logger,
                logging.ERROR,
                "Token endpoint unreachable during refresh",
                user_id=user_id,
                error=type(exc).__name__,
            )
            raise TokenRefreshFailedError(detail=str(exc)) from exc

        if not grant.access_token:
            log_event(logger, logging.ERROR, "Refresh returned no access token", user_id=user_id)
            raise TokenRefreshFailedError(detail="Refresh response lacked an access token.")

        now = self._clock()
        updated = self._store.update_access_token(
            user_id=user_id,
            provider=self._provider,
            access_token=grant.access_token,
            expires_at=self._expires_at(grant, now),
            now=now,
        )
        if updated is None:
            # Disconnected while the refresh was in flight.
            raise IntegrationNotFoundError()

        log_event(logger, logging.INFO, "Calendar token refreshed", user_id=user_id)
        return updated

    def disconnect(self, user_id: str) -> None:
        """Remove the local integration row; no provider-side revocation is made."""
        self._store.delete(user_id, self._provider)
        log_event(logger, logging.INFO, "Calendar integration removed", user_id=user_id)
        audit("calendar_disconnected", user_id=user_id, provider=self._provider.value)

    async def get_credentials(self, user_id: str) -> Credentials:
        """Return usable Google credentials, refreshing when close to expiry."""
        integration = self._store.get(user_id, self._provider)
        if integration is None:
            raise IntegrationNotFoundError()

        if integration.expires_within(
            self._CREDENTIALS_REFRESH_WINDOW.total_seconds(), now=self._clock()
        ):
            integration = await self.refresh_token(user_id)

        return Credentials(
            token=integration.access_token,
            refresh_token=integration.refresh_token or None,
            token_uri=self._oauth.TOKEN_URL,
            client_id=self._oauth.client_id,
            client_secret=self._oauth.client_secret,
            scopes=list(self._oauth.scopes),
        )

    @staticmethod
    def _expires_at(grant: TokenGrant, now: datetime) -> datetime:
        return now + timedelta(seconds=grant.expires_in or DEFAULT_EXPIRES_IN_SECONDS)


__all__ = ["DEFAULT_EXPIRES_IN_SECONDS", "OAuthTokenLifecycle", "TokenEndpointClient"]
