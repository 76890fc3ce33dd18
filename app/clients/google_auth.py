"""
Google OAuth utilities for the calendar integration.

These helpers build the consent URL and talk to the token endpoint. They do
not interpret the token payload beyond parsing it; deciding what a missing
field means is left to the token lifecycle service.
"""

from __future__ import annotations

from urllib.parse import urlencode

import httpx
from fastapi import status
from pydantic import ValidationError

from app.core.config import GoogleSettings
from app.models.oauth import TokenGrant


class ProviderHTTPError(Exception):
    """Raised when the token endpoint answers with a non-success status."""

    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"Token endpoint returned {status_code}")


class GoogleOAuthClient:
    """Build Google authorization URLs and call the token endpoint."""

    AUTH_BASE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    TOKEN_URL = "https://oauth2.googleapis.com/token"

    def __init__(
        self,
        google_settings: GoogleSettings,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._google = google_settings
        self._timeout = timeout
        self._transport = transport

    @property
    def client_id(self) -> str:
        return self._google.client_id

    @property
    def client_secret(self) -> str:
        return self._google.client_secret

    @property
    def scopes(self) -> tuple[str, ...]:
        return tuple(self._google.scopes)

    def build_authorization_url(self, state: str, access_type: str = "offline") -> str:
        """Construct the Google OAuth consent URL."""
        params = {
            "client_id": self._google.client_id,
            "redirect_uri": str(self._google.redirect_uri),
            "response_type": "code",
            "scope": " ".join(self._google.scopes),
            "access_type": access_type,
            "include_granted_scopes": "true",
            "prompt": "consent",
            "state": state,
        }
        return f"{self.AUTH_BASE_URL}?{urlencode(params)}"

    async def exchange_authorization_code(self, code: str) -> TokenGrant:
        """Exchange an authorization code for a token grant."""
        payload = {
            "code": code,
            "client_id": self._google.client_id,
            "client_secret": self._google.client_secret,
            "redirect_uri": str(self._google.redirect_uri),
            "grant_type": "authorization_code",
        }
        return await self._post_token(payload)

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        """Obtain a new access token using a stored refresh token."""
        payload = {
            "client_id": self._google.client_id,
            "client_secret": self._google.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        return await self._post_token(payload)

    async def _post_token(self, payload: dict[str, str]) -> TokenGrant:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(self.TOKEN_URL, data=payload)

        if response.status_code != status.HTTP_200_OK:
            raise ProviderHTTPError(response.status_code, response.text)

        try:
            return TokenGrant.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise ProviderHTTPError(response.status_code, response.text) from exc


__all__ = ["GoogleOAuthClient", "ProviderHTTPError"]
