"""
Client for the hosted identity provider (GoTrue-compatible REST API).

Only the handful of auth calls the API needs are wrapped. Any non-success
answer is raised as ``IdentityProviderError`` so callers can decide between
a generic client message and a forced re-login.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from app.core.config import IdentitySettings
from app.core.errors import IdentityProviderError
from app.models.session import IdentityUser, Session


def _user_from_payload(payload: Dict[str, Any]) -> IdentityUser:
    metadata = payload.get("user_metadata") or {}
    return IdentityUser(
        id=str(payload.get("id", "")),
        email=payload.get("email"),
        name=metadata.get("name") or metadata.get("full_name"),
        email_confirmed_at=payload.get("email_confirmed_at"),
    )


def _session_from_payload(payload: Dict[str, Any]) -> tuple[Session, IdentityUser]:
    user = _user_from_payload(payload.get("user") or {})
    expires_at = payload.get("expires_at")
    if expires_at is None:
        expires_at = time.time() + int(payload.get("expires_in") or 3600)
    session = Session(
        user_id=user.id,
        access_token=payload.get("access_token", ""),
        refresh_token=payload.get("refresh_token", ""),
        expires_at=datetime.fromtimestamp(float(expires_at), tz=timezone.utc),
    )
    return session, user


class IdentityProviderClient:
    """Thin async wrapper over the identity provider's auth endpoints."""

    def __init__(
        self,
        settings: IdentitySettings,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = f"{str(settings.url).rstrip('/')}/auth/v1"
        self._anon_key = settings.anon_key
        self._timeout = timeout
        self._transport = transport

    def _headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        headers = {"apikey": self._anon_key, "Content-Type": "application/json"}
        headers["Authorization"] = f"Bearer {access_token or self._anon_key}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        access_token: Optional[str] = None,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        async with httpx.AsyncClient(
            base_url=self._base_url, timeout=self._timeout, transport=self._transport
        ) as client:
            response = await client.request(
                method,
                path,
                headers=self._headers(access_token),
                json=json,
                params=params,
            )

        if response.is_error:
            raise IdentityProviderError(response.status_code, _error_message(response))
        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    async def get_user(self, access_token: str) -> IdentityUser:
        """Validate an access token and return the user it belongs to."""
        payload = await self._request("GET", "/user", access_token=access_token)
        user = _user_from_payload(payload)
        if not user.id:
            raise IdentityProviderError(401, "No user returned for access token.")
        return user

    async def refresh_session(self, refresh_token: str) -> tuple[Session, IdentityUser]:
        payload = await self._request(
            "POST",
            "/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
        )
        if not payload.get("access_token"):
            raise IdentityProviderError(502, "Refresh response did not include a session.")
        return _session_from_payload(payload)

    async def sign_in_with_password(self, email: str, password: str) -> tuple[Session, IdentityUser]:
        payload = await self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        return _session_from_payload(payload)

    async def sign_up(
        self, email: str, password: str, *, name: str, redirect_to: Optional[str] = None
    ) -> IdentityUser:
        params = {"redirect_to": redirect_to} if redirect_to else None
        payload = await self._request(
            "POST",
            "/signup",
            params=params,
            json={
                "email": email,
                "password": password,
                "data": {"name": name, "full_name": name},
            },
        )
        # Depending on confirmation settings the user is top-level or nested.
        user_payload = payload.get("user") if isinstance(payload.get("user"), dict) else payload
        return _user_from_payload(user_payload)

    async def reset_password_for_email(self, email: str, *, redirect_to: Optional[str] = None) -> None:
        params = {"redirect_to": redirect_to} if redirect_to else None
        await self._request("POST", "/recover", params=params, json={"email": email})

    async def update_password(self, access_token: str, password: str) -> IdentityUser:
        payload = await self._request(
            "PUT", "/user", access_token=access_token, json={"password": password}
        )
        return _user_from_payload(payload)

    async def sign_out(self, access_token: str) -> None:
        await self._request("POST", "/logout", access_token=access_token)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        for key in ("msg", "error_description", "message", "error"):
            value = body.get(key)
            if value:
                return str(value)
    return response.text[:200]


__all__ = ["IdentityProviderClient"]
