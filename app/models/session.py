"""
Identity-provider session types and the outcomes of a refresh decision.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

import jwt


@dataclass(slots=True, frozen=True)
class IdentityUser:
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    email_confirmed_at: Optional[str] = None

    def public_fields(self) -> dict:
        return {"id": self.id, "email": self.email, "name": self.name}


@dataclass(slots=True, frozen=True)
class Session:
    """Handle on an identity-provider session held by the browser."""

    user_id: str
    access_token: str
    refresh_token: str
    expires_at: datetime

    def time_until_expiry(self, now: datetime) -> float:
        return (self.expires_at - now).total_seconds()


@dataclass(slots=True, frozen=True)
class NotNeeded:
    time_until_expiry: float


@dataclass(slots=True, frozen=True)
class Refreshed:
    session: Session
    user: IdentityUser


@dataclass(slots=True, frozen=True)
class Failed:
    reason: str
    requires_login: bool = True


RefreshOutcome = Union[NotNeeded, Refreshed, Failed]


def _unverified_claims(token: str) -> Optional[dict]:
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError:
        return None
    return claims if isinstance(claims, dict) else None


def session_from_tokens(access_token: Optional[str], refresh_token: Optional[str]) -> Optional[Session]:
    """
    Build a ``Session`` from browser-held tokens.

    Only the unverified ``sub`` and ``exp`` claims are read here; the identity
    provider validates the token whenever it is actually used.
    """
    if not access_token:
        return None
    claims = _unverified_claims(access_token)
    if not claims:
        return None
    subject = claims.get("sub")
    expires = claims.get("exp")
    if not subject or isinstance(expires, bool) or not isinstance(expires, (int, float)):
        return None
    try:
        expires_at = datetime.fromtimestamp(expires, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
    return Session(
        user_id=str(subject),
        access_token=access_token,
        refresh_token=refresh_token or "",
        expires_at=expires_at,
    )


__all__ = [
    "Failed",
    "IdentityUser",
    "NotNeeded",
    "RefreshOutcome",
    "Refreshed",
    "Session",
    "session_from_tokens",
]
