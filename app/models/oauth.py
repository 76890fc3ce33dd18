"""
Domain models for calendar OAuth integrations.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


class IntegrationProvider(str, Enum):
    GOOGLE_CALENDAR = "google_calendar"


class OAuthIntegration(BaseModel):
    """A user's stored authorization with an external calendar provider."""

    user_id: str = Field(..., description="Internal user identifier.")
    provider: IntegrationProvider = IntegrationProvider.GOOGLE_CALENDAR
    access_token: str
    refresh_token: str = Field("", description="Empty when the provider never issued one.")
    expires_at: datetime
    created_at: datetime
    updated_at: datetime

    def expires_within(self, seconds: float, *, now: datetime) -> bool:
        return (self.expires_at - now).total_seconds() <= seconds

    def public_fields(self) -> Dict[str, Any]:
        """Fields safe to return to the browser; the refresh token stays server-side."""
        return {
            "user_id": self.user_id,
            "provider": self.provider.value,
            "access_token": self.access_token,
            "has_refresh_token": bool(self.refresh_token),
            "expires_at": self.expires_at.isoformat(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class TokenGrant(BaseModel):
    """Token endpoint response, as returned by the OAuth provider."""

    access_token: str | None = None
    refresh_token: str | None = None
    expires_in: int | None = None
    scope: str | None = None
    token_type: str | None = None


__all__ = ["IntegrationProvider", "OAuthIntegration", "TokenGrant"]
