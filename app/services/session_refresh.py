"""Decide whether an identity-provider session needs refreshing."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Protocol

import httpx

from app.core.errors import IdentityProviderError
from app.core.logging import log_event
from app.models.session import (
    Failed,
    IdentityUser,
    NotNeeded,
    RefreshOutcome,
    Refreshed,
    Session,
)

logger = logging.getLogger(__name__)


class SessionRefresher(Protocol):
    async def refresh_session(self, refresh_token: str) -> tuple[Session, IdentityUser]:
        ...


class SessionRefreshDecider:
    """
    Refresh a session only when it is close to expiring.

    Sessions with more than ``threshold_seconds`` left are returned untouched
    without contacting the provider. Otherwise exactly one refresh call is
    made; any failure is final for the current request and the caller should
    send the user back to login.
    """

    REFRESH_THRESHOLD_SECONDS = 900

    def __init__(
        self,
        identity_client: SessionRefresher,
        *,
        threshold_seconds: float = REFRESH_THRESHOLD_SECONDS,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._identity = identity_client
        self._threshold = threshold_seconds
        self._clock = clock

    async def maybe_refresh(self, session: Session) -> RefreshOutcome:
        time_until_expiry = session.time_until_expiry(self._clock())
        if time_until_expiry > self._threshold:
            return NotNeeded(time_until_expiry=time_until_expiry)

        if not session.refresh_token:
            return Failed(reason="No refresh token available for session.")

        try:
            new_session, user = await self._identity.refresh_session(session.refresh_token)
        except IdentityProviderError as exc:
            log_event(
                logger,
                logging.WARNING,
                "Session refresh rejected",
                user_id=session.user_id,
                provider_status=exc.provider_status,
                reason=exc.provider_message,
            )
            return Failed(reason="Failed to refresh session.")
        except httpx.HTTPError as exc:
            log_event(
                logger,
                logging.WARNING,
                "Session refresh request failed",
                user_id=session.user_id,
                error=type(exc).__name__,
            )
            return Failed(reason="Failed to refresh session.")

        log_event(logger, logging.INFO, "Session refreshed", user_id=user.id)
        return Refreshed(session=new_session, user=user)


__all__ = ["SessionRefreshDecider", "SessionRefresher"]
