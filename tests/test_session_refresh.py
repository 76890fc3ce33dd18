try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from datetime import datetime, timedelta, timezone

import httpx
import jwt
import pytest

from app.core.errors import IdentityProviderError
from app.models.session import (
    Failed,
    IdentityUser,
    NotNeeded,
    Refreshed,
    Session,
    session_from_tokens,
)
from app.services.session_refresh import SessionRefreshDecider

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeIdentity:
    def __init__(self, *, error: Exception | None = None) -> None:
        self.calls: list[str] = []
        self.error = error

    async def refresh_session(self, refresh_token: str):
        self.calls.append(refresh_token)
        if self.error is not None:
            raise self.error
        session = Session(
            user_id="user-1",
            access_token="new-access",
            refresh_token="new-refresh",
            expires_at=NOW + timedelta(hours=1),
        )
        return session, IdentityUser(id="user-1", email="user@example.com", name="User")


def _session(seconds_left: float, refresh_token: str = "refresh-1") -> Session:
    return Session(
        user_id="user-1",
        access_token="access-1",
        refresh_token=refresh_token,
        expires_at=NOW + timedelta(seconds=seconds_left),
    )


def _decider(identity: FakeIdentity) -> SessionRefreshDecider:
    return SessionRefreshDecider(identity, clock=lambda: NOW)


@pytest.mark.anyio
async def test_session_with_more_than_threshold_is_left_alone() -> None:
    identity = FakeIdentity()

    outcome = await _decider(identity).maybe_refresh(_session(901))

    assert isinstance(outcome, NotNeeded)
    assert outcome.time_until_expiry == pytest.approx(901)
    assert identity.calls == []


@pytest.mark.anyio
async def test_session_at_threshold_is_refreshed() -> None:
    identity = FakeIdentity()

    outcome = await _decider(identity).maybe_refresh(_session(900))

    assert isinstance(outcome, Refreshed)
    assert identity.calls == ["refresh-1"]


@pytest.mark.anyio
async def test_session_close_to_expiry_is_refreshed_once() -> None:
    identity = FakeIdentity()

    outcome = await _decider(identity).maybe_refresh(_session(899))

    assert isinstance(outcome, Refreshed)
    assert outcome.session.access_token == "new-access"
    assert outcome.user.email == "user@example.com"
    assert identity.calls == ["refresh-1"]


@pytest.mark.anyio
async def test_expired_session_is_still_refreshed() -> None:
    identity = FakeIdentity()

    outcome = await _decider(identity).maybe_refresh(_session(-30))

    assert isinstance(outcome, Refreshed)


@pytest.mark.anyio
@pytest.mark.parametrize(
    "error",
    [
        IdentityProviderError(400, "Invalid Refresh Token"),
        httpx.ConnectError("unreachable"),
    ],
)
async def test_provider_failure_requires_login(error: Exception) -> None:
    identity = FakeIdentity(error=error)

    outcome = await _decider(identity).maybe_refresh(_session(60))

    assert isinstance(outcome, Failed)
    assert outcome.requires_login is True
    assert identity.calls == ["refresh-1"]


@pytest.mark.anyio
async def test_missing_refresh_token_fails_without_provider_call() -> None:
    identity = FakeIdentity()

    outcome = await _decider(identity).maybe_refresh(_session(60, refresh_token=""))

    assert isinstance(outcome, Failed)
    assert identity.calls == []


def _jwt(claims: dict) -> str:
    return jwt.encode(claims, "unverified-signing-key-for-tests-only", algorithm="HS256")


def test_session_from_tokens_reads_subject_and_expiry() -> None:
    expires = int((NOW + timedelta(minutes=30)).timestamp())

    session = session_from_tokens(_jwt({"sub": "user-9", "exp": expires}), "refresh-9")

    assert session is not None
    assert session.user_id == "user-9"
    assert session.refresh_token == "refresh-9"
    assert session.expires_at == NOW + timedelta(minutes=30)


@pytest.mark.parametrize(
    "token",
    [
        None,
        "",
        "not-a-jwt",
        _jwt({"sub": "user-9"}),
        _jwt({"sub": "user-9", "exp": True}),
        _jwt({"sub": "user-9", "exp": 1e20}),
        _jwt({"sub": "user-9", "exp": float("nan")}),
        _jwt({"sub": "user-9", "exp": float("inf")}),
    ],
)
def test_session_from_tokens_rejects_unusable_tokens(token) -> None:
    assert session_from_tokens(token, "refresh") is None
