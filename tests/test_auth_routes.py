try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from datetime import datetime, timedelta, timezone

import httpx
import jwt
import pytest

from app import dependencies
from app.core.errors import IdentityProviderError
from app.main import create_app
from app.models.session import IdentityUser, Session
from app.services.rate_limit import InMemoryRateLimitStore
from app.services.session_refresh import SessionRefreshDecider
from app.services.validation import ERROR_MESSAGES


def _jwt(subject: str, expires_in: int) -> str:
    expires = int((datetime.now(timezone.utc) + timedelta(seconds=expires_in)).timestamp())
    return jwt.encode({"sub": subject, "exp": expires}, "unverified-signing-key-for-tests-only", algorithm="HS256")


class FakeIdentity:
    def __init__(self) -> None:
        self.signups: list[str] = []
        self.refreshes: list[str] = []
        self.sign_outs: list[str] = []
        self.password_updates: list[str] = []
        self.reject_refresh = False

    async def sign_up(self, email, password, *, name, redirect_to=None) -> IdentityUser:
        self.signups.append(email)
        return IdentityUser(id="user-1", email=email, name=name)

    async def sign_in_with_password(self, email, password):
        if password != "Correct-Horse-9":
            raise IdentityProviderError(400, "Invalid login credentials")
        return self._session("user-1", 3600), IdentityUser(id="user-1", email=email)

    async def reset_password_for_email(self, email, *, redirect_to=None) -> None:
        return None

    async def update_password(self, access_token, password) -> IdentityUser:
        self.password_updates.append(access_token)
        return IdentityUser(id="user-1")

    async def refresh_session(self, refresh_token):
        self.refreshes.append(refresh_token)
        if self.reject_refresh:
            raise IdentityProviderError(400, "Invalid Refresh Token")
        return self._session("user-1", 3600), IdentityUser(id="user-1", email="user@example.com")

    async def sign_out(self, access_token) -> None:
        self.sign_outs.append(access_token)

    @staticmethod
    def _session(user_id: str, expires_in: int) -> Session:
        return Session(
            user_id=user_id,
            access_token=_jwt(user_id, expires_in),
            refresh_token="new-refresh",
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        )


@pytest.fixture()
def identity() -> FakeIdentity:
    return FakeIdentity()


@pytest.fixture()
def client(identity):
    app = create_app(rate_limit_store=InMemoryRateLimitStore())
    app.dependency_overrides.update(
        {
            dependencies.get_identity_client: lambda: identity,
            dependencies.get_session_refresh_decider: lambda: SessionRefreshDecider(identity),
        }
    )
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")


VALID_SIGNUP = {"email": "New.User@Example.com", "password": "Str0ngPassw0rd", "name": "New User"}


@pytest.mark.anyio
async def test_healthcheck(client) -> None:
    async with client:
        response = await client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert response.headers["X-Frame-Options"] == "DENY"


@pytest.mark.anyio
async def test_signup_budget_is_three_per_window(client, identity) -> None:
    invalid = {"email": "not-an-email", "password": "short", "name": ""}
    async with client:
        responses = [await client.post("/api/auth/signup", json=invalid) for _ in range(4)]

    assert [response.status_code for response in responses] == [400, 400, 400, 429]
    first = responses[0].json()
    assert first["error"] == "validation_error"
    assert "EMAIL_INVALID" in first["validationErrors"]
    assert "NAME_REQUIRED" in first["validationErrors"]
    limited = responses[3].json()
    assert 0 < limited["retryAfter"] <= 900
    assert identity.signups == []


@pytest.mark.anyio
async def test_signup_success_clears_budget(client, identity) -> None:
    async with client:
        for _ in range(2):
            await client.post("/api/auth/signup", json={"email": "bad"})
        created = await client.post("/api/auth/signup", json=VALID_SIGNUP)
        after = [await client.post("/api/auth/signup", json={"email": "bad"}) for _ in range(3)]

    assert created.status_code == 200
    assert created.json()["user"] == {
        "id": "user-1",
        "email": "new.user@example.com",
        "emailVerified": False,
    }
    assert identity.signups == ["new.user@example.com"]
    assert [response.status_code for response in after] == [400, 400, 400]


@pytest.mark.anyio
async def test_signup_budget_is_per_client_address(client) -> None:
    async with client:
        for _ in range(3):
            await client.post("/api/auth/signup", json={}, headers={"X-Forwarded-For": "10.0.0.1"})
        blocked = await client.post("/api/auth/signup", json={}, headers={"X-Forwarded-For": "10.0.0.1"})
        other = await client.post("/api/auth/signup", json={}, headers={"X-Forwarded-For": "10.0.0.2"})

    assert blocked.status_code == 429
    assert other.status_code == 400


@pytest.mark.anyio
async def test_signin_sets_session_cookies(client) -> None:
    async with client:
        response = await client.post(
            "/api/auth/signin",
            json={"email": "user@example.com", "password": "Correct-Horse-9"},
        )

    assert response.status_code == 200
    assert response.json()["user"]["id"] == "user-1"
    cookies = response.headers.get_list("set-cookie")
    assert any(cookie.startswith("sb-access-token=") and "HttpOnly" in cookie for cookie in cookies)
    assert any(cookie.startswith("sb-refresh-token=new-refresh") for cookie in cookies)


@pytest.mark.anyio
async def test_signin_rejection_is_generic_and_limited_at_five(client) -> None:
    payload = {"email": "user@example.com", "password": "wrong-password"}
    async with client:
        responses = [await client.post("/api/auth/signin", json=payload) for _ in range(6)]

    assert [response.status_code for response in responses] == [401] * 5 + [429]
    assert responses[0].json()["message"] == "Invalid email or password."
    assert "Invalid login credentials" not in responses[0].text


@pytest.mark.anyio
async def test_forgot_password_validates_email(client) -> None:
    async with client:
        rejected = await client.post("/api/auth/forgot-password", json={"email": "nope"})
        accepted = await client.post("/api/auth/forgot-password", json={"email": "user@example.com"})

    assert rejected.status_code == 400
    assert rejected.json()["validationErrors"] == ["EMAIL_INVALID"]
    assert rejected.json()["message"] == ERROR_MESSAGES["EMAIL_INVALID"]
    assert accepted.status_code == 200
    assert accepted.json()["success"] is True


@pytest.mark.anyio
async def test_reset_password_requires_recovery_session(client, identity) -> None:
    body = {"password": "N3wPassword!", "confirmPassword": "N3wPassword!"}
    async with client:
        missing = await client.post("/api/auth/reset-password", json=body)
        mismatch = await client.post(
            "/api/auth/reset-password",
            json={**body, "confirmPassword": "Different1"},
            headers={"Authorization": "Bearer recovery-token"},
        )
        updated = await client.post(
            "/api/auth/reset-password",
            json=body,
            headers={"Authorization": "Bearer recovery-token"},
        )

    assert missing.status_code == 401
    assert mismatch.status_code == 400
    assert mismatch.json()["validationErrors"] == ["PASSWORD_MISMATCH"]
    assert updated.status_code == 200
    assert identity.password_updates == ["recovery-token"]


@pytest.mark.anyio
async def test_refresh_without_session_requires_login(client) -> None:
    async with client:
        response = await client.post("/api/auth/refresh")

    assert response.status_code == 401
    assert response.json()["requiresLogin"] is True


@pytest.mark.anyio
async def test_refresh_skips_provider_for_long_lived_session(client, identity) -> None:
    cookie = f"sb-access-token={_jwt('user-1', 3600)}; sb-refresh-token=refresh-1"
    async with client:
        response = await client.post("/api/auth/refresh", headers={"Cookie": cookie})

    body = response.json()
    assert response.status_code == 200
    assert body["refreshed"] is False
    assert body["session"]["isExpiringSoon"] is False
    assert identity.refreshes == []


@pytest.mark.anyio
async def test_refresh_rotates_cookies_for_expiring_session(client, identity) -> None:
    cookie = f"sb-access-token={_jwt('user-1', 300)}; sb-refresh-token=refresh-1"
    async with client:
        response = await client.post("/api/auth/refresh", headers={"Cookie": cookie})

    assert response.status_code == 200
    assert response.json()["refreshed"] is True
    assert identity.refreshes == ["refresh-1"]
    cookies = response.headers.get_list("set-cookie")
    assert any(cookie.startswith("sb-refresh-token=new-refresh") for cookie in cookies)


@pytest.mark.anyio
async def test_refresh_failure_requires_login(client, identity) -> None:
    identity.reject_refresh = True
    cookie = f"sb-access-token={_jwt('user-1', 60)}; sb-refresh-token=refresh-1"
    async with client:
        response = await client.post("/api/auth/refresh", headers={"Cookie": cookie})

    assert response.status_code == 401
    assert response.json()["requiresLogin"] is True
    assert identity.refreshes == ["refresh-1"]


@pytest.mark.anyio
async def test_logout_clears_cookies_and_disables_caching(client, identity) -> None:
    token = _jwt("user-1", 3600)
    async with client:
        response = await client.post("/api/auth/logout", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    assert response.headers["Cache-Control"] == "no-cache, no-store, must-revalidate"
    assert identity.sign_outs == [token]
    cleared = response.headers.get_list("set-cookie")
    assert any(cookie.startswith('sb-access-token=""') for cookie in cleared)
    assert any(cookie.startswith('sb-refresh-token=""') for cookie in cleared)


@pytest.mark.anyio
async def test_refresh_and_logout_treat_out_of_range_expiry_as_no_session(client, identity) -> None:
    token = jwt.encode({"sub": "user-1", "exp": 1e20}, "unverified-signing-key-for-tests-only", algorithm="HS256")
    headers = {"Authorization": f"Bearer {token}"}
    async with client:
        refreshed = await client.post("/api/auth/refresh", headers=headers)
        logged_out = await client.post("/api/auth/logout", headers=headers)

    assert refreshed.status_code == 401
    assert refreshed.json()["requiresLogin"] is True
    assert logged_out.status_code == 200
    assert identity.refreshes == []


@pytest.mark.anyio
async def test_session_check_reports_live_session(client) -> None:
    cookie = f"sb-access-token={_jwt('user-1', 3600)}"
    async with client:
        live = await client.get("/api/auth/session", headers={"Cookie": cookie})
        expired = await client.get(
            "/api/auth/session", headers={"Authorization": f"Bearer {_jwt('user-1', -60)}"}
        )
        missing = await client.get("/api/auth/session")

    assert live.status_code == 200
    assert live.json()["hasSession"] is True
    assert live.json()["userId"] == "user-1"
    assert live.headers["Cache-Control"] == "no-cache, no-store, must-revalidate"
    assert expired.json() == {"hasSession": False}
    assert missing.json() == {"hasSession": False}
