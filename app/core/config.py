"""
Application configuration models and helpers.

Centralizes settings management so the gatekeeper middleware, the identity
provider client, and the calendar token lifecycle share one configuration
surface.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Optional

import os

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


def _split_csv(value: str | tuple[str, ...] | list[str] | set[str]) -> tuple[str, ...]:
    if isinstance(value, (tuple, list, set, frozenset)):
        return tuple(value)
    return tuple(item.strip() for item in value.split(",") if item.strip())


CommaSeparated = Annotated[tuple[str, ...], NoDecode]


DEFAULT_BLOCKED_USER_AGENTS: tuple[str, ...] = (
    r"bot",
    r"crawl",
    r"spider",
    r"scrap(e|er|y)",
    r"^curl/",
    r"^wget/",
    r"python-requests",
    r"libwww-perl",
    r"go-http-client",
    r"httpie",
)


class GoogleSettings(BaseSettings):
    """Configuration required for the Google Calendar OAuth integration."""

    model_config = SettingsConfigDict(populate_by_name=True)

    client_id: str = Field(..., validation_alias="GOOGLE_CLIENT_ID")
    client_secret: str = Field(..., validation_alias="GOOGLE_CLIENT_SECRET")
    redirect_uri: AnyHttpUrl = Field(..., validation_alias="GOOGLE_REDIRECT_URI")
    scopes: CommaSeparated = Field(
        (
            "https://www.googleapis.com/auth/calendar",
            "https://www.googleapis.com/auth/calendar.events",
        ),
        validation_alias="GOOGLE_CALENDAR_SCOPES",
    )

    @field_validator("scopes", mode="before")
    @classmethod
    def _split_scopes(cls, value):
        """Support providing scopes as a comma-separated string."""
        return _split_csv(value)


class IdentitySettings(BaseSettings):
    """Connection details for the hosted identity provider."""

    model_config = SettingsConfigDict(populate_by_name=True)

    url: AnyHttpUrl = Field(..., validation_alias="SUPABASE_URL")
    anon_key: str = Field(..., validation_alias="SUPABASE_ANON_KEY")


class GatekeeperSettings(BaseSettings):
    """Options consumed by the request gatekeeper and auth rate limiting."""

    model_config = SettingsConfigDict(populate_by_name=True)

    allowed_origins: CommaSeparated = Field(
        ("http://localhost:3000", "http://localhost:3001"),
        validation_alias="ALLOWED_ORIGINS",
    )
    allow_localhost_origins: Optional[bool] = Field(
        None,
        validation_alias="ALLOW_LOCALHOST_ORIGINS",
        description="Accept localhost origins; enabled outside production when unset.",
    )
    blocked_user_agent_patterns: CommaSeparated = Field(
        DEFAULT_BLOCKED_USER_AGENTS,
        validation_alias="BLOCKED_USER_AGENT_PATTERNS",
    )
    blocked_ips: CommaSeparated = Field((), validation_alias="BLOCKED_IPS")
    max_requests_per_minute: int = Field(100, validation_alias="MAX_REQUESTS_PER_MINUTE", gt=0)
    auth_attempt_limit: int = Field(3, validation_alias="AUTH_ATTEMPT_LIMIT", gt=0)
    auth_attempt_window_seconds: int = Field(
        900, validation_alias="AUTH_ATTEMPT_WINDOW_SECONDS", gt=0
    )
    signin_attempt_limit: int = Field(5, validation_alias="SIGNIN_ATTEMPT_LIMIT", gt=0)
    excluded_path_prefixes: CommaSeparated = Field(
        ("/static/", "/public/", "/favicon.ico"),
        validation_alias="EXCLUDED_PATH_PREFIXES",
    )
    api_prefix: str = Field("/api/", validation_alias="API_PREFIX")
    rate_limit_sweep_interval: int = Field(
        1000,
        validation_alias="RATE_LIMIT_SWEEP_INTERVAL",
        gt=0,
        description="Number of rate-limit checks between stale-entry sweeps.",
    )

    @field_validator(
        "allowed_origins",
        "blocked_user_agent_patterns",
        "blocked_ips",
        "excluded_path_prefixes",
        mode="before",
    )
    @classmethod
    def _split_lists(cls, value):
        return _split_csv(value)


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    model_config = SettingsConfigDict(populate_by_name=True)

    token_encryption_secret: Optional[str] = Field(
        None,
        validation_alias="TOKEN_ENCRYPTION_SECRET",
        description=(
            "Secret used to derive the symmetric key for encrypting stored tokens."
        ),
    )
    previous_token_encryption_secrets: CommaSeparated = Field(
        (),
        validation_alias="TOKEN_ENCRYPTION_PREVIOUS_SECRETS",
        description="Retired secrets still accepted for decryption during rotation.",
    )

    @field_validator("previous_token_encryption_secrets", mode="before")
    @classmethod
    def _split_previous(cls, value):
        return _split_csv(value)


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    base_url: Optional[AnyHttpUrl] = Field(
        None,
        validation_alias="APP_BASE_URL",
        description="Public origin used for absolute redirects; request URL when omitted.",
    )
    dashboard_path: str = Field("/dashboard", validation_alias="DASHBOARD_PATH")
    credential_db_path: str = Field("data/credentials.db", validation_alias="CREDENTIAL_DB_PATH")
    http_timeout_seconds: float = Field(10.0, validation_alias="HTTP_TIMEOUT_SECONDS")
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    gatekeeper: GatekeeperSettings = Field(default_factory=GatekeeperSettings)
    google: GoogleSettings = Field(default_factory=GoogleSettings)
    identity: IdentitySettings = Field(default_factory=IdentitySettings)

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "DEFAULT_BLOCKED_USER_AGENTS",
    "GatekeeperSettings",
    "GoogleSettings",
    "IdentitySettings",
    "SecuritySettings",
    "get_settings",
]
