"""Tests for the configuration preflight and key rotation script."""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from app.clients.credential_store import SQLiteCredentialStore
from app.models.oauth import IntegrationProvider
from app.services.token_cipher import TokenCipherService
from scripts import check_env

MANAGED_ENV_KEYS = [
    "APP_ENV",
    "GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
    "GOOGLE_REDIRECT_URI",
    "SUPABASE_URL",
    "SUPABASE_ANON_KEY",
    "TOKEN_ENCRYPTION_SECRET",
    "TOKEN_ENCRYPTION_PREVIOUS_SECRETS",
    "CREDENTIAL_DB_PATH",
    "BLOCKED_USER_AGENT_PATTERNS",
    "ALLOWED_ORIGINS",
    "ALLOW_LOCALHOST_ORIGINS",
]


@pytest.fixture()
def env_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Write an env file; the script's env loading is undone after each test."""
    for key in MANAGED_ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    snapshot = dict(os.environ)
    path = tmp_path / ".env"
    base = {
        "GOOGLE_CLIENT_ID": "abc",
        "GOOGLE_CLIENT_SECRET": "secret",
        "GOOGLE_REDIRECT_URI": "https://example.com/api/auth/calendar/callback",
        "SUPABASE_URL": "https://project.supabase.co",
        "SUPABASE_ANON_KEY": "anon-key",
        "TOKEN_ENCRYPTION_SECRET": "current-secret",
        "CREDENTIAL_DB_PATH": str(tmp_path / "data" / "credentials.db"),
    }

    def write(**overrides: str | None) -> Path:
        values = {**base, **overrides}
        lines = [f"{key}={value}" for key, value in values.items() if value is not None]
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    yield write
    os.environ.clear()
    os.environ.update(snapshot)


@pytest.mark.parametrize("command", ["check", "rotate-keys"])
def test_missing_env_file_is_runtime_error(tmp_path: Path, command: str) -> None:
    exit_code = check_env.main([command, "--env-file", str(tmp_path / ".missing-env")])

    assert exit_code == check_env.EXIT_RUNTIME_ERROR


def test_check_accepts_complete_env_file(env_file) -> None:
    path = env_file()

    assert check_env.main(["check", "--env-file", str(path)]) == check_env.EXIT_OK


def test_missing_identity_key_is_validation_error(env_file) -> None:
    path = env_file(SUPABASE_ANON_KEY=None)

    assert check_env.main(["check", "--env-file", str(path)]) == check_env.EXIT_VALIDATION_ERROR


def test_invalid_block_pattern_is_reported(env_file, capsys) -> None:
    path = env_file(BLOCKED_USER_AGENT_PATTERNS="bot,scrap(e")

    exit_code = check_env.main(["check", "--env-file", str(path)])

    assert exit_code == check_env.EXIT_CONFIG_ERROR
    assert "scrap(e" in capsys.readouterr().err


def test_missing_encryption_key_is_reported(env_file, capsys) -> None:
    path = env_file(TOKEN_ENCRYPTION_SECRET=None, GOOGLE_CLIENT_SECRET="")

    exit_code = check_env.main(["check", "--env-file", str(path)])

    assert exit_code == check_env.EXIT_CONFIG_ERROR
    assert "No token encryption key" in capsys.readouterr().err


def test_fallback_encryption_key_only_warns(env_file, capsys) -> None:
    path = env_file(TOKEN_ENCRYPTION_SECRET=None)

    exit_code = check_env.main(["check", "--env-file", str(path)])

    assert exit_code == check_env.EXIT_OK
    assert "keyed by GOOGLE_CLIENT_SECRET" in capsys.readouterr().err


def test_localhost_origins_rejected_in_production(env_file, capsys) -> None:
    path = env_file(
        APP_ENV="production",
        ALLOWED_ORIGINS="https://app.example.com,http://localhost:3000",
    )

    exit_code = check_env.main(["check", "--env-file", str(path)])

    assert exit_code == check_env.EXIT_CONFIG_ERROR
    assert "http://localhost:3000" in capsys.readouterr().err


def test_production_with_public_origins_passes(env_file) -> None:
    path = env_file(APP_ENV="production", ALLOWED_ORIGINS="https://app.example.com")

    assert check_env.main(["check", "--env-file", str(path)]) == check_env.EXIT_OK


def test_rotate_keys_moves_credentials_to_current_secret(env_file, tmp_path: Path) -> None:
    db_path = str(tmp_path / "data" / "credentials.db")
    now = datetime(2024, 5, 1, tzinfo=timezone.utc)
    SQLiteCredentialStore(db_path, TokenCipherService(secret="retired-secret")).upsert(
        user_id="user-1",
        provider=IntegrationProvider.GOOGLE_CALENDAR,
        access_token="access-1",
        refresh_token="refresh-1",
        expires_at=now + timedelta(hours=1),
        now=now,
    )
    path = env_file(TOKEN_ENCRYPTION_PREVIOUS_SECRETS="retired-secret")

    assert check_env.main(["rotate-keys", "--env-file", str(path)]) == check_env.EXIT_OK

    current = SQLiteCredentialStore(db_path, TokenCipherService(secret="current-secret"))
    integration = current.get("user-1", IntegrationProvider.GOOGLE_CALENDAR)
    assert integration.refresh_token == "refresh-1"


def test_rotate_keys_without_retired_secret_fails(env_file, tmp_path: Path) -> None:
    db_path = str(tmp_path / "data" / "credentials.db")
    now = datetime(2024, 5, 1, tzinfo=timezone.utc)
    SQLiteCredentialStore(db_path, TokenCipherService(secret="retired-secret")).upsert(
        user_id="user-1",
        provider=IntegrationProvider.GOOGLE_CALENDAR,
        access_token="access-1",
        refresh_token=None,
        expires_at=now + timedelta(hours=1),
        now=now,
    )
    path = env_file()

    assert check_env.main(["rotate-keys", "--env-file", str(path)]) == check_env.EXIT_RUNTIME_ERROR
