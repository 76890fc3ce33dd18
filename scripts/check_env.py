"""Preflight checks and key maintenance for the planner API.

``check`` loads ``AppSettings`` from an env file and then looks for problems
that would otherwise only surface once requests arrive:

* no usable token encryption key (``TOKEN_ENCRYPTION_SECRET`` and the Google
  client secret it falls back to are both empty),
* ``BLOCKED_USER_AGENT_PATTERNS`` entries that are not valid regexes,
* a ``CREDENTIAL_DB_PATH`` whose directory cannot be written,
* localhost origins still accepted when ``APP_ENV=production``.

``rotate-keys`` runs the same checks, then re-encrypts every stored calendar
credential under the current ``TOKEN_ENCRYPTION_SECRET``. Put the retired
secret in ``TOKEN_ENCRYPTION_PREVIOUS_SECRETS`` first; it can be removed once
the rotation succeeds.

Example usages::

    python -m scripts.check_env check --env-file /opt/planner/.env
    python -m scripts.check_env rotate-keys --env-file /opt/planner/.env
"""

from __future__ import annotations

import argparse
import os
import re
import sys
from pathlib import Path
from urllib.parse import urlsplit

from pydantic import ValidationError

from app.clients.credential_store import SQLiteCredentialStore
from app.core.config import AppSettings, _load_env_file
from app.core.errors import StorageError
from app.dependencies.clients import build_token_cipher
from app.middleware.checks import LOCAL_HOSTNAMES

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_CONFIG_ERROR = 4
EXIT_RUNTIME_ERROR = 5


def _load_settings(env_file: Path) -> AppSettings:
    _load_env_file(str(env_file))
    return AppSettings()  # type: ignore[call-arg]


def _writable_ancestor(path: Path) -> Path:
    """Closest existing directory the store would create ``path`` under."""
    directory = path.parent.resolve()
    while not directory.exists() and directory != directory.parent:
        directory = directory.parent
    return directory


def find_problems(settings: AppSettings) -> list[str]:
    """Return a description of each setting the running service would trip over."""
    problems: list[str] = []

    try:
        build_token_cipher(settings)
    except ValueError:
        problems.append(
            "No token encryption key: TOKEN_ENCRYPTION_SECRET and GOOGLE_CLIENT_SECRET are both empty."
        )

    for pattern in settings.gatekeeper.blocked_user_agent_patterns:
        try:
            re.compile(pattern, re.IGNORECASE)
        except re.error as exc:
            problems.append(f"BLOCKED_USER_AGENT_PATTERNS entry {pattern!r} is not a valid regex: {exc}")

    db_path = Path(settings.credential_db_path)
    directory = _writable_ancestor(db_path)
    if not os.access(directory, os.W_OK):
        problems.append(f"CREDENTIAL_DB_PATH {db_path} cannot be created: {directory} is not writable.")

    if settings.is_production:
        if settings.gatekeeper.allow_localhost_origins:
            problems.append("ALLOW_LOCALHOST_ORIGINS is enabled while APP_ENV=production.")
        local_origins = [
            origin
            for origin in settings.gatekeeper.allowed_origins
            if urlsplit(origin).hostname in LOCAL_HOSTNAMES
        ]
        if local_origins:
            problems.append(
                f"ALLOWED_ORIGINS lists local origins in production: {', '.join(local_origins)}"
            )

    return problems


def _rotate_keys(settings: AppSettings) -> int:
    store = SQLiteCredentialStore(settings.credential_db_path, build_token_cipher(settings))
    try:
        count = store.reencrypt_all()
    except StorageError as exc:
        print(f"Key rotation failed, no rows were changed: {exc}", file=sys.stderr)
        return EXIT_RUNTIME_ERROR
    print(f"Re-encrypted {count} stored credential(s) under the current key.")
    return EXIT_OK


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Check planner API settings and maintain stored credential encryption."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    for name, help_text in (
        ("check", "Validate settings and report configuration problems."),
        ("rotate-keys", "Re-encrypt stored credentials under the current encryption secret."),
    ):
        subparser = subparsers.add_parser(name, help=help_text)
        subparser.add_argument(
            "--env-file",
            default=".env",
            type=Path,
            help="Path to the environment file (default: .env in the repo root).",
        )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    env_file: Path = args.env_file

    if not env_file.exists():
        print(f"Environment file {env_file} does not exist.", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    try:
        settings = _load_settings(env_file)
    except ValidationError as exc:
        print(
            "Settings validation failed. Missing or invalid values detected:\n"
            f"{exc.json(indent=2)}",
            file=sys.stderr,
        )
        return EXIT_VALIDATION_ERROR

    problems = find_problems(settings)
    if problems:
        print("Configuration problems found:", file=sys.stderr)
        for problem in problems:
            print(f"  - {problem}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    if not settings.security.token_encryption_secret:
        print(
            "Warning: TOKEN_ENCRYPTION_SECRET is unset; stored tokens are keyed by GOOGLE_CLIENT_SECRET.",
            file=sys.stderr,
        )

    if args.command == "rotate-keys":
        return _rotate_keys(settings)

    print("Configuration OK.")
    return EXIT_OK


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
