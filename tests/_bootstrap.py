"""Test helper that normalizes sys.path and environment defaults."""

from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


_DEFAULT_ENV_VARS: dict[str, str] = {
    "GOOGLE_CLIENT_ID": "test-client-id",
    "GOOGLE_CLIENT_SECRET": "test-client-secret",
    "GOOGLE_REDIRECT_URI": "https://example.com/api/auth/calendar/callback",
    "SUPABASE_URL": "https://identity.example.com",
    "SUPABASE_ANON_KEY": "test-anon-key",
    "TOKEN_ENCRYPTION_SECRET": "test-secret",
    "CREDENTIAL_DB_PATH": str(Path(tempfile.gettempdir()) / "planner-test-credentials.db"),
}

for key, value in _DEFAULT_ENV_VARS.items():
    os.environ.setdefault(key, value)
