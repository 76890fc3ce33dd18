"""SQLite-backed store for per-user calendar OAuth credentials."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Iterator, Optional, Protocol

from app.core.errors import StorageError
from app.models.oauth import IntegrationProvider, OAuthIntegration

if TYPE_CHECKING:
    from app.services.token_cipher import TokenCipherService


class CredentialStore(Protocol):
    """Persisted table of integration rows keyed by ``(user_id, provider)``."""

    def get(self, user_id: str, provider: IntegrationProvider) -> Optional[OAuthIntegration]:
        ...

    def upsert(
        self,
        *,
        user_id: str,
        provider: IntegrationProvider,
        access_token: str,
        refresh_token: Optional[str],
        expires_at: datetime,
        now: datetime,
    ) -> tuple[OAuthIntegration, bool]:
        ...

    def update_access_token(
        self,
        *,
        user_id: str,
        provider: IntegrationProvider,
        access_token: str,
        expires_at: datetime,
        now: datetime,
    ) -> Optional[OAuthIntegration]:
        ...

    def delete(self, user_id: str, provider: IntegrationProvider) -> None:
        ...


class SQLiteCredentialStore:
    """
    Integration rows in a single table with a ``(user_id, provider)`` key.

    Token columns are encrypted at rest. A ``NULL`` refresh token means the
    provider never issued one.
    """

    def __init__(self, db_path: str, cipher: TokenCipherService) -> None:
        self._db_path = Path(db_path)
        self._cipher = cipher
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with _storage_errors("initialize credential schema"), self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS user_integrations (
                    user_id TEXT NOT NULL,
                    provider TEXT NOT NULL,
                    access_token TEXT NOT NULL,
                    refresh_token TEXT,
                    expires_at TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (user_id, provider)
                )
                """
            )

    def get(self, user_id: str, provider: IntegrationProvider) -> Optional[OAuthIntegration]:
        with _storage_errors("load integration"), self._connect() as conn:
            row = self._fetch(conn, user_id, provider)
        return self._to_model(row) if row else None

    def upsert(
        self,
        *,
        user_id: str,
        provider: IntegrationProvider,
        access_token: str,
        refresh_token: Optional[str],
        expires_at: datetime,
        now: datetime,
    ) -> tuple[OAuthIntegration, bool]:
        """
        Insert or update a row in one statement.

        ``created_at`` is only written on insert, and an absent refresh token
        keeps whatever was stored before. Returns the row and whether it was
        newly created.
        """
        with _storage_errors("upsert integration"), self._connect() as conn:
            # Only reported back to the caller; the write below does not depend on it.
            existed = self._fetch(conn, user_id, provider) is not None
            conn.execute(
                """
                INSERT INTO user_integrations (
                    user_id, provider, access_token, refresh_token,
                    expires_at, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, provider) DO UPDATE SET
                    access_token = excluded.access_token,
                    refresh_token = COALESCE(excluded.refresh_token, user_integrations.refresh_token),
                    expires_at = excluded.expires_at,
                    updated_at = excluded.updated_at
                """,
                (
                    user_id,
                    provider.value,
                    self._cipher.encrypt(access_token),
                    self._cipher.encrypt_optional(refresh_token),
                    expires_at.isoformat(),
                    now.isoformat(),
                    now.isoformat(),
                ),
            )
            row = self._fetch(conn, user_id, provider)
        if row is None:
            raise StorageError(detail="Integration row missing after upsert.")
        return self._to_model(row), not existed

    def update_access_token(
        self,
        *,
        user_id: str,
        provider: IntegrationProvider,
        access_token: str,
        expires_at: datetime,
        now: datetime,
    ) -> Optional[OAuthIntegration]:
        with _storage_errors("update access token"), self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE user_integrations
                SET access_token = ?, expires_at = ?, updated_at = ?
                WHERE user_id = ? AND provider = ?
                """,
                (
                    self._cipher.encrypt(access_token),
                    expires_at.isoformat(),
                    now.isoformat(),
                    user_id,
                    provider.value,
                ),
            )
            if cursor.rowcount == 0:
                return None
            row = self._fetch(conn, user_id, provider)
        return self._to_model(row) if row else None

    def delete(self, user_id: str, provider: IntegrationProvider) -> None:
        with _storage_errors("delete integration"), self._connect() as conn:
            conn.execute(
                "DELETE FROM user_integrations WHERE user_id = ? AND provider = ?",
                (user_id, provider.value),
            )

    def reencrypt_all(self) -> int:
        """Re-encrypt every stored token under the cipher's current key; returns the row count."""
        with _storage_errors("re-encrypt credentials"), self._connect() as conn:
            rows = conn.execute(
                "SELECT user_id, provider, access_token, refresh_token FROM user_integrations"
            ).fetchall()
            for row in rows:
                try:
                    access_token = self._cipher.rotate(row["access_token"])
                    refresh_token = (
                        self._cipher.rotate(row["refresh_token"]) if row["refresh_token"] else None
                    )
                except ValueError as exc:
                    raise StorageError(
                        detail=f"Cannot re-encrypt credentials for user {row['user_id']}: {exc}"
                    ) from exc
                conn.execute(
                    """
                    UPDATE user_integrations
                    SET access_token = ?, refresh_token = ?
                    WHERE user_id = ? AND provider = ?
                    """,
                    (access_token, refresh_token, row["user_id"], row["provider"]),
                )
        return len(rows)

    @staticmethod
    def _fetch(
        conn: sqlite3.Connection, user_id: str, provider: IntegrationProvider
    ) -> Optional[sqlite3.Row]:
        return conn.execute(
            "SELECT * FROM user_integrations WHERE user_id = ? AND provider = ?",
            (user_id, provider.value),
        ).fetchone()

    def _to_model(self, row: sqlite3.Row) -> OAuthIntegration:
        try:
            return OAuthIntegration(
                user_id=row["user_id"],
                provider=IntegrationProvider(row["provider"]),
                access_token=self._cipher.decrypt(row["access_token"]),
                refresh_token=self._cipher.decrypt_optional(row["refresh_token"]),
                expires_at=datetime.fromisoformat(row["expires_at"]),
                created_at=datetime.fromisoformat(row["created_at"]),
                updated_at=datetime.fromisoformat(row["updated_at"]),
            )
        except ValueError as exc:
            raise StorageError(detail=f"Unreadable integration row: {exc}") from exc


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    """Translate sqlite failures into ``StorageError``."""
    try:
        yield
    except sqlite3.Error as exc:
        raise StorageError(detail=f"Failed to {operation}: {exc}") from exc


__all__ = ["CredentialStore", "SQLiteCredentialStore"]
