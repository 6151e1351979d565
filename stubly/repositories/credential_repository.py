"""
Credential Repository.

SQL access to the credential database: the ``local_auth`` account table
and the ``login_attempts`` rate-limit counters.  Hashing and rate-limit
policy live in :class:`~stubly.services.credential_store.CredentialStore`;
this layer only maps rows to models.
"""

from __future__ import annotations

import sqlite3
from typing import Optional

from stubly.errors import DuplicateUsernameError
from stubly.models.auth_models import LocalUser, LoginAttempt
from stubly.repositories.base_repository import BaseRepository


def _row_to_user(row: sqlite3.Row) -> LocalUser:
    data = dict(row)
    return LocalUser(
        external_id=data["supabase_user_id"],
        username=data["username"],
        email=data["email"],
        password_hash=data["password_hash"],
        is_synced=bool(data["is_synced"]),
        is_anonymous=bool(data["is_anonymous"]),
        last_synced_at=data["last_synced_at"],
        created_at=data["created_at"] or 0,
    )


class CredentialRepository(BaseRepository):
    """Data access layer for local accounts and login attempts."""

    TABLE = "local_auth"
    ATTEMPTS_TABLE = "login_attempts"

    # ------------------------------------------------------------------
    # local_auth
    # ------------------------------------------------------------------

    def insert_user(self, user: LocalUser) -> None:
        """Insert *user*.

        Raises
        ------
        DuplicateUsernameError
            If the username (or external id) is already present.
        """
        with self._db.write_lock:
            try:
                self.sqlite.execute(
                    f"""
                    INSERT INTO {self.TABLE}
                        (supabase_user_id, username, email, password_hash,
                         is_synced, is_anonymous, last_synced_at, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        user.external_id,
                        user.username,
                        user.email,
                        user.password_hash,
                        int(user.is_synced),
                        int(user.is_anonymous),
                        user.last_synced_at,
                        user.created_at,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                if not self._db.in_batch:
                    self.sqlite.rollback()
                raise DuplicateUsernameError(
                    f"Username '{user.username}' already exists."
                ) from exc
            self._commit()

    def get_by_username(self, username: str) -> Optional[LocalUser]:
        row = self.sqlite.execute(
            f"SELECT * FROM {self.TABLE} WHERE username = ? LIMIT 1", (username,)
        ).fetchone()
        return _row_to_user(row) if row else None

    def get_by_email(self, email: str) -> Optional[LocalUser]:
        """Case-insensitive email lookup."""
        row = self.sqlite.execute(
            f"SELECT * FROM {self.TABLE} WHERE lower(email) = lower(?) "
            "ORDER BY created_at ASC LIMIT 1",
            (email.strip(),),
        ).fetchone()
        return _row_to_user(row) if row else None

    def get_by_external_id(self, external_id: str) -> Optional[LocalUser]:
        row = self.sqlite.execute(
            f"SELECT * FROM {self.TABLE} WHERE supabase_user_id = ? LIMIT 1",
            (external_id,),
        ).fetchone()
        return _row_to_user(row) if row else None

    def list_unsynced(self) -> list[LocalUser]:
        rows = self.sqlite.execute(
            f"SELECT * FROM {self.TABLE} WHERE is_synced = 0 ORDER BY created_at ASC"
        ).fetchall()
        return [_row_to_user(row) for row in rows]

    def update_external_id(self, username: str, external_id: str, synced_at: int) -> bool:
        """Link *username* to *external_id*.  Returns ``False`` if no row matched."""
        with self._db.write_lock:
            cursor = self.sqlite.execute(
                f"""
                UPDATE {self.TABLE}
                SET supabase_user_id = ?, is_synced = 1, last_synced_at = ?
                WHERE username = ?
                """,
                (external_id, synced_at, username),
            )
            self._commit()
            return cursor.rowcount > 0

    def update_password_hash(self, username: str, password_hash: str) -> bool:
        with self._db.write_lock:
            cursor = self.sqlite.execute(
                f"UPDATE {self.TABLE} SET password_hash = ? WHERE username = ?",
                (password_hash, username),
            )
            self._commit()
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # login_attempts
    # ------------------------------------------------------------------

    def get_attempt(self, username: str) -> Optional[LoginAttempt]:
        row = self.sqlite.execute(
            f"SELECT * FROM {self.ATTEMPTS_TABLE} WHERE username = ? LIMIT 1",
            (username,),
        ).fetchone()
        if row is None:
            return None
        data = dict(row)
        return LoginAttempt(
            username=data["username"],
            failed_count=data["failed_count"] or 0,
            last_attempt_at=data["last_attempt_at"],
            locked_until=data["locked_until"],
        )

    def upsert_attempt(self, attempt: LoginAttempt) -> None:
        with self._db.write_lock:
            self.sqlite.execute(
                f"""
                INSERT INTO {self.ATTEMPTS_TABLE}
                    (username, failed_count, last_attempt_at, locked_until)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(username) DO UPDATE SET
                    failed_count = excluded.failed_count,
                    last_attempt_at = excluded.last_attempt_at,
                    locked_until = excluded.locked_until
                """,
                (
                    attempt.username,
                    attempt.failed_count,
                    attempt.last_attempt_at,
                    attempt.locked_until,
                ),
            )
            self._commit()

    def delete_attempt(self, username: str) -> None:
        with self._db.write_lock:
            self.sqlite.execute(
                f"DELETE FROM {self.ATTEMPTS_TABLE} WHERE username = ?", (username,)
            )
            self._commit()
