"""Tests for schema creation, versioning and the database lifecycle."""

from __future__ import annotations

import sqlite3

import pytest

from stubly.database import LocalDatabase
from stubly.errors import LocalStoreUnavailableError
from stubly.schema import (
    AUTH_SCHEMA_VERSION,
    MIRROR_SCHEMA_VERSION,
    initialize_auth_schema,
    initialize_mirror_schema,
)


def _tables(conn: sqlite3.Connection) -> set[str]:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    return {row[0] for row in rows}


def _version(conn: sqlite3.Connection) -> int:
    return conn.execute("SELECT version FROM schema_version WHERE id = 1").fetchone()[0]


class TestMirrorSchema:
    """Mirror database tables."""

    def test_all_tables_created(self, mirror_db):
        assert {
            "mounts", "files", "locations", "tags", "file_tags", "source", "posts",
            "sync_metadata", "schema_version",
        } <= _tables(mirror_db.sqlite)
        assert _version(mirror_db.sqlite) == MIRROR_SCHEMA_VERSION

    def test_initialize_twice_keeps_rows(self, mirror_db):
        mirror_db.sqlite.execute(
            "INSERT INTO sync_metadata (table_name, last_sync_timestamp) VALUES ('full_sync', 'x')"
        )
        mirror_db.sqlite.commit()

        mirror_db.initialize()
        mirror_db.initialize()

        row = mirror_db.sqlite.execute("SELECT COUNT(*) FROM sync_metadata").fetchone()
        assert row[0] == 1

    def test_second_instance_reattaches_to_open_connection(self, mirror_db, registry, logger):
        other = LocalDatabase(mirror_db.path, initialize_mirror_schema, registry, logger)
        other.initialize()
        assert other.sqlite is mirror_db.sqlite

    def test_connection_before_initialize_fails_loudly(self, tmp_path, registry, logger):
        db = LocalDatabase(tmp_path / "x.db", initialize_mirror_schema, registry, logger)
        with pytest.raises(LocalStoreUnavailableError):
            db.get_connection()

    def test_deleting_mount_cascades_to_locations(self, mirror_db):
        conn = mirror_db.sqlite
        conn.execute(
            "INSERT INTO mounts (mount_id, user_id, platform, mount_label, device_path) "
            "VALUES (1, 'u1', 'Android', 'Phone', '/sdcard')"
        )
        conn.execute(
            "INSERT INTO locations (location_id, user_id, file_id, mount_id, file_path) "
            "VALUES (1, 'u1', '10', 1, '/sdcard/a.jpg')"
        )
        conn.execute("DELETE FROM mounts WHERE mount_id = 1")
        assert conn.execute("SELECT COUNT(*) FROM locations").fetchone()[0] == 0


class TestAuthSchema:
    """Credential database tables and migrations."""

    def test_tables_created(self, auth_db):
        tables = _tables(auth_db.sqlite)
        assert {"local_auth", "login_attempts", "auth_events"} <= tables
        assert "local_session" not in tables
        assert _version(auth_db.sqlite) == AUTH_SCHEMA_VERSION

    def test_v1_database_is_migrated(self, logger):
        conn = sqlite3.connect(":memory:")
        conn.execute(
            "CREATE TABLE schema_version (id INTEGER PRIMARY KEY CHECK (id = 1), "
            "version INTEGER NOT NULL, applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP)"
        )
        conn.execute("INSERT INTO schema_version (id, version) VALUES (1, 1)")
        conn.execute("CREATE TABLE local_session (id INTEGER PRIMARY KEY, token TEXT)")
        conn.execute(
            "CREATE TABLE local_auth (supabase_user_id TEXT PRIMARY KEY, "
            "username TEXT UNIQUE NOT NULL, email TEXT, password_hash TEXT NOT NULL, "
            "is_synced INTEGER DEFAULT 1, is_anonymous INTEGER DEFAULT 0, "
            "last_synced_at INTEGER, created_at INTEGER)"
        )
        conn.execute(
            "INSERT INTO local_auth (supabase_user_id, username, password_hash) "
            "VALUES ('uid-1', 'alice', 'hash')"
        )
        conn.commit()

        initialize_auth_schema(conn, logger)

        tables = _tables(conn)
        assert "local_session" not in tables
        assert "auth_events" in tables
        assert _version(conn) == AUTH_SCHEMA_VERSION
        assert conn.execute("SELECT username FROM local_auth").fetchone()[0] == "alice"

    def test_unversioned_legacy_table_is_dropped(self, logger):
        conn = sqlite3.connect(":memory:")
        conn.execute("CREATE TABLE local_session (id INTEGER PRIMARY KEY)")
        conn.commit()

        initialize_auth_schema(conn, logger)

        assert "local_session" not in _tables(conn)
