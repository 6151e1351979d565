"""
Centralized SQLite Schema Initialization.

Defines the canonical schemas of the two local databases and provides
one entry-point per database that creates or upgrades it idempotently:

- :func:`initialize_auth_schema` for the credential database
  (``local_auth``, ``login_attempts``, ``auth_events``).
- :func:`initialize_mirror_schema` for the mirror database (the seven
  mirrored tables plus ``sync_metadata``).

A single-row ``schema_version`` table in each file tracks applied
migrations so that later schema changes roll forward without data loss.

Migration Strategy
~~~~~~~~~~~~~~~~~~
- **Fresh databases** (version 0): all tables are created in one shot
  from the schema's table definitions.
- **Existing databases** (version N > 0): only the incremental
  migrations registered for versions ``(N, current]`` are executed.
- The entire upgrade (migrations + version bump) runs in one SQLite
  transaction.  On failure the database rolls back to version N and the
  next startup retries.

Usage::

    import sqlite3
    from stubly.logger import StructuredLogger
    from stubly.schema import initialize_auth_schema

    conn = sqlite3.connect("stubly_auth.db")
    initialize_auth_schema(conn, StructuredLogger(name="schema"))
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable
from dataclasses import dataclass, field

from stubly.logger import StructuredLogger

__all__ = [
    "AUTH_SCHEMA_VERSION",
    "MIRROR_SCHEMA_VERSION",
    "initialize_auth_schema",
    "initialize_mirror_schema",
]

MigrationFunc = Callable[[sqlite3.Connection, StructuredLogger], None]

# ---------------------------------------------------------------------------
# Schema versions -- bump whenever a migration is added.
# ---------------------------------------------------------------------------
AUTH_SCHEMA_VERSION: int = 2
MIRROR_SCHEMA_VERSION: int = 1

# ---------------------------------------------------------------------------
# Credential database DDL
# ---------------------------------------------------------------------------
_AUTH_TABLE_DEFINITIONS: list[str] = [
    # -- local accounts -------------------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS local_auth (
        supabase_user_id TEXT PRIMARY KEY,
        username TEXT UNIQUE NOT NULL,
        email TEXT,
        password_hash TEXT NOT NULL,
        is_synced INTEGER DEFAULT 1,
        is_anonymous INTEGER DEFAULT 0,
        last_synced_at INTEGER,
        created_at INTEGER DEFAULT (strftime('%s', 'now'))
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_username ON local_auth(username)",
    "CREATE INDEX IF NOT EXISTS idx_local_auth_email ON local_auth(email)",
    # -- offline rate limiting ------------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS login_attempts (
        username TEXT PRIMARY KEY,
        failed_count INTEGER DEFAULT 0,
        last_attempt_at INTEGER,
        locked_until INTEGER
    )
    """,
    # -- persistent auth audit trail ------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS auth_events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp TEXT NOT NULL,
        event TEXT NOT NULL,
        username TEXT,
        mode TEXT,
        success INTEGER NOT NULL,
        details TEXT DEFAULT '{}'
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_auth_events_username ON auth_events(username)",
]

# ---------------------------------------------------------------------------
# Mirror database DDL (column-compatible with the remote tables)
# ---------------------------------------------------------------------------
_MIRROR_TABLE_DEFINITIONS: list[str] = [
    """
    CREATE TABLE IF NOT EXISTS mounts (
        mount_id INTEGER PRIMARY KEY,
        user_id TEXT NOT NULL,
        platform TEXT NOT NULL CHECK (platform IN ('Android', 'Windows', 'Wasabi')),
        mount_label TEXT NOT NULL,
        device_id TEXT,
        device_path TEXT NOT NULL,
        storage_type TEXT NOT NULL
            CHECK (storage_type IN ('cloud', 'cloud_local', 'local')) DEFAULT 'cloud',
        encryption_enabled INTEGER DEFAULT 0,
        encryption_type TEXT CHECK (encryption_type IN ('aes256', 'chacha20')),
        encryption_key_hash TEXT,
        create_date TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        is_active INTEGER DEFAULT 1
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_mounts_user_id ON mounts(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_mounts_active ON mounts(user_id, is_active)",
    """
    CREATE TABLE IF NOT EXISTS files (
        user_id TEXT NOT NULL,
        file_id TEXT NOT NULL,
        hash TEXT,
        phash TEXT,
        phash_algorithm TEXT CHECK (phash_algorithm IN ('dhash', 'phash', 'whash')),
        type TEXT NOT NULL CHECK (type IN ('image', 'video', 'audio', 'url')),
        mime_type TEXT,
        local_size INTEGER,
        format TEXT,
        width INTEGER,
        height INTEGER,
        duration REAL,
        video_codec TEXT,
        video_bitrate INTEGER,
        video_framerate REAL,
        video_color_space TEXT,
        video_bit_depth INTEGER,
        audio_codec TEXT,
        audio_bitrate INTEGER,
        audio_sample_rate INTEGER,
        audio_channels INTEGER,
        user_description TEXT,
        create_date TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        modified_date TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        user_edited_date TEXT,
        PRIMARY KEY (user_id, file_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_files_user_id ON files(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_files_type ON files(user_id, type)",
    "CREATE INDEX IF NOT EXISTS idx_files_hash ON files(hash)",
    """
    CREATE TABLE IF NOT EXISTS locations (
        location_id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        file_id TEXT NOT NULL,
        mount_id INTEGER NOT NULL,
        file_path TEXT NOT NULL,
        has_thumb INTEGER DEFAULT 0,
        thumb_width INTEGER,
        thumb_height INTEGER,
        has_preview INTEGER DEFAULT 0,
        has_sprite INTEGER DEFAULT 0,
        sync_date TEXT,
        local_modified TEXT,
        UNIQUE (user_id, file_id, mount_id),
        FOREIGN KEY (mount_id) REFERENCES mounts(mount_id) ON DELETE CASCADE
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_locations_file_id ON locations(file_id)",
    "CREATE INDEX IF NOT EXISTS idx_locations_mount_id ON locations(mount_id)",
    """
    CREATE TABLE IF NOT EXISTS tags (
        tag_id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        namespace TEXT,
        tag_name TEXT NOT NULL,
        remote_tag_id INTEGER,
        usage_count INTEGER DEFAULT 0,
        create_date TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        modified_date TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (user_id, namespace, tag_name)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_tags_user_id ON tags(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_tags_name ON tags(user_id, namespace, tag_name)",
    """
    CREATE TABLE IF NOT EXISTS file_tags (
        user_id TEXT NOT NULL,
        file_id TEXT NOT NULL,
        tag_id INTEGER NOT NULL,
        create_date TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        modified_date TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (user_id, file_id, tag_id),
        FOREIGN KEY (tag_id) REFERENCES tags(tag_id) ON DELETE CASCADE
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_file_tags_file ON file_tags(file_id)",
    "CREATE INDEX IF NOT EXISTS idx_file_tags_tag ON file_tags(tag_id)",
    """
    CREATE TABLE IF NOT EXISTS source (
        user_id TEXT NOT NULL,
        file_id TEXT NOT NULL,
        url TEXT NOT NULL,
        content_type TEXT,
        remote_size INTEGER,
        is_file INTEGER DEFAULT 1,
        url_source TEXT,
        iframe INTEGER DEFAULT 0,
        embed TEXT,
        modified_date TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (user_id, file_id, url)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_source_url ON source(url)",
    """
    CREATE TABLE IF NOT EXISTS posts (
        post_id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        file_id TEXT NOT NULL,
        url TEXT NOT NULL,
        domain TEXT,
        post_date TEXT,
        post_text TEXT,
        post_user TEXT,
        title TEXT,
        create_date TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        modified_date TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (user_id, file_id, url)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_posts_file_id ON posts(file_id)",
    "CREATE INDEX IF NOT EXISTS idx_posts_domain ON posts(user_id, domain)",
    # -- last successful sync per table (and 'full_sync') ---------------------
    """
    CREATE TABLE IF NOT EXISTS sync_metadata (
        table_name TEXT PRIMARY KEY,
        last_sync_timestamp TEXT NOT NULL
    )
    """,
]


# ---------------------------------------------------------------------------
# Migrations
# ---------------------------------------------------------------------------

def _migrate_auth_v1_to_v2(conn: sqlite3.Connection, logger: StructuredLogger) -> None:
    """Drop the legacy single-row ``local_session`` table and add ``auth_events``.

    Sessions now live in the secure session store.  Does **not** commit.
    """
    conn.execute("DROP TABLE IF EXISTS local_session")
    for ddl in _AUTH_TABLE_DEFINITIONS:
        if "auth_events" in ddl:
            conn.execute(ddl)
    logger.info("Migration v1→v2: dropped local_session, created auth_events.")


@dataclass(frozen=True)
class _SchemaDefinition:
    name: str
    version: int
    tables: list[str]
    migrations: dict[int, MigrationFunc] = field(default_factory=dict)


_AUTH_SCHEMA = _SchemaDefinition(
    name="auth",
    version=AUTH_SCHEMA_VERSION,
    tables=_AUTH_TABLE_DEFINITIONS,
    migrations={2: _migrate_auth_v1_to_v2},
)

_MIRROR_SCHEMA = _SchemaDefinition(
    name="mirror",
    version=MIRROR_SCHEMA_VERSION,
    tables=_MIRROR_TABLE_DEFINITIONS,
)


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------

def _ensure_version_table(conn: sqlite3.Connection) -> None:
    """Create the ``schema_version`` table if it does not yet exist."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_version (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            version INTEGER NOT NULL,
            applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    conn.commit()


def _get_schema_version(conn: sqlite3.Connection) -> int:
    """Return the current schema version, or ``0`` if unset."""
    row = conn.execute("SELECT version FROM schema_version WHERE id = 1").fetchone()
    return row[0] if row is not None else 0


def _set_schema_version(conn: sqlite3.Connection, version: int) -> None:
    """Upsert the single-row version tracker.  Does **not** commit."""
    conn.execute(
        """
        INSERT INTO schema_version (id, version) VALUES (1, ?)
        ON CONFLICT(id) DO UPDATE SET version = excluded.version,
                                      applied_at = CURRENT_TIMESTAMP
        """,
        (version,),
    )


def _run_incremental_migrations(
    conn: sqlite3.Connection,
    logger: StructuredLogger,
    schema: _SchemaDefinition,
    from_version: int,
) -> None:
    """Run the registered migrations in ``(from_version, schema.version]``.

    Does **not** commit.
    """
    versions_to_apply: list[int] = sorted(
        v for v in schema.migrations if from_version < v <= schema.version
    )
    if not versions_to_apply:
        logger.info("No incremental migrations to apply (%s).", schema.name)
        return

    for version in versions_to_apply:
        logger.info("Running %s migration to version %d", schema.name, version)
        schema.migrations[version](conn, logger)


def _initialize(
    conn: sqlite3.Connection,
    logger: StructuredLogger,
    schema: _SchemaDefinition,
) -> None:
    _ensure_version_table(conn)
    current: int = _get_schema_version(conn)

    if current >= schema.version:
        logger.debug("%s schema is up to date (version %d).", schema.name, current)
        return

    logger.info(
        "Upgrading %s schema from version %d to %d",
        schema.name, current, schema.version,
    )
    try:
        if current == 0:
            for ddl in schema.tables:
                conn.execute(ddl)
        # Migrations are idempotent; on a fresh or unversioned file they
        # clean up tables left behind by pre-versioning releases.
        _run_incremental_migrations(conn, logger, schema, current)

        _set_schema_version(conn, schema.version)
        conn.commit()
    except Exception:
        conn.rollback()
        logger.error(
            "%s schema migration failed, rolled back to version %d.",
            schema.name, current,
        )
        raise

    logger.info("%s schema initialised at version %d.", schema.name, schema.version)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def initialize_auth_schema(conn: sqlite3.Connection, logger: StructuredLogger) -> None:
    """Create or upgrade the credential database schema.

    Safe to call on every startup: an up-to-date database is left
    untouched and existing rows are never dropped.
    """
    _initialize(conn, logger, _AUTH_SCHEMA)


def initialize_mirror_schema(conn: sqlite3.Connection, logger: StructuredLogger) -> None:
    """Create or upgrade the mirror database schema.  Idempotent."""
    _initialize(conn, logger, _MIRROR_SCHEMA)
