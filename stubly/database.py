"""
Local Database Layer.

Manages the embedded SQLite databases of the client:

- **Credential database** (``stubly_auth.db``): local accounts, login
  attempt counters and the auth audit trail.
- **Mirror database** (``stubly.db``): a schema-mirrored read cache of
  the user's remote tables, refreshed by the sync reconciler.

Both are ``LocalDatabase`` instances that differ only in path and
schema initializer.  Connections are owned by a ``ConnectionRegistry``
(at most one open connection per database file per process); a second
``initialize()`` on the same file reattaches to the open connection
instead of opening another one.

This module only manages *connections*; query logic lives in the
repositories.

Usage (dependency injection at app startup)::

    registry = ConnectionRegistry()
    mirror = LocalDatabase(
        path=Path("stubly.db"),
        schema_initializer=initialize_mirror_schema,
        registry=registry,
        logger=StructuredLogger(name="stubly.mirror_db"),
    )
    mirror.initialize()
"""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Generator, Optional

from stubly.errors import LocalStoreUnavailableError
from stubly.logger import StructuredLogger

SchemaInitializer = Callable[[sqlite3.Connection, StructuredLogger], None]


class ConnectionRegistry:
    """Process-wide owner of open SQLite connections, keyed by file path.

    Constructed once by the application context and shared by every
    ``LocalDatabase``; tests build their own instance for isolation.
    """

    def __init__(self) -> None:
        self._lock: threading.Lock = threading.Lock()
        self._connections: dict[str, sqlite3.Connection] = {}

    @staticmethod
    def _key(path: Path) -> str:
        return str(path.expanduser().resolve())

    def retrieve(self, path: Path) -> Optional[sqlite3.Connection]:
        """Return the open connection for *path*, or ``None``.

        A registered connection that has been closed behind the
        registry's back is dropped and ``None`` is returned.
        """
        key = self._key(path)
        with self._lock:
            conn = self._connections.get(key)
            if conn is None:
                return None
            try:
                conn.execute("SELECT 1")
            except sqlite3.ProgrammingError:
                del self._connections[key]
                return None
            return conn

    def register(self, path: Path, conn: sqlite3.Connection) -> None:
        with self._lock:
            self._connections[self._key(path)] = conn

    def release(self, path: Path) -> Optional[sqlite3.Connection]:
        """Forget and return the connection for *path* (does not close it)."""
        with self._lock:
            return self._connections.pop(self._key(path), None)

    def close_all(self) -> None:
        with self._lock:
            for conn in self._connections.values():
                try:
                    conn.close()
                except sqlite3.ProgrammingError:
                    pass
            self._connections.clear()


class LocalDatabase:
    """One embedded SQLite database with an explicit init/teardown lifecycle.

    Parameters
    ----------
    path:
        Filesystem path of the database file.  Parent directories are
        created on ``initialize()``.
    schema_initializer:
        Idempotent callable that creates or migrates the schema.
    registry:
        Shared ``ConnectionRegistry`` enforcing one connection per file.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    """

    def __init__(
        self,
        path: Path,
        schema_initializer: SchemaInitializer,
        registry: ConnectionRegistry,
        logger: StructuredLogger,
    ) -> None:
        self._path: Path = path
        self._schema_initializer: SchemaInitializer = schema_initializer
        self._registry: ConnectionRegistry = registry
        self._logger: StructuredLogger = logger
        self._write_lock: threading.RLock = threading.RLock()
        self._in_batch: bool = False
        self._conn: Optional[sqlite3.Connection] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Open the database and create or migrate its schema.

        Idempotent: calling it again on an initialised instance, or on a
        second instance pointing at a file that already has an open
        connection, reattaches to that connection and re-runs the
        (no-op) schema check.  Existing rows are never dropped.
        """
        with self._write_lock:
            conn = self._registry.retrieve(self._path)
            if conn is not None:
                self._logger.info("Reattached to open database at %s", self._path)
            else:
                conn = self._connect_sqlite(self._path)
                self._registry.register(self._path, conn)

            self._schema_initializer(conn, self._logger)
            self._conn = conn

    def close(self) -> None:
        """Close the connection.  Safe to call multiple times."""
        with self._write_lock:
            if self._conn is None:
                return
            self._registry.release(self._path)
            try:
                self._conn.close()
                self._logger.info("SQLite connection closed (%s).", self._path)
            except sqlite3.ProgrammingError:
                pass
            self._conn = None

    # ------------------------------------------------------------------
    # Public properties
    # ------------------------------------------------------------------

    @property
    def path(self) -> Path:
        return self._path

    @property
    def is_initialized(self) -> bool:
        return self._conn is not None

    def get_connection(self) -> sqlite3.Connection:
        """Return the open connection.

        Raises
        ------
        LocalStoreUnavailableError
            If ``initialize()`` has not completed successfully.
        """
        if self._conn is None:
            raise LocalStoreUnavailableError(
                f"Database '{self._path.name}' not initialized. "
                "Call initialize() first."
            )
        return self._conn

    @property
    def sqlite(self) -> sqlite3.Connection:
        """Shorthand for :meth:`get_connection`."""
        return self.get_connection()

    @property
    def write_lock(self) -> threading.RLock:
        """Lock that every SQLite write sequence must hold."""
        return self._write_lock

    @property
    def in_batch(self) -> bool:
        """``True`` while a :meth:`batch_write` block is active."""
        return self._in_batch

    @contextmanager
    def batch_write(self) -> Generator[sqlite3.Connection, None, None]:
        """Run a multi-statement write as one transaction.

        Holds the write lock for the whole block.  Commits once on normal
        exit and rolls back on exception, re-raising it.  Re-entrant: a
        nested block joins the outer transaction.
        """
        with self._write_lock:
            conn = self.get_connection()
            if self._in_batch:
                yield conn
                return

            self._in_batch = True
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                self._logger.error(
                    "Batch write rolled back due to exception.", exc_info=True,
                )
                raise
            finally:
                self._in_batch = False

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _connect_sqlite(self, path: Path) -> sqlite3.Connection:
        """Open (or create) a SQLite database file.

        Raises
        ------
        LocalStoreUnavailableError
            If the OS denies access to the database file or its directory.
        """
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA foreign_keys = ON;")
            self._logger.info("SQLite database opened at %s", path)
            return conn
        except (PermissionError, sqlite3.OperationalError) as exc:
            msg = (
                f"Cannot open the local database at '{path}'. "
                "The file or its directory may be read-only or locked."
            )
            self._logger.error(msg)
            raise LocalStoreUnavailableError(msg) from exc
