"""
Base Repository.

Provides shared infrastructure for all repositories:
- LocalDatabase reference
- Logger reference
- Convenience property for the SQLite connection
- Batch-aware commit
"""

from __future__ import annotations

import sqlite3

from stubly.database import LocalDatabase
from stubly.logger import StructuredLogger


class BaseRepository:
    """Base class for all repositories. Receives dependencies via __init__."""

    TABLE: str = ""

    def __init__(self, db: LocalDatabase, logger: StructuredLogger) -> None:
        self._db = db
        self._logger = logger

    @property
    def db(self) -> LocalDatabase:
        return self._db

    @property
    def sqlite(self) -> sqlite3.Connection:
        """Returns the SQLite connection.

        Raises ``LocalStoreUnavailableError`` before ``initialize()``.
        """
        return self._db.get_connection()

    def _commit(self) -> None:
        """Commit the SQLite transaction unless a batch is active.

        When :meth:`LocalDatabase.batch_write` is active this is a no-op;
        the batch context manager issues a single commit (or rollback)
        when the ``with`` block exits.

        All repository code should call ``self._commit()`` instead of
        ``self.sqlite.commit()`` so that batch writes work transparently.
        """
        if not self._db.in_batch:
            self.sqlite.commit()
