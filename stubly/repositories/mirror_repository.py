"""
Mirror Repository.

Read and replace operations on the local mirror database.  Table names
are never interpolated from caller input without passing through
:data:`_ALLOWED_TABLES`.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Sequence, TypeVar, Union

from stubly.models.mirror_models import (
    MIRROR_MODELS,
    FileRecord,
    MirrorRecord,
    Mount,
    Tag,
)
from stubly.repositories.base_repository import BaseRepository

R = TypeVar("R", bound=MirrorRecord)

_ALLOWED_TABLES: frozenset[str] = frozenset(MIRROR_MODELS)

FULL_SYNC_KEY = "full_sync"


def _check_table(table: str) -> type[MirrorRecord]:
    if table not in _ALLOWED_TABLES:
        raise ValueError(
            f"Invalid table name: {table!r}. Allowed tables: {sorted(_ALLOWED_TABLES)}"
        )
    return MIRROR_MODELS[table]


class MirrorRepository(BaseRepository):
    """Data access layer for the mirrored remote tables."""

    # ------------------------------------------------------------------
    # Point lookups
    # ------------------------------------------------------------------

    def get_mount(self, mount_id: int) -> Optional[Mount]:
        row = self.sqlite.execute(
            "SELECT * FROM mounts WHERE mount_id = ?", (mount_id,)
        ).fetchone()
        return Mount.model_validate(dict(row)) if row else None

    def get_file(self, user_id: str, file_id: Union[int, str]) -> Optional[FileRecord]:
        row = self.sqlite.execute(
            "SELECT * FROM files WHERE user_id = ? AND file_id = ?",
            (user_id, str(file_id)),
        ).fetchone()
        return FileRecord.model_validate(dict(row)) if row else None

    def get_tag(self, tag_id: int) -> Optional[Tag]:
        row = self.sqlite.execute(
            "SELECT * FROM tags WHERE tag_id = ?", (tag_id,)
        ).fetchone()
        return Tag.model_validate(dict(row)) if row else None

    # ------------------------------------------------------------------
    # Mounts
    # ------------------------------------------------------------------

    def has_mount_configured(self, user_id: Optional[str] = None) -> bool:
        """True when at least one active mount exists (for *user_id*, if given)."""
        if user_id is None:
            row = self.sqlite.execute(
                "SELECT mount_id FROM mounts WHERE is_active = 1 LIMIT 1"
            ).fetchone()
        else:
            row = self.sqlite.execute(
                "SELECT mount_id FROM mounts WHERE user_id = ? AND is_active = 1 LIMIT 1",
                (user_id,),
            ).fetchone()
        return row is not None

    def get_active_mounts(self, user_id: Optional[str] = None) -> list[Mount]:
        """Active mounts, oldest first."""
        if user_id is None:
            rows = self.sqlite.execute(
                "SELECT * FROM mounts WHERE is_active = 1 ORDER BY create_date ASC, mount_id ASC"
            ).fetchall()
        else:
            rows = self.sqlite.execute(
                "SELECT * FROM mounts WHERE user_id = ? AND is_active = 1 "
                "ORDER BY create_date ASC, mount_id ASC",
                (user_id,),
            ).fetchall()
        return [Mount.model_validate(dict(row)) for row in rows]

    # ------------------------------------------------------------------
    # Whole-table access for one user
    # ------------------------------------------------------------------

    def fetch_user_rows(self, table: str, user_id: str) -> list[MirrorRecord]:
        """All rows of *table* belonging to *user_id*, as models."""
        model = _check_table(table)
        order_by = ", ".join(model.PRIMARY_KEY)
        rows = self.sqlite.execute(
            f"SELECT * FROM {table} WHERE user_id = ? ORDER BY {order_by}",
            (user_id,),
        ).fetchall()
        return [model.model_validate(dict(row)) for row in rows]

    def count_user_rows(self, table: str, user_id: str) -> int:
        _check_table(table)
        row = self.sqlite.execute(
            f"SELECT COUNT(*) FROM {table} WHERE user_id = ?", (user_id,)
        ).fetchone()
        return int(row[0])

    def replace_user_rows(
        self, model: type[R], user_id: str, records: Sequence[R],
    ) -> int:
        """Delete every local row of *user_id* in ``model.TABLE`` and insert *records*.

        Runs as one transaction.  Returns the number of rows inserted.
        """
        table = model.TABLE
        _check_table(table)
        with self._db.batch_write() as conn:
            conn.execute(f"DELETE FROM {table} WHERE user_id = ?", (user_id,))
            for record in records:
                values = record.to_record()
                columns = ", ".join(values)
                placeholders = ", ".join("?" for _ in values)
                conn.execute(
                    f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
                    tuple(values.values()),
                )
        return len(records)

    # ------------------------------------------------------------------
    # sync_metadata
    # ------------------------------------------------------------------

    def set_last_sync(self, table_name: str, when: Optional[datetime] = None) -> str:
        timestamp = (when or datetime.now(timezone.utc)).isoformat()
        with self._db.write_lock:
            self.sqlite.execute(
                """
                INSERT INTO sync_metadata (table_name, last_sync_timestamp)
                VALUES (?, ?)
                ON CONFLICT(table_name) DO UPDATE SET
                    last_sync_timestamp = excluded.last_sync_timestamp
                """,
                (table_name, timestamp),
            )
            self._commit()
        return timestamp

    def get_last_sync(self, table_name: str = FULL_SYNC_KEY) -> Optional[str]:
        row = self.sqlite.execute(
            "SELECT last_sync_timestamp FROM sync_metadata WHERE table_name = ?",
            (table_name,),
        ).fetchone()
        return row[0] if row else None
