"""
Sync Reconciler.

Mirrors one user's rows from the remote store into the local mirror
database using a full replace per table:

1. Fetch every remote row of the table scoped to ``user_id``.
2. Delete the user's local rows and insert the fetched ones (one
   transaction per table).
3. Record the per-table sync timestamp.

Tables are processed in :data:`~stubly.models.SYNC_ORDER` so that
foreign-key targets exist before their dependents.  A failure on any
table aborts the run with :class:`~stubly.errors.SyncFailedError`;
tables already replaced keep their new contents.

:class:`SyncTrigger` runs the reconciler once per user whenever the
published auth state becomes ``online``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

from stubly.auth_state import AuthStateStore
from stubly.errors import StublyError, SyncFailedError
from stubly.logger import StructuredLogger
from stubly.models.auth_models import AuthState
from stubly.models.enums import AuthMode
from stubly.models.mirror_models import SYNC_ORDER, MirrorRecord, Mount
from stubly.remote import RemoteDataClient
from stubly.repositories.mirror_repository import FULL_SYNC_KEY, MirrorRepository


@dataclass
class SyncReport:
    """Outcome of one full sync."""

    user_id: str
    tables: dict[str, int] = field(default_factory=dict)
    completed_at: Optional[str] = None

    @property
    def total_rows(self) -> int:
        return sum(self.tables.values())


class SyncReconciler:
    """Full-replace reconciliation of the local mirror against the remote store.

    Parameters
    ----------
    remote:
        Remote data client (row reads scoped to a user).
    mirror:
        Repository over the local mirror database.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    """

    def __init__(
        self,
        remote: RemoteDataClient,
        mirror: MirrorRepository,
        logger: StructuredLogger,
    ) -> None:
        self._remote: RemoteDataClient = remote
        self._mirror: MirrorRepository = mirror
        self._logger: StructuredLogger = logger

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def should_sync(self, user_id: str) -> bool:
        """True when the user has at least one remote mount."""
        try:
            return self._remote.count_rows(Mount.TABLE, user_id) > 0
        except Exception as exc:
            self._logger.warning("Sync probe failed for %s: %s", user_id, exc)
            return False

    def sync_from_supabase(self, user_id: str) -> SyncReport:
        """Replace the local mirror of *user_id* with the remote rows.

        Raises
        ------
        SyncFailedError
            When fetching, validating or writing any table fails.
        """
        report = SyncReport(user_id=user_id)
        self._logger.info("Starting full sync for %s.", user_id, extra={"event": "SYNC_START"})

        for model in SYNC_ORDER:
            table = model.TABLE
            try:
                records = self._fetch(model, user_id)
                report.tables[table] = self._mirror.replace_user_rows(model, user_id, records)
                self._mirror.set_last_sync(table)
            except Exception as exc:
                self._logger.error(
                    "Sync aborted at table %s: %s", table, exc,
                    extra={"event": "SYNC_FAILED", "table": table},
                )
                raise SyncFailedError(table, exc) from exc
            self._logger.debug("Synced %d rows into %s.", report.tables[table], table)

        report.completed_at = self._mirror.set_last_sync(FULL_SYNC_KEY)
        self._logger.info(
            "Full sync complete for %s (%d rows).", user_id, report.total_rows,
            extra={"event": "SYNC_COMPLETE"},
        )
        return report

    def get_last_sync(self, table: str = FULL_SYNC_KEY) -> Optional[str]:
        return self._mirror.get_last_sync(table)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _fetch(self, model: type[MirrorRecord], user_id: str) -> list[MirrorRecord]:
        records: list[MirrorRecord] = []
        for row in self._remote.select_all(model.TABLE, user_id):
            record = model.model_validate(row)
            if getattr(record, "user_id", user_id) != user_id:
                self._logger.warning(
                    "Skipping %s row owned by another user.", model.TABLE,
                )
                continue
            records.append(record)
        return records


class SyncTrigger:
    """Runs a sync once per user id when the auth state goes online."""

    def __init__(
        self,
        state: AuthStateStore,
        reconciler: SyncReconciler,
        logger: StructuredLogger,
    ) -> None:
        self._state = state
        self._reconciler = reconciler
        self._logger = logger
        self._synced: set[str] = set()
        self._unsubscribe: Optional[Callable[[], None]] = None

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self._state.subscribe(self._on_state)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    @property
    def synced_users(self) -> frozenset[str]:
        return frozenset(self._synced)

    def _on_state(self, state: AuthState) -> None:
        if not state.is_authenticated:
            self._synced.clear()
            return
        if state.mode != AuthMode.ONLINE or state.user is None:
            return

        user_id = state.user.id
        if user_id in self._synced:
            return
        self._synced.add(user_id)

        if not self._reconciler.should_sync(user_id):
            self._logger.info("No remote data for %s; sync skipped.", user_id)
            return
        try:
            self._reconciler.sync_from_supabase(user_id)
        except StublyError as exc:
            self._logger.error("Background sync failed: %s", exc)
