"""Tests for the full-replace sync reconciler and its auth-state trigger."""

from __future__ import annotations

import pytest

from stubly.errors import SyncFailedError
from stubly.models.auth_models import RemoteSession, RemoteUser
from stubly.models.mirror_models import MIRROR_MODELS, SYNC_ORDER
from stubly.services.sync_service import SyncTrigger
from tests.fakes import sample_remote_tables


def _load(remote_data, *datasets):
    for data in datasets:
        for table, rows in data.items():
            remote_data.tables.setdefault(table, []).extend(rows)


def _assert_mirror_equals(mirror, user_id, data):
    for table, rows in data.items():
        model = MIRROR_MODELS[table]
        expected = sorted(
            (model.model_validate(r) for r in rows),
            key=lambda rec: tuple(str(getattr(rec, k)) for k in model.PRIMARY_KEY),
        )
        actual = sorted(
            mirror.fetch_user_rows(table, user_id),
            key=lambda rec: tuple(str(getattr(rec, k)) for k in model.PRIMARY_KEY),
        )
        assert actual == expected, table


class TestSyncReconciler:
    """Full-replace reconciliation."""

    def test_sync_converges_to_remote(self, reconciler, remote_data, mirror):
        data = sample_remote_tables("u1")
        _load(remote_data, data)

        report = reconciler.sync_from_supabase("u1")

        _assert_mirror_equals(mirror, "u1", data)
        assert report.tables["mounts"] == 2
        assert report.total_rows == 8
        assert reconciler.get_last_sync() == report.completed_at

    def test_stale_local_rows_are_removed(self, reconciler, remote_data, mirror):
        _load(remote_data, sample_remote_tables("u1"))
        reconciler.sync_from_supabase("u1")

        remote_data.tables["posts"] = []
        remote_data.tables["mounts"] = remote_data.tables["mounts"][:1]
        reconciler.sync_from_supabase("u1")

        assert mirror.count_user_rows("posts", "u1") == 0
        assert mirror.count_user_rows("mounts", "u1") == 1

    def test_other_users_rows_untouched(self, reconciler, remote_data, mirror):
        u1, u2 = sample_remote_tables("u1"), sample_remote_tables("u2", offset=10_000)
        _load(remote_data, u1, u2)
        reconciler.sync_from_supabase("u2")

        remote_data.tables = {}
        _load(remote_data, u1)
        reconciler.sync_from_supabase("u1")

        _assert_mirror_equals(mirror, "u1", u1)
        _assert_mirror_equals(mirror, "u2", u2)

    def test_fetch_error_aborts_and_names_table(self, reconciler, remote_data, mirror):
        _load(remote_data, sample_remote_tables("u1"))
        remote_data.fail_on = "tags"

        with pytest.raises(SyncFailedError) as excinfo:
            reconciler.sync_from_supabase("u1")

        assert excinfo.value.table == "tags"
        assert mirror.count_user_rows("mounts", "u1") == 2
        assert mirror.count_user_rows("tags", "u1") == 0
        assert reconciler.get_last_sync() is None
        assert reconciler.get_last_sync("files") is not None

    def test_tables_processed_in_dependency_order(self):
        assert [m.TABLE for m in SYNC_ORDER] == [
            "mounts", "files", "locations", "tags", "file_tags", "source", "posts",
        ]

    def test_should_sync_probes_mounts(self, reconciler, remote_data):
        assert reconciler.should_sync("u1") is False
        _load(remote_data, sample_remote_tables("u1"))
        assert reconciler.should_sync("u1") is True


class TestSyncTrigger:
    """Sync once per user when the state goes online."""

    def _online(self, state, user_id):
        user = RemoteUser(id=user_id, email=f"{user_id}@x.com")
        state.set_online_auth(user, RemoteSession(access_token="a", refresh_token="r", user=user))

    def test_syncs_once_per_user(self, state, reconciler, remote_data, mirror, logger):
        _load(remote_data, sample_remote_tables("u1"))
        trigger = SyncTrigger(state, reconciler, logger)
        trigger.start()

        self._online(state, "u1")
        assert mirror.count_user_rows("mounts", "u1") == 2

        remote_data.tables["mounts"] = []
        self._online(state, "u1")
        assert mirror.count_user_rows("mounts", "u1") == 2
        assert trigger.synced_users == frozenset({"u1"})
        trigger.stop()

    def test_logout_allows_next_sync(self, state, reconciler, remote_data, logger):
        _load(remote_data, sample_remote_tables("u1"))
        trigger = SyncTrigger(state, reconciler, logger)
        trigger.start()

        self._online(state, "u1")
        state.logout()
        assert trigger.synced_users == frozenset()
        trigger.stop()

    def test_offline_state_does_not_sync(self, state, reconciler, remote_data, mirror, logger):
        _load(remote_data, sample_remote_tables("u1"))
        trigger = SyncTrigger(state, reconciler, logger)
        trigger.start()

        state.set_offline_auth("alice")
        assert mirror.count_user_rows("mounts", "u1") == 0
        trigger.stop()

    def test_failure_is_logged_not_raised(self, state, reconciler, remote_data, logger):
        _load(remote_data, sample_remote_tables("u1"))
        remote_data.fail_on = "files"
        trigger = SyncTrigger(state, reconciler, logger)
        trigger.start()

        self._online(state, "u1")
        assert state.is_online
        trigger.stop()
