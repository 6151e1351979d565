"""Tests for the published auth state."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from stubly.auth_state import INITIAL_STATE
from stubly.models.auth_models import RemoteSession, RemoteUser
from stubly.models.enums import AuthMode


def _session(user_id: str = "uid-1") -> RemoteSession:
    user = RemoteUser(id=user_id, email="a@x.com")
    return RemoteSession(access_token="a", refresh_token="r", expires_at=10, user=user)


class TestAuthStateStore:
    def test_initial_state(self, state):
        snap = state.snapshot()
        assert snap.mode == AuthMode.PENDING
        assert snap.is_loading is True
        assert snap.is_authenticated is False

    def test_subscriber_gets_current_then_updates(self, state):
        seen = []
        state.subscribe(lambda s: seen.append(s.mode))
        state.set_offline_auth("alice")
        assert seen == [AuthMode.PENDING, AuthMode.OFFLINE]

    def test_unsubscribe(self, state):
        seen = []
        unsubscribe = state.subscribe(lambda s: seen.append(s.mode))
        unsubscribe()
        state.set_offline_auth("alice")
        assert seen == [AuthMode.PENDING]

    def test_online_then_logout(self, state):
        session = _session()
        state.set_online_auth(session.user, session)
        assert state.is_online and state.current_username == "a@x.com"

        state.logout()
        assert state.snapshot() == INITIAL_STATE

    def test_offline_username(self, state):
        state.set_offline_auth("alice", is_anonymous=True)
        snap = state.snapshot()
        assert state.is_offline and state.current_username == "alice"
        assert snap.is_anonymous is True
        assert snap.user is None

    def test_reset_is_not_loading(self, state):
        state.reset()
        assert state.snapshot().is_loading is False
        assert state.is_authenticated is False

    def test_update_session(self, state):
        state.set_online_auth(_session().user, _session())
        fresh = _session()
        state.update_session(fresh)
        assert state.snapshot().session == fresh

    def test_failing_subscriber_does_not_block_others(self, state):
        seen = []

        def broken(_):
            raise RuntimeError("ui crashed")

        state.subscribe(broken)
        state.subscribe(lambda s: seen.append(s.mode))
        state.set_offline_auth("alice")
        assert seen[-1] == AuthMode.OFFLINE

    def test_snapshots_are_immutable(self, state):
        with pytest.raises(ValidationError):
            state.snapshot().mode = AuthMode.ONLINE
