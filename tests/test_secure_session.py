"""Tests for the secure session store and its storage backends."""

from __future__ import annotations

from stubly.models.auth_models import SecureSession
from stubly.secure_storage import EncryptedFileStorage
from stubly.services.secure_session_store import (
    SESSION_EXPIRY_KEY,
    SESSION_KEY,
    SecureSessionStore,
)


def _session(expires_at: int, token: str = "access") -> SecureSession:
    return SecureSession(
        user_id="uid-1", access_token=token, refresh_token="refresh", expires_at=expires_at,
    )


class TestSecureSessionStore:
    """Load / save / expire contract."""

    def test_round_trip(self, sessions, clock):
        session = _session(int(clock()) + 60)
        sessions.save(session)
        assert sessions.get() == session
        assert sessions.has_valid_session() is True

    def test_expired_session_is_purged(self, sessions, storage, clock):
        sessions.save(_session(int(clock()) - 1))

        assert sessions.get() is None
        assert storage.get(SESSION_KEY) is None
        assert storage.get(SESSION_EXPIRY_KEY) is None

    def test_has_valid_session_uses_expiry_key_only(self, sessions, storage, clock):
        storage.set(SESSION_EXPIRY_KEY, str(int(clock()) + 60))
        assert sessions.has_valid_session() is True
        storage.set(SESSION_EXPIRY_KEY, str(int(clock()) - 60))
        assert sessions.has_valid_session() is False

    def test_session_expiring_now_is_still_valid_for_both_checks(self, sessions, clock):
        sessions.save(_session(int(clock())))
        assert sessions.has_valid_session() is True
        assert sessions.get() is not None

    def test_malformed_session_is_cleared(self, sessions, storage):
        storage.set(SESSION_KEY, "{not json")
        assert sessions.get() is None
        assert storage.get(SESSION_KEY) is None

    def test_clear_without_session_is_harmless(self, sessions):
        sessions.clear()
        assert sessions.get() is None
        assert sessions.has_valid_session() is False

    def test_offline_session_has_empty_tokens(self, sessions, clock):
        sessions.save(SecureSession(user_id="alice", expires_at=int(clock()) + 60))
        assert sessions.get().is_offline is True


class TestEncryptedFileStorage:
    """AES-GCM file backend."""

    def _storage(self, tmp_path, logger) -> EncryptedFileStorage:
        return EncryptedFileStorage(
            tmp_path / "secure.bin", logger, salt_path=tmp_path / "salt", iterations=1_000,
        )

    def test_values_persist_across_instances(self, tmp_path, logger):
        self._storage(tmp_path, logger).set("k", "v")
        assert self._storage(tmp_path, logger).get("k") == "v"

    def test_file_is_not_plaintext(self, tmp_path, logger):
        self._storage(tmp_path, logger).set("token", "super-secret-value")
        assert b"super-secret-value" not in (tmp_path / "secure.bin").read_bytes()

    def test_remove(self, tmp_path, logger):
        storage = self._storage(tmp_path, logger)
        storage.set("a", "1")
        storage.set("b", "2")
        storage.remove("a")
        assert storage.get("a") is None
        assert storage.get("b") == "2"

    def test_tampered_file_reads_as_empty(self, tmp_path, logger):
        self._storage(tmp_path, logger).set("k", "v")
        path = tmp_path / "secure.bin"
        blob = bytearray(path.read_bytes())
        blob[-1] ^= 0xFF
        path.write_bytes(bytes(blob))
        assert self._storage(tmp_path, logger).get("k") is None

    def test_backs_a_session_store(self, tmp_path, logger, clock):
        store = SecureSessionStore(self._storage(tmp_path, logger), logger, clock=clock)
        store.save(_session(int(clock()) + 60))
        reopened = SecureSessionStore(self._storage(tmp_path, logger), logger, clock=clock)
        assert reopened.get().access_token == "access"
