"""Tests for the local credential store: accounts, hashing and rate limiting."""

from __future__ import annotations

import threading

import pytest

from stubly.errors import DuplicateUsernameError, LocalStoreUnavailableError
from stubly.services.credential_store import CredentialStore
from tests.conftest import TEST_BCRYPT_ROUNDS


class TestAccounts:
    """Account creation and lookup."""

    def test_duplicate_username_rejected(self, credentials):
        credentials.create_user("alice", "a@x.com", "pw123456")
        with pytest.raises(DuplicateUsernameError):
            credentials.create_user("alice", "other@x.com", "different1")

    def test_placeholder_external_id_for_local_accounts(self, credentials, clock):
        user = credentials.create_user("alice", None, "pw123456")
        assert user.external_id == f"local_alice_{int(clock())}"
        assert user.is_synced is False
        assert user.password_hash

    def test_external_id_marks_account_synced(self, credentials):
        user = credentials.create_user("bob", "b@x.com", "pw123456", external_id="uid-9")
        assert user.is_synced is True
        assert credentials.get_user_by_external_id("uid-9").username == "bob"

    def test_lookup_by_email_is_case_insensitive(self, credentials):
        credentials.create_user("alice", "Alice@X.com", "pw123456")
        assert credentials.get_user_by_email("alice@x.com").username == "alice"
        assert credentials.get_user_by_email("nobody@x.com") is None

    def test_update_external_id_links_account(self, credentials, clock):
        credentials.create_user("alice", None, "pw123456")
        assert credentials.update_external_id("alice", "uid-1") is True

        user = credentials.get_user_by_username("alice")
        assert user.external_id == "uid-1"
        assert user.is_synced is True
        assert user.last_synced_at == int(clock())
        assert credentials.update_external_id("ghost", "uid-2") is False

    def test_update_password_rehashes(self, credentials):
        credentials.create_user("alice", None, "oldpass12")
        assert credentials.update_password("alice", "newpass12") is True

        stored = credentials.get_user_by_username("alice").password_hash
        assert credentials.verify_password("newpass12", stored)
        assert not credentials.verify_password("oldpass12", stored)
        assert credentials.update_password("ghost", "newpass12") is False

    def test_list_unsynced_users(self, credentials):
        credentials.create_user("local1", None, "pw123456")
        credentials.create_user("linked", None, "pw123456", external_id="uid-1")
        assert [u.username for u in credentials.list_unsynced_users()] == ["local1"]

    def test_operations_fail_loudly_before_initialize(self, uninitialized_auth_db, logger):
        store = CredentialStore(uninitialized_auth_db, logger, rounds=TEST_BCRYPT_ROUNDS)
        assert store.is_available is False
        with pytest.raises(LocalStoreUnavailableError):
            store.get_user_by_username("alice")
        with pytest.raises(LocalStoreUnavailableError):
            store.check_rate_limit("alice")


class TestPasswords:
    """bcrypt hashing."""

    def test_verify_matches_own_hash(self, credentials):
        hashed = credentials.hash_password("pw123456")
        assert credentials.verify_password("pw123456", hashed)

    def test_verify_rejects_other_password(self, credentials):
        hashed = credentials.hash_password("pw123456")
        assert not credentials.verify_password("pw1234567", hashed)

    def test_malformed_hash_never_matches(self, credentials):
        assert not credentials.verify_password("pw123456", "not-a-bcrypt-hash")


class TestRateLimit:
    """Failed-login counters and lockouts."""

    def test_no_record_means_full_allowance(self, credentials):
        status = credentials.check_rate_limit("alice")
        assert status.allowed is True
        assert status.remaining_attempts == 5
        assert status.locked_until is None

    def test_allowance_decreases_per_failure(self, credentials):
        credentials.record_failed_login("alice")
        credentials.record_failed_login("alice")
        assert credentials.check_rate_limit("alice").remaining_attempts == 3

    def test_locked_after_five_failures(self, credentials, clock):
        for _ in range(5):
            attempt = credentials.record_failed_login("alice")

        assert attempt.failed_count == 5
        assert attempt.locked_until == int(clock()) + 15 * 60

        status = credentials.check_rate_limit("alice")
        assert status.allowed is False
        assert status.locked_until == int(clock()) + 15 * 60

    def test_lock_expiry_resets_allowance(self, credentials, clock):
        for _ in range(5):
            credentials.record_failed_login("alice")
        clock.advance(15 * 60 + 1)

        status = credentials.check_rate_limit("alice")
        assert status.allowed is True
        assert status.remaining_attempts == 5
        assert credentials.record_failed_login("alice").failed_count == 1

    def test_reset_clears_counter(self, credentials):
        credentials.record_failed_login("alice")
        credentials.reset_login_attempts("alice")
        assert credentials.check_rate_limit("alice").remaining_attempts == 5

    def test_counters_are_per_username(self, credentials):
        for _ in range(5):
            credentials.record_failed_login("alice")
        assert credentials.check_rate_limit("bob").allowed is True

    def test_concurrent_failures_are_all_counted(self, credentials):
        threads = [
            threading.Thread(target=credentials.record_failed_login, args=("alice",))
            for _ in range(4)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert credentials.check_rate_limit("alice").remaining_attempts == 1
