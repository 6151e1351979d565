"""Tests for provider error mapping and the Supabase client adapters."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest

from stubly.errors import (
    DuplicateUsernameError,
    InvalidCredentialsError,
    NetworkUnavailableError,
    RemoteServiceError,
)
from stubly.remote import SupabaseDataClient, SupabaseIdentityClient, map_remote_error


class AuthRetryableError(Exception):
    """Same class name as the auth client's retryable error."""


class AuthApiError(Exception):
    def __init__(self, message: str, status: int, code: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.code = code


class TestErrorMapping:
    """Provider exceptions to the error taxonomy."""

    @pytest.mark.parametrize("exc", [
        TimeoutError("timed out"),
        ConnectionError("refused"),
        httpx.ConnectError("dns failure"),
        httpx.ReadTimeout("slow"),
        AuthRetryableError("retry"),
        AuthApiError("bad gateway", status=502),
    ])
    def test_network_failures(self, exc):
        assert isinstance(map_remote_error(exc), NetworkUnavailableError)

    def test_network_failure_in_cause_chain(self):
        try:
            try:
                raise httpx.ConnectError("down")
            except httpx.ConnectError as inner:
                raise RuntimeError("wrapped") from inner
        except RuntimeError as outer:
            assert isinstance(map_remote_error(outer), NetworkUnavailableError)

    def test_invalid_credentials(self):
        exc = AuthApiError("Invalid login credentials", status=400, code="invalid_credentials")
        assert isinstance(map_remote_error(exc), InvalidCredentialsError)

    def test_duplicate_account(self):
        exc = AuthApiError("User already registered", status=422)
        assert isinstance(map_remote_error(exc), DuplicateUsernameError)

    def test_other_errors_keep_cause(self):
        cause = RuntimeError("boom")
        mapped = map_remote_error(cause)
        assert isinstance(mapped, RemoteServiceError)
        assert mapped.cause is cause

    def test_typed_errors_pass_through(self):
        exc = InvalidCredentialsError()
        assert map_remote_error(exc) is exc


def _user(uid: str = "uid-1", username: str = "alice"):
    return SimpleNamespace(id=uid, email="a@x.com", user_metadata={"username": username})


def _session(user):
    return SimpleNamespace(access_token="at", refresh_token="rt", expires_at=123, user=user)


class TestSupabaseIdentityClient:
    """Adapter over ``supabase.auth``."""

    def test_sign_in_converts_sdk_objects(self, logger):
        client = MagicMock()
        user = _user()
        client.auth.sign_in_with_password.return_value = SimpleNamespace(
            user=user, session=_session(user),
        )
        identity = SupabaseIdentityClient(client, logger)

        response = identity.sign_in_with_password("a@x.com", "pw123456")

        client.auth.sign_in_with_password.assert_called_once_with(
            {"email": "a@x.com", "password": "pw123456"}
        )
        assert response.user.username == "alice"
        assert response.session.expires_at == 123

    def test_sign_up_passes_metadata(self, logger):
        client = MagicMock()
        client.auth.sign_up.return_value = SimpleNamespace(user=_user(), session=None)
        identity = SupabaseIdentityClient(client, logger)

        response = identity.sign_up("a@x.com", "pw123456", {"username": "alice"})

        client.auth.sign_up.assert_called_once_with({
            "email": "a@x.com",
            "password": "pw123456",
            "options": {"data": {"username": "alice"}},
        })
        assert response.session is None

    def test_provider_error_is_mapped(self, logger):
        client = MagicMock()
        client.auth.sign_in_with_password.side_effect = httpx.ConnectError("down")
        identity = SupabaseIdentityClient(client, logger)

        with pytest.raises(NetworkUnavailableError):
            identity.sign_in_with_password("a@x.com", "pw123456")

    def test_find_email_by_username(self, logger):
        client = MagicMock()
        query = client.table.return_value.select.return_value.eq.return_value.limit.return_value
        query.execute.return_value = SimpleNamespace(data=[{"email": "a@x.com"}])
        identity = SupabaseIdentityClient(client, logger)

        assert identity.find_email_by_username("alice") == "a@x.com"
        client.table.assert_called_with("profiles")

    def test_oauth_returns_redirect_url(self, logger):
        client = MagicMock()
        client.auth.sign_in_with_oauth.return_value = SimpleNamespace(url="https://idp/x")
        identity = SupabaseIdentityClient(client, logger)
        assert identity.sign_in_with_oauth("google", "app://cb") == "https://idp/x"

    def test_unconfigured_client(self, logger):
        identity = SupabaseIdentityClient(None, logger)
        assert identity.is_configured is False
        with pytest.raises(RemoteServiceError):
            identity.get_session()


class TestSupabaseDataClient:
    """Paged table reads."""

    def test_select_all_pages_until_short_page(self, logger):
        client = MagicMock()
        ranged = client.table.return_value.select.return_value.eq.return_value.range
        ranged.return_value.execute.side_effect = [
            SimpleNamespace(data=[{"user_id": "u1", "n": 1}, {"user_id": "u1", "n": 2}]),
            SimpleNamespace(data=[{"user_id": "u1", "n": 3}]),
        ]
        data = SupabaseDataClient(client, logger, page_size=2)

        rows = data.select_all("mounts", "u1")

        assert [r["n"] for r in rows] == [1, 2, 3]
        assert [c.args for c in ranged.call_args_list] == [(0, 1), (2, 3)]

    def test_count_rows(self, logger):
        client = MagicMock()
        chain = client.table.return_value.select.return_value.eq.return_value.limit.return_value
        chain.execute.return_value = SimpleNamespace(data=[], count=4)
        assert SupabaseDataClient(client, logger).count_rows("mounts", "u1") == 4
