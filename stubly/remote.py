"""
Remote Identity & Data Clients.

Thin contracts over the hosted backend, plus their Supabase
implementations:

- :class:`RemoteIdentityClient`: sign up / sign in / OAuth / session
  handling and the username-to-email profile lookup.
- :class:`RemoteDataClient`: per-table reads scoped to one user, used by
  the sync reconciler.

Provider SDK objects never leave this module; callers receive
:class:`~stubly.models.RemoteUser` / :class:`~stubly.models.RemoteSession`.

Error mapping
-------------
- Timeouts and transport failures (``TimeoutError``, ``ConnectionError``,
  ``httpx.TransportError``, and provider "retryable" errors) become
  :class:`~stubly.errors.NetworkUnavailableError`.
- Known provider error codes (see :data:`PROVIDER_ERROR_MAP`) become
  ``InvalidCredentialsError`` or ``DuplicateUsernameError``.
- Everything else the provider raises becomes
  :class:`~stubly.errors.RemoteServiceError` carrying the cause.
"""

from __future__ import annotations

from typing import Any, Callable, Optional, Protocol, TypeVar

import httpx
from supabase import Client as SupabaseClient
from supabase import ClientOptions, create_client

from stubly.errors import (
    DuplicateUsernameError,
    InvalidCredentialsError,
    NetworkUnavailableError,
    RemoteServiceError,
    StublyError,
)
from stubly.logger import StructuredLogger
from stubly.models.auth_models import RemoteAuthResponse, RemoteSession, RemoteUser

__all__ = [
    "RemoteDataClient",
    "RemoteIdentityClient",
    "SupabaseDataClient",
    "SupabaseIdentityClient",
    "create_supabase_client",
    "map_remote_error",
]

T = TypeVar("T")

NETWORK_ERRORS: tuple[type[BaseException], ...] = (
    TimeoutError,
    ConnectionError,
    httpx.TransportError,
)

# Status codes the auth client reports for failures worth retrying
# (0 means the request never got an HTTP response).
_RETRYABLE_STATUSES: frozenset[int] = frozenset({0, 502, 503, 504})

PAGE_SIZE: int = 1000

# Provider error codes / messages (lower-cased substrings) with a precise
# counterpart in the error taxonomy.
PROVIDER_ERROR_MAP: dict[str, type[StublyError]] = {
    "invalid_credentials": InvalidCredentialsError,
    "invalid login credentials": InvalidCredentialsError,
    "invalid_grant": InvalidCredentialsError,
    "user_already_exists": DuplicateUsernameError,
    "user already registered": DuplicateUsernameError,
}


# ---------------------------------------------------------------------------
# Contracts
# ---------------------------------------------------------------------------

class RemoteIdentityClient(Protocol):
    """Hosted identity service consumed by the auth coordinator."""

    @property
    def is_configured(self) -> bool: ...

    def sign_up(
        self, email: str, password: str, metadata: dict[str, Any],
    ) -> RemoteAuthResponse: ...

    def sign_in_with_password(self, email: str, password: str) -> RemoteAuthResponse: ...

    def sign_in_with_oauth(self, provider: str, redirect_to: str) -> str: ...

    def get_session(self) -> Optional[RemoteSession]: ...

    def set_session(self, access_token: str, refresh_token: str) -> Optional[RemoteSession]: ...

    def refresh_session(self, refresh_token: str) -> Optional[RemoteSession]: ...

    def sign_out(self) -> None: ...

    def find_email_by_username(self, username: str) -> Optional[str]: ...


class RemoteDataClient(Protocol):
    """Hosted relational store consumed by the sync reconciler."""

    def select_all(self, table: str, user_id: str) -> list[dict[str, Any]]: ...

    def count_rows(self, table: str, user_id: str) -> int: ...


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

def _is_network_error(exc: BaseException) -> bool:
    current: Optional[BaseException] = exc
    while current is not None:
        if isinstance(current, NETWORK_ERRORS):
            return True
        status = getattr(current, "status", None)
        if type(current).__name__ == "AuthRetryableError" or (
            isinstance(status, int) and status in _RETRYABLE_STATUSES
            and type(current).__name__.startswith("Auth")
        ):
            return True
        current = current.__cause__ or current.__context__
    return False


def map_remote_error(exc: BaseException) -> StublyError:
    """Translate a provider or transport exception into the error taxonomy."""
    if isinstance(exc, StublyError):
        return exc
    if _is_network_error(exc):
        return NetworkUnavailableError()
    text = f"{getattr(exc, 'code', '') or ''} {exc}".lower()
    for needle, error_type in PROVIDER_ERROR_MAP.items():
        if needle in text:
            if error_type is DuplicateUsernameError:
                return DuplicateUsernameError("An account with this email already exists.")
            return error_type()
    return RemoteServiceError(cause=exc)


def _call(operation: str, logger: StructuredLogger, fn: Callable[[], T]) -> T:
    try:
        return fn()
    except StublyError:
        raise
    except Exception as exc:
        mapped = map_remote_error(exc)
        logger.warning(
            "Remote %s failed (%s): %s", operation, type(mapped).__name__, exc,
            extra={"event": "REMOTE_ERROR", "operation": operation},
        )
        raise mapped from exc


# ---------------------------------------------------------------------------
# SDK object conversion
# ---------------------------------------------------------------------------

def _to_remote_user(user: Any) -> RemoteUser:
    return RemoteUser(
        id=str(user.id),
        email=getattr(user, "email", None),
        user_metadata=dict(getattr(user, "user_metadata", None) or {}),
    )


def _to_remote_session(session: Any) -> Optional[RemoteSession]:
    if session is None:
        return None
    return RemoteSession(
        access_token=session.access_token,
        refresh_token=session.refresh_token,
        expires_at=getattr(session, "expires_at", None),
        user=_to_remote_user(session.user),
    )


def _to_auth_response(response: Any) -> RemoteAuthResponse:
    user = getattr(response, "user", None)
    return RemoteAuthResponse(
        user=_to_remote_user(user) if user is not None else None,
        session=_to_remote_session(getattr(response, "session", None)),
    )


# ---------------------------------------------------------------------------
# Supabase implementations
# ---------------------------------------------------------------------------

def create_supabase_client(
    url: str,
    key: str,
    logger: StructuredLogger,
    timeout_s: float = 10.0,
) -> Optional[SupabaseClient]:
    """Build a Supabase client, or ``None`` when it cannot be configured.

    The client never persists or auto-refreshes sessions on its own:
    the secure session store and the coordinator own that lifecycle.
    """
    if not (url and key):
        logger.warning("Supabase credentials not configured; running offline-only.")
        return None
    try:
        client = create_client(
            url,
            key,
            options=ClientOptions(
                postgrest_client_timeout=timeout_s,
                storage_client_timeout=int(timeout_s),
                auto_refresh_token=False,
                persist_session=False,
            ),
        )
        logger.info("Supabase client initialized.")
        return client
    except (ValueError, TypeError) as exc:
        logger.warning(
            "Supabase credential format error: %s. Running offline-only.", exc,
        )
    except Exception as exc:
        logger.error(
            "Unexpected Supabase initialization failure: %s. Running offline-only.",
            exc,
            exc_info=True,
        )
    return None


class SupabaseIdentityClient:
    """``RemoteIdentityClient`` over ``supabase.auth`` and the ``profiles`` table."""

    PROFILES_TABLE = "profiles"

    def __init__(self, client: Optional[SupabaseClient], logger: StructuredLogger) -> None:
        self._client: Optional[SupabaseClient] = client
        self._logger: StructuredLogger = logger

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    @property
    def client(self) -> SupabaseClient:
        if self._client is None:
            raise RemoteServiceError("Supabase is not configured.")
        return self._client

    def sign_up(
        self, email: str, password: str, metadata: dict[str, Any],
    ) -> RemoteAuthResponse:
        response = _call("sign_up", self._logger, lambda: self.client.auth.sign_up({
            "email": email,
            "password": password,
            "options": {"data": metadata},
        }))
        return _to_auth_response(response)

    def sign_in_with_password(self, email: str, password: str) -> RemoteAuthResponse:
        response = _call(
            "sign_in_with_password",
            self._logger,
            lambda: self.client.auth.sign_in_with_password({
                "email": email,
                "password": password,
            }),
        )
        return _to_auth_response(response)

    def sign_in_with_oauth(self, provider: str, redirect_to: str) -> str:
        response = _call(
            "sign_in_with_oauth",
            self._logger,
            lambda: self.client.auth.sign_in_with_oauth({
                "provider": provider,
                "options": {"redirect_to": redirect_to},
            }),
        )
        url = getattr(response, "url", None)
        if not url:
            raise RemoteServiceError("No redirect URL returned by the identity provider.")
        return str(url)

    def get_session(self) -> Optional[RemoteSession]:
        session = _call("get_session", self._logger, self.client.auth.get_session)
        return _to_remote_session(session)

    def set_session(self, access_token: str, refresh_token: str) -> Optional[RemoteSession]:
        response = _call(
            "set_session",
            self._logger,
            lambda: self.client.auth.set_session(access_token, refresh_token),
        )
        return _to_remote_session(getattr(response, "session", None))

    def refresh_session(self, refresh_token: str) -> Optional[RemoteSession]:
        response = _call(
            "refresh_session",
            self._logger,
            lambda: self.client.auth.refresh_session(refresh_token),
        )
        return _to_remote_session(getattr(response, "session", None))

    def sign_out(self) -> None:
        _call("sign_out", self._logger, self.client.auth.sign_out)

    def find_email_by_username(self, username: str) -> Optional[str]:
        response = _call(
            "find_email_by_username",
            self._logger,
            lambda: (
                self.client.table(self.PROFILES_TABLE)
                .select("email")
                .eq("username", username)
                .limit(1)
                .execute()
            ),
        )
        rows = response.data or []
        if not rows:
            return None
        email = rows[0].get("email")
        return str(email) if email else None


class SupabaseDataClient:
    """``RemoteDataClient`` over PostgREST tables filtered by ``user_id``."""

    def __init__(
        self,
        client: Optional[SupabaseClient],
        logger: StructuredLogger,
        page_size: int = PAGE_SIZE,
    ) -> None:
        self._client: Optional[SupabaseClient] = client
        self._logger: StructuredLogger = logger
        self._page_size: int = page_size

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    @property
    def client(self) -> SupabaseClient:
        if self._client is None:
            raise RemoteServiceError("Supabase is not configured.")
        return self._client

    def select_all(self, table: str, user_id: str) -> list[dict[str, Any]]:
        """Every row of *table* owned by *user_id*, fetched page by page."""
        rows: list[dict[str, Any]] = []
        start = 0
        while True:
            end = start + self._page_size - 1
            response = _call(
                f"select_all ({table})",
                self._logger,
                lambda: (
                    self.client.table(table)
                    .select("*")
                    .eq("user_id", user_id)
                    .range(start, end)
                    .execute()
                ),
            )
            page = list(response.data or [])
            rows.extend(page)
            if len(page) < self._page_size:
                return rows
            start += self._page_size

    def count_rows(self, table: str, user_id: str) -> int:
        response = _call(
            f"count_rows ({table})",
            self._logger,
            lambda: (
                self.client.table(table)
                .select("user_id", count="exact")
                .eq("user_id", user_id)
                .limit(1)
                .execute()
            ),
        )
        return int(response.count or 0)
