"""
Authentication Models.

Pydantic models for the credential store, the secure session, the
published auth state, and the typed result every ``AuthCoordinator``
operation returns.  The UI layer never inspects raw exceptions.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field

from stubly.models.enums import AuthErrorCode, AuthMode


# ---------------------------------------------------------------------------
# Credential store records
# ---------------------------------------------------------------------------

class LocalUser(BaseModel):
    """A locally persisted account (``local_auth`` table).

    ``external_id`` is the identity-provider id once the account has been
    linked to the remote backend, or a ``local_<username>_<ts>``
    placeholder for local-only accounts.  Timestamps are epoch seconds.
    """

    external_id: Optional[str] = None
    username: str
    email: Optional[str] = None
    password_hash: str
    is_synced: bool = False
    is_anonymous: bool = False
    last_synced_at: Optional[int] = None
    created_at: int

    model_config = {"from_attributes": True}


class LoginAttempt(BaseModel):
    """Per-username failed-login counters (``login_attempts`` table)."""

    username: str
    failed_count: int = Field(default=0, ge=0)
    last_attempt_at: Optional[int] = None
    locked_until: Optional[int] = None


class RateLimitStatus(BaseModel):
    """Answer of ``CredentialStore.check_rate_limit``."""

    allowed: bool
    remaining_attempts: int
    locked_until: Optional[int] = None


# ---------------------------------------------------------------------------
# Secure session
# ---------------------------------------------------------------------------

class SecureSession(BaseModel):
    """Persisted session token bundle.

    Tokens are empty strings for offline sessions.  ``user_id`` is the
    remote user id for online sessions and the local username for
    offline ones.
    """

    user_id: str
    access_token: str = ""
    refresh_token: str = ""
    expires_at: int  # epoch seconds

    @property
    def is_offline(self) -> bool:
        return not self.access_token


# ---------------------------------------------------------------------------
# Remote identity objects
# ---------------------------------------------------------------------------

class RemoteUser(BaseModel):
    """Identity-provider user, decoupled from the provider SDK types."""

    id: str
    email: Optional[str] = None
    user_metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def username(self) -> Optional[str]:
        value = self.user_metadata.get("username")
        return str(value) if value else None


class RemoteSession(BaseModel):
    """Identity-provider session."""

    access_token: str
    refresh_token: str
    expires_at: Optional[int] = None
    user: RemoteUser


class RemoteAuthResponse(BaseModel):
    """Result of a sign-up or password sign-in."""

    user: Optional[RemoteUser] = None
    session: Optional[RemoteSession] = None


# ---------------------------------------------------------------------------
# Published auth state
# ---------------------------------------------------------------------------

class AuthState(BaseModel):
    """Process-wide authentication state published to UI subscribers.

    ``is_authenticated`` is true iff ``mode`` is online or offline.
    Instances are immutable snapshots; ``AuthStateStore`` replaces them
    wholesale on every transition.
    """

    user: Optional[RemoteUser] = None
    session: Optional[RemoteSession] = None
    is_authenticated: bool = False
    is_loading: bool = True
    mode: AuthMode = AuthMode.PENDING
    local_username: Optional[str] = None
    is_anonymous: bool = False

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Unified auth response
# ---------------------------------------------------------------------------

class AuthResult(BaseModel):
    """Unified response for every public ``AuthCoordinator`` operation.

    Attributes
    ----------
    success:
        ``True`` when the operation completed without error.
    error_code:
        Structured error category (``None`` on success).
    error:
        Human-readable error description (``None`` on success).
    mode:
        The auth mode the operation ended in, when it authenticated.
    needs_sync:
        ``True`` for accounts created locally that still have to be
        pushed to the remote backend.
    attempts_remaining:
        Offline attempts left before lockout, on credential failures.
    minutes_remaining:
        Lockout minutes left, on ``RATE_LIMITED``.
    redirect_url:
        Provider URL for OAuth sign-in.
    """

    success: bool
    error_code: Optional[AuthErrorCode] = None
    error: Optional[str] = None
    mode: Optional[AuthMode] = None
    needs_sync: bool = False
    attempts_remaining: Optional[int] = None
    minutes_remaining: Optional[int] = None
    redirect_url: Optional[str] = None
