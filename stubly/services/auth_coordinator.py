"""
Authentication Coordinator.

Decides between online (remote identity) and offline (local credential
store) authentication, orchestrates registration, login, anonymous
accounts, OAuth and logout, and publishes the outcome through the
:class:`~stubly.auth_state.AuthStateStore`.

Every public method returns an :class:`~stubly.models.AuthResult` and
never raises past this boundary.

Fallback order (see :mod:`stubly.services.fallback`):

- Register:  remote sign-up, then local registration.
- Login:     remote password sign-in, then offline verification.
- Anonymous: remote anonymous sign-up, then local anonymous account.

Degradation: without local persistence the coordinator is online-only;
without the remote service it is offline-only; with neither, each
operation fails with a typed result.
"""

from __future__ import annotations

import secrets
import sqlite3
import string
import time
from typing import Callable, Optional

from stubly.auth_state import AuthStateStore
from stubly.errors import (
    DuplicateUsernameError,
    InvalidCredentialsError,
    LoginFailedError,
    NetworkUnavailableError,
    RateLimitedError,
    RegistrationUnavailableError,
    RemoteServiceError,
    SessionExpiredError,
    StublyError,
    ValidationError,
)
from stubly.logger import StructuredLogger
from stubly.models.auth_models import (
    AuthResult,
    LocalUser,
    RemoteSession,
    RemoteUser,
    SecureSession,
)
from stubly.models.enums import AuthErrorCode, AuthMode
from stubly.platform import PlatformCapabilities
from stubly.remote import RemoteIdentityClient
from stubly.services.base_service import BaseService
from stubly.services.credential_store import CredentialStore
from stubly.services.fallback import AuthStrategy, failure_from_error, run_strategies
from stubly.services.secure_session_store import SecureSessionStore
from stubly.utils.audit import DetailValue, log_audit_event
from stubly.utils.validation import looks_like_email, validate_registration

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ANONYMOUS_PASSWORD_ALPHABET: str = string.ascii_letters + string.digits + "!@#$%^&*"
ANONYMOUS_PASSWORD_LENGTH: int = 16
REFRESH_MARGIN_SECONDS: int = 60
DEFAULT_OAUTH_PROVIDER: str = "google"


def generate_random_password(length: int = ANONYMOUS_PASSWORD_LENGTH) -> str:
    return "".join(secrets.choice(ANONYMOUS_PASSWORD_ALPHABET) for _ in range(length))


class AuthCoordinator(BaseService):
    """Dual-mode authentication state machine.

    Parameters
    ----------
    credentials:
        Local account store (may be uninitialised; see :meth:`initialize`).
    sessions:
        Secure session persistence.
    identity:
        Remote identity client.
    state:
        Published auth state.
    platform:
        Capability provider (persistence, device id, connectivity).
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    offline_session_days:
        Lifetime of sessions created by offline login/registration.
    online_session_seconds:
        Lifetime assumed when the identity provider omits an expiry.
    anonymous_email_domain:
        Domain of the synthetic email given to remote anonymous accounts.
    clock:
        Returns the current epoch time in seconds.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        sessions: SecureSessionStore,
        identity: RemoteIdentityClient,
        state: AuthStateStore,
        platform: PlatformCapabilities,
        logger: StructuredLogger,
        offline_session_days: int = 7,
        online_session_seconds: int = 3600,
        anonymous_email_domain: str = "local.stubly.app",
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(logger)
        self._credentials: CredentialStore = credentials
        self._sessions: SecureSessionStore = sessions
        self._identity: RemoteIdentityClient = identity
        self._state: AuthStateStore = state
        self._platform: PlatformCapabilities = platform
        self._offline_session_seconds: int = offline_session_days * 24 * 3600
        self._online_session_seconds: int = online_session_seconds
        self._anonymous_email_domain: str = anonymous_email_domain
        self._clock: Callable[[], float] = clock

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    @property
    def state(self) -> AuthStateStore:
        return self._state

    def local_available(self) -> bool:
        return self._platform.is_native() and self._credentials.is_available

    def online_available(self) -> bool:
        if not self._identity.is_configured:
            return False
        try:
            return self._platform.is_network_available()
        except OSError as exc:
            self._logger.warning("Network availability check failed: %s", exc)
            return False

    # ==================================================================
    # Init
    # ==================================================================

    def initialize(self) -> AuthResult:
        """Restore authentication on startup.

        Order: initialise the credential store (native only), then try
        to confirm a remote session, then fall back to an offline
        session backed by a matching local user.  A stored session that
        matches neither is stale and is cleared.
        """
        self._state.set_loading(True)

        if self._platform.is_native() and not self._credentials.is_available:
            try:
                self._credentials.initialize()
                self._logger.info("Local credential store initialised.")
            except (StublyError, sqlite3.Error, OSError) as exc:
                self._logger.error(
                    "Failed to initialise local credential store; online-only: %s", exc,
                )

        try:
            stored = self._sessions.get()

            if self.online_available():
                remote = self._restore_remote_session(stored)
                if remote is not None:
                    self._persist_remote_session(remote)
                    self._cache_remote_user(remote.user)
                    self._state.set_online_auth(
                        remote.user, remote, is_anonymous=self._is_anonymous(remote.user),
                    )
                    self._audit("SESSION_RESTORED", remote.user.email, AuthMode.ONLINE)
                    return AuthResult(success=True, mode=AuthMode.ONLINE)

            if stored is not None:
                user = self._local_user_for_session(stored)
                if user is not None:
                    self._state.set_offline_auth(user.username, user.is_anonymous)
                    self._audit("SESSION_RESTORED", user.username, AuthMode.OFFLINE)
                    return AuthResult(success=True, mode=AuthMode.OFFLINE)

                self._logger.info("Stored session is stale; clearing it.")
                self._sessions.clear()

            self._state.reset()
            return AuthResult(success=True)

        except Exception as exc:
            self._logger.error("Auth initialisation failed: %s", exc, exc_info=True)
            self._state.reset()
            return self._unexpected(exc)

    # ==================================================================
    # Register
    # ==================================================================

    def register(self, username: str, email: Optional[str], password: str) -> AuthResult:
        try:
            username, email = validate_registration(username, password, email)
        except ValidationError as exc:
            return failure_from_error(exc)

        result = run_strategies(
            [
                AuthStrategy(
                    "remote_sign_up",
                    self.online_available,
                    lambda: self._register_remote(username, email, password),
                ),
                AuthStrategy(
                    "local_register",
                    self.local_available,
                    lambda: self._register_local(username, email, password),
                ),
            ],
            on_exhausted=lambda: failure_from_error(RegistrationUnavailableError()),
            logger=self._logger,
        )
        self._audit("REGISTER", username, result.mode, result.success, result.error_code)
        return result

    def _register_remote(
        self, username: str, email: Optional[str], password: str,
    ) -> AuthResult:
        if not email:
            raise ValidationError("Email is required for online registration.")

        response = self._identity.sign_up(
            email, password, {"username": username, "is_anonymous": False},
        )
        if response.user is None:
            raise RemoteServiceError("No user returned from the identity service.")

        self._cache_credential(username, email, password, response.user.id, is_anonymous=False)

        if response.session is None:
            # Email confirmation pending: continue offline on the cached credential.
            if self.local_available() and self._credentials.get_user_by_username(username):
                self._persist_offline_session(username)
                self._state.set_offline_auth(username, False)
                return AuthResult(success=True, mode=AuthMode.OFFLINE)
            raise RemoteServiceError("No session returned after sign-up.")

        self._persist_remote_session(response.session)
        self._state.set_online_auth(response.session.user, response.session, False)
        return AuthResult(success=True, mode=AuthMode.ONLINE)

    def _register_local(
        self, username: str, email: Optional[str], password: str,
    ) -> AuthResult:
        if self._credentials.get_user_by_username(username) is not None:
            raise DuplicateUsernameError("Username already exists.")

        user = self._credentials.create_user(username, email, password)
        self._persist_offline_session(user.username)
        self._state.set_offline_auth(user.username, False)
        return AuthResult(success=True, mode=AuthMode.OFFLINE, needs_sync=True)

    # ==================================================================
    # Login
    # ==================================================================

    def login(self, identifier: str, password: str) -> AuthResult:
        """Log in with a username or an email address."""
        identifier = (identifier or "").strip()

        result = run_strategies(
            [
                AuthStrategy(
                    "remote_password",
                    self.online_available,
                    lambda: self._login_remote_or_explain(identifier, password),
                ),
                AuthStrategy(
                    "offline_password",
                    self.local_available,
                    lambda: self._login_offline(identifier, password),
                ),
            ],
            on_exhausted=lambda: failure_from_error(LoginFailedError()),
            logger=self._logger,
        )
        event = "OFFLINE_LOGIN" if result.mode == AuthMode.OFFLINE else "LOGIN"
        self._audit(event, identifier, result.mode, result.success, result.error_code)
        return result

    def _login_remote_or_explain(self, identifier: str, password: str) -> AuthResult:
        try:
            return self._login_remote(identifier, password)
        except StublyError as exc:
            if self.local_available():
                return failure_from_error(exc)
            return failure_from_error(LoginFailedError(exc.message))

    def _login_remote(self, identifier: str, password: str) -> AuthResult:
        email: Optional[str] = identifier
        if not looks_like_email(identifier):
            email = self._identity.find_email_by_username(identifier)
            if not email:
                raise InvalidCredentialsError()

        response = self._identity.sign_in_with_password(email, password)
        session = response.session
        if session is None:
            raise RemoteServiceError("No session returned.")

        self._mirror_credential(identifier, session.user, password)
        self._persist_remote_session(session)
        self._state.set_online_auth(
            session.user, session, is_anonymous=self._is_anonymous(session.user),
        )
        return AuthResult(success=True, mode=AuthMode.ONLINE)

    def _login_offline(self, identifier: str, password: str) -> AuthResult:
        user: Optional[LocalUser] = None
        key = identifier
        if looks_like_email(identifier):
            user = self._credentials.get_user_by_email(identifier)
            key = user.username if user is not None else identifier.lower()

        status = self._credentials.check_rate_limit(key)
        if not status.allowed:
            locked_until = status.locked_until or int(self._clock()) + 60
            raise RateLimitedError(locked_until, now=self._clock())

        if user is None and not looks_like_email(identifier):
            user = self._credentials.get_user_by_username(identifier)

        if user is None or not self._credentials.verify_password(password, user.password_hash):
            attempt = self._credentials.record_failed_login(key)
            if attempt.locked_until is not None:
                raise RateLimitedError(attempt.locked_until, now=self._clock())
            remaining = max(0, self._credentials.max_attempts - attempt.failed_count)
            raise InvalidCredentialsError(attempts_remaining=remaining)

        self._credentials.reset_login_attempts(key)
        self._persist_offline_session(user.username)
        self._state.set_offline_auth(user.username, user.is_anonymous)
        return AuthResult(success=True, mode=AuthMode.OFFLINE)

    # ==================================================================
    # Anonymous accounts
    # ==================================================================

    def create_anonymous_account(self) -> AuthResult:
        device_id = self._device_id()
        username = f"local_{device_id or 'anon'}_{int(self._clock() * 1000)}"
        password = generate_random_password()

        result = run_strategies(
            [
                AuthStrategy(
                    "remote_anonymous",
                    lambda: device_id is not None and self.online_available(),
                    lambda: self._anonymous_remote(username, password, device_id or ""),
                ),
                AuthStrategy(
                    "local_anonymous",
                    self.local_available,
                    lambda: self._anonymous_local(username, password, device_id),
                ),
            ],
            on_exhausted=lambda: failure_from_error(
                RegistrationUnavailableError("Failed to create anonymous account.")
            ),
            logger=self._logger,
        )
        self._audit("ANONYMOUS_ACCOUNT", username, result.mode, result.success, result.error_code)
        return result

    def _anonymous_remote(self, username: str, password: str, device_id: str) -> AuthResult:
        email = f"{username}@{self._anonymous_email_domain}"
        response = self._identity.sign_up(
            email,
            password,
            {"username": username, "is_anonymous": True, "android_id": device_id},
        )
        if response.user is None:
            raise RemoteServiceError("Failed to create anonymous account.")

        self._cache_credential(username, email, password, response.user.id, is_anonymous=True)

        if response.session is None:
            raise RemoteServiceError("No session returned for the anonymous account.")

        self._persist_remote_session(response.session)
        self._state.set_online_auth(response.session.user, response.session, True)
        return AuthResult(success=True, mode=AuthMode.ONLINE)

    def _anonymous_local(
        self, username: str, password: str, device_id: Optional[str],
    ) -> AuthResult:
        if self._credentials.get_user_by_username(username) is None:
            self._credentials.create_user(username, None, password, None, is_anonymous=True)
        self._persist_offline_session(username)
        self._state.set_offline_auth(username, True)
        return AuthResult(success=True, mode=AuthMode.OFFLINE, needs_sync=bool(device_id))

    # ==================================================================
    # OAuth
    # ==================================================================

    def sign_in_with_oauth(self, provider: str = DEFAULT_OAUTH_PROVIDER) -> AuthResult:
        """Start an OAuth redirect.  Completion happens on the next :meth:`initialize`."""
        if not self.online_available():
            return failure_from_error(NetworkUnavailableError())
        try:
            url = self._identity.sign_in_with_oauth(provider, self._platform.oauth_redirect_url())
        except StublyError as exc:
            return failure_from_error(exc)

        self._platform.open_url(url)
        self._logger.info(
            "OAuth redirect started (%s).", provider, extra={"event": "OAUTH_REDIRECT"},
        )
        return AuthResult(success=True, redirect_url=url)

    # ==================================================================
    # Logout
    # ==================================================================

    def logout(self) -> AuthResult:
        username = self._state.current_username
        if self._identity.is_configured:
            try:
                self._identity.sign_out()
            except StublyError as exc:
                self._logger.warning("Remote sign-out failed: %s", exc)

        self._sessions.clear()
        self._state.logout()
        self._audit("LOGOUT", username, None)
        return AuthResult(success=True)

    # ==================================================================
    # Token refresh
    # ==================================================================

    def refresh_session(self) -> AuthResult:
        """Refresh the online session when it is about to expire.

        A network failure is a silent no-op (retry on the next call); a
        rejected refresh token returns ``SESSION_EXPIRED``.
        """
        snapshot = self._state.snapshot()
        session = snapshot.session
        if snapshot.mode != AuthMode.ONLINE or session is None:
            return AuthResult(success=True, mode=snapshot.mode if snapshot.is_authenticated else None)

        now = int(self._clock())
        if session.expires_at is not None and session.expires_at - now > REFRESH_MARGIN_SECONDS:
            return AuthResult(success=True, mode=AuthMode.ONLINE)
        if not self.online_available():
            return AuthResult(success=True, mode=AuthMode.ONLINE)

        try:
            refreshed = self._identity.refresh_session(session.refresh_token)
        except NetworkUnavailableError:
            self._logger.debug("Network error during token refresh; will retry.")
            return AuthResult(success=True, mode=AuthMode.ONLINE)
        except StublyError as exc:
            self._logger.warning(
                "Token refresh failed: %s", exc, extra={"event": "SESSION_EXPIRED"},
            )
            return failure_from_error(SessionExpiredError())

        if refreshed is None:
            return failure_from_error(SessionExpiredError())

        self._state.update_session(refreshed)
        self._persist_remote_session(refreshed)
        self._logger.info("Session token refreshed.", extra={"event": "SESSION_REFRESHED"})
        return AuthResult(success=True, mode=AuthMode.ONLINE)

    # ------------------------------------------------------------------
    # Session helpers
    # ------------------------------------------------------------------

    def _restore_remote_session(self, stored: Optional[SecureSession]) -> Optional[RemoteSession]:
        try:
            session = self._identity.get_session()
            if session is None and stored is not None and not stored.is_offline:
                session = self._identity.set_session(stored.access_token, stored.refresh_token)
            return session
        except StublyError as exc:
            self._logger.warning("Could not confirm remote session: %s", exc)
            return None

    def _local_user_for_session(self, stored: SecureSession) -> Optional[LocalUser]:
        if not self.local_available():
            return None
        try:
            return (
                self._credentials.get_user_by_username(stored.user_id)
                or self._credentials.get_user_by_external_id(stored.user_id)
            )
        except (StublyError, sqlite3.Error) as exc:
            self._logger.warning("Local user lookup failed: %s", exc)
            return None

    def _persist_remote_session(self, session: RemoteSession) -> None:
        expires_at = session.expires_at or int(self._clock()) + self._online_session_seconds
        self._save_session(SecureSession(
            user_id=session.user.id,
            access_token=session.access_token,
            refresh_token=session.refresh_token,
            expires_at=expires_at,
        ))

    def _persist_offline_session(self, username: str) -> None:
        self._save_session(SecureSession(
            user_id=username,
            expires_at=int(self._clock()) + self._offline_session_seconds,
        ))

    def _save_session(self, session: SecureSession) -> None:
        try:
            self._sessions.save(session)
        except OSError as exc:
            self._logger.error("Failed to persist session; it will not survive a restart: %s", exc)

    # ------------------------------------------------------------------
    # Best-effort local caching
    # ------------------------------------------------------------------

    def _cache_credential(
        self,
        username: str,
        email: Optional[str],
        password: str,
        external_id: str,
        is_anonymous: bool,
    ) -> None:
        if not self.local_available():
            return
        try:
            local = self._credentials.get_user_by_username(username)
            if local is not None:
                self._refresh_local_credential(local, external_id, password)
            else:
                self._credentials.create_user(username, email, password, external_id, is_anonymous)
        except Exception as exc:
            self._logger.warning(
                "Local credential caching failed for %s: %s", username, exc,
                extra={"event": "LOCAL_CACHE_FAILED"},
            )

    def _mirror_credential(self, identifier: str, user: RemoteUser, password: str) -> None:
        """Link or create the local account after a verified online login.

        The local hash is brought in line with the verified password and
        the offline failure counter is cleared.
        """
        if not self.local_available():
            return
        username = user.username or (None if looks_like_email(identifier) else identifier)
        try:
            local = self._credentials.get_user_by_external_id(user.id)
            if local is None and username:
                local = self._credentials.get_user_by_username(username)
            if local is None and user.email:
                local = self._credentials.get_user_by_email(user.email)

            if local is not None:
                self._refresh_local_credential(local, user.id, password)
                self._credentials.reset_login_attempts(local.username)
            elif username:
                self._credentials.create_user(
                    username, user.email, password, user.id, self._is_anonymous(user),
                )
                self._credentials.reset_login_attempts(username)
            else:
                self._logger.info("No username known for %s; offline login unavailable.", user.id)
        except Exception as exc:
            self._logger.warning(
                "Local credential mirroring failed: %s", exc,
                extra={"event": "LOCAL_CACHE_FAILED"},
            )

    def _refresh_local_credential(self, local: LocalUser, external_id: str, password: str) -> None:
        if local.external_id != external_id or not local.is_synced:
            self._credentials.update_external_id(local.username, external_id)
        if not self._credentials.verify_password(password, local.password_hash):
            self._credentials.update_password(local.username, password)

    def _cache_remote_user(self, user: RemoteUser) -> None:
        if not self.local_available() or not user.username:
            return
        try:
            local = self._credentials.get_user_by_username(user.username)
            if local is not None and local.external_id != user.id:
                self._credentials.update_external_id(local.username, user.id)
        except Exception as exc:
            self._logger.warning("Local user refresh failed: %s", exc)

    # ------------------------------------------------------------------
    # Misc helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _is_anonymous(user: RemoteUser) -> bool:
        return bool(user.user_metadata.get("is_anonymous", False))

    def _device_id(self) -> Optional[str]:
        try:
            return self._platform.get_device_id()
        except OSError as exc:
            self._logger.warning("Failed to get device id: %s", exc)
            return None

    def _unexpected(self, exc: Exception) -> AuthResult:
        return AuthResult(
            success=False,
            error_code=AuthErrorCode.UNKNOWN_ERROR,
            error=str(exc) or "An unexpected error occurred.",
        )

    def _audit(
        self,
        event: str,
        username: Optional[str],
        mode: Optional[AuthMode],
        success: bool = True,
        error_code: Optional[AuthErrorCode] = None,
    ) -> None:
        details: dict[str, DetailValue] = {}
        if error_code is not None:
            details["error_code"] = str(error_code)
        log_audit_event(
            self._logger,
            event=event if success else f"{event}_FAILED",
            username=username,
            mode=str(mode) if mode is not None else None,
            success=success,
            details=details,
            db=self._credentials.audit_database(),
        )
