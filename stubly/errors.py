"""
Error Taxonomy.

Typed failures raised by the credential store, the secure session store,
the remote clients and the sync reconciler.  Every error carries an
``AuthErrorCode`` so that ``AuthCoordinator`` can turn it into an
``AuthResult`` without string matching.
"""

from __future__ import annotations

import math
import time
from typing import ClassVar, Optional

from stubly.models.enums import AuthErrorCode


class StublyError(Exception):
    """Base class for every typed failure in the data layer."""

    code: ClassVar[AuthErrorCode] = AuthErrorCode.UNKNOWN_ERROR
    default_message: ClassVar[str] = "An unexpected error occurred. Please try again later."

    def __init__(self, message: Optional[str] = None) -> None:
        self.message: str = message or self.default_message
        super().__init__(self.message)


class DuplicateUsernameError(StublyError):
    code = AuthErrorCode.DUPLICATE_USERNAME
    default_message = "Username already exists."


class InvalidCredentialsError(StublyError):
    """Wrong password or unknown user.  The two are never distinguished."""

    code = AuthErrorCode.INVALID_CREDENTIALS
    default_message = "Invalid username or password."

    def __init__(
        self,
        message: Optional[str] = None,
        attempts_remaining: Optional[int] = None,
    ) -> None:
        if message is None and attempts_remaining is not None:
            plural = "s" if attempts_remaining != 1 else ""
            message = (
                f"Invalid username or password. "
                f"{attempts_remaining} attempt{plural} remaining."
            )
        super().__init__(message)
        self.attempts_remaining: Optional[int] = attempts_remaining


class RateLimitedError(StublyError):
    """Too many failed offline attempts; locked until ``locked_until``."""

    code = AuthErrorCode.RATE_LIMITED

    def __init__(self, locked_until: int, now: Optional[float] = None) -> None:
        current: float = time.time() if now is None else now
        self.locked_until: int = locked_until
        self.minutes_remaining: int = max(1, math.ceil((locked_until - current) / 60))
        plural = "s" if self.minutes_remaining > 1 else ""
        super().__init__(
            f"Too many failed attempts. Try again in "
            f"{self.minutes_remaining} minute{plural}."
        )


class NetworkUnavailableError(StublyError):
    """No connectivity, or a remote call timed out."""

    code = AuthErrorCode.NETWORK_UNAVAILABLE
    default_message = "Cannot reach the server. Check your internet connection."


class RemoteServiceError(StublyError):
    """The remote service answered with an error."""

    code = AuthErrorCode.REMOTE_SERVICE_ERROR

    def __init__(
        self,
        message: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        if message is None and cause is not None:
            message = str(cause) or type(cause).__name__
        super().__init__(message or "The server rejected the request.")
        self.cause: Optional[BaseException] = cause


class LocalStoreUnavailableError(StublyError):
    """A local database was used before ``initialize()`` succeeded."""

    code = AuthErrorCode.LOCAL_STORE_UNAVAILABLE
    default_message = "Local storage is not initialised."


class RegistrationUnavailableError(StublyError):
    code = AuthErrorCode.REGISTRATION_UNAVAILABLE
    default_message = "Registration failed. No connection and local storage unavailable."


class LoginFailedError(StublyError):
    code = AuthErrorCode.LOGIN_FAILED
    default_message = "Login failed. No connection and local storage unavailable."


class ValidationError(StublyError):
    code = AuthErrorCode.VALIDATION_ERROR
    default_message = "Invalid input."


class SessionExpiredError(StublyError):
    code = AuthErrorCode.SESSION_EXPIRED
    default_message = "Your session has expired. Please sign in again."


class SyncFailedError(StublyError):
    """A per-table fetch or write failed; the full sync was aborted."""

    code = AuthErrorCode.SYNC_FAILED

    def __init__(self, table: str, cause: BaseException) -> None:
        self.table: str = table
        self.cause: BaseException = cause
        super().__init__(f"Sync of table '{table}' failed: {cause}")
