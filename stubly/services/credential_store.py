"""
Credential Store.

Owns the hashed-password records of local accounts and the per-username
failed-login counters used for offline rate limiting.

Passwords are hashed with bcrypt at a fixed work factor.  Every write
is persisted before the method returns; every method raises
:class:`~stubly.errors.LocalStoreUnavailableError` when the credential
database has not been initialised.

Concurrency
-----------
Counter updates for one username are serialised through a
:class:`~stubly.utils.locks.KeyedLock` and run inside one SQLite
transaction, so ``failed_count`` only ever increases or resets.
"""

from __future__ import annotations

import time
from typing import Callable, Optional

import bcrypt

from stubly.database import LocalDatabase
from stubly.logger import StructuredLogger
from stubly.models.auth_models import LocalUser, LoginAttempt, RateLimitStatus
from stubly.repositories.credential_repository import CredentialRepository
from stubly.services.base_service import BaseService
from stubly.utils.locks import KeyedLock

Clock = Callable[[], float]

MAX_ATTEMPTS: int = 5
LOCKOUT_SECONDS: int = 15 * 60
BCRYPT_ROUNDS: int = 12


class CredentialStore(BaseService):
    """Local accounts and rate-limit counters.

    Parameters
    ----------
    db:
        The credential ``LocalDatabase`` (``initialize_auth_schema``).
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    rounds:
        bcrypt work factor.
    max_attempts:
        Consecutive failures allowed before a lockout.
    lockout_seconds:
        Length of a lockout.
    clock:
        Returns the current epoch time in seconds.
    """

    def __init__(
        self,
        db: LocalDatabase,
        logger: StructuredLogger,
        rounds: int = BCRYPT_ROUNDS,
        max_attempts: int = MAX_ATTEMPTS,
        lockout_seconds: int = LOCKOUT_SECONDS,
        clock: Clock = time.time,
    ) -> None:
        super().__init__(logger)
        self._db: LocalDatabase = db
        self._repo: CredentialRepository = CredentialRepository(db=db, logger=logger)
        self._rounds: int = rounds
        self._max_attempts: int = max_attempts
        self._lockout_seconds: int = lockout_seconds
        self._clock: Clock = clock
        self._user_locks: KeyedLock = KeyedLock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        self._db.initialize()

    @property
    def is_available(self) -> bool:
        return self._db.is_initialized

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def audit_database(self) -> Optional[LocalDatabase]:
        """Database holding the ``auth_events`` trail, or ``None`` before init."""
        return self._db if self._db.is_initialized else None

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def hash_password(self, plain: str) -> str:
        return bcrypt.hashpw(
            plain.encode("utf-8"), bcrypt.gensalt(rounds=self._rounds)
        ).decode("utf-8")

    @staticmethod
    def verify_password(plain: str, password_hash: str) -> bool:
        """bcrypt's own constant-time check.  A malformed hash never matches."""
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            return False

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_user(
        self,
        username: str,
        email: Optional[str],
        password: str,
        external_id: Optional[str] = None,
        is_anonymous: bool = False,
    ) -> LocalUser:
        """Create a local account.

        Without an ``external_id`` a ``local_<username>_<ts>`` placeholder
        is stored and the account is marked unsynced.

        Raises
        ------
        DuplicateUsernameError
            If *username* already exists.
        """
        now = int(self._clock())
        user = LocalUser(
            external_id=external_id or f"local_{username}_{now}",
            username=username,
            email=email,
            password_hash=self.hash_password(password),
            is_synced=external_id is not None,
            is_anonymous=is_anonymous,
            created_at=now,
        )
        self._repo.insert_user(user)
        self._logger.info(
            "Local account created for %s (synced=%s, anonymous=%s).",
            username, user.is_synced, is_anonymous,
            extra={"event": "LOCAL_USER_CREATED"},
        )
        return user

    def get_user_by_username(self, username: str) -> Optional[LocalUser]:
        return self._repo.get_by_username(username)

    def get_user_by_email(self, email: str) -> Optional[LocalUser]:
        return self._repo.get_by_email(email)

    def get_user_by_external_id(self, external_id: str) -> Optional[LocalUser]:
        return self._repo.get_by_external_id(external_id)

    def update_external_id(self, username: str, external_id: str) -> bool:
        """Link a local account to its remote identity and mark it synced."""
        return self._repo.update_external_id(username, external_id, int(self._clock()))

    def update_password(self, username: str, password: str) -> bool:
        """Re-hash *password* for *username*.  Returns ``False`` if no row matched."""
        updated = self._repo.update_password_hash(username, self.hash_password(password))
        if updated:
            self._logger.info(
                "Local password refreshed for %s.", username,
                extra={"event": "LOCAL_PASSWORD_UPDATED"},
            )
        return updated

    def list_unsynced_users(self) -> list[LocalUser]:
        return self._repo.list_unsynced()

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    def check_rate_limit(self, username: str) -> RateLimitStatus:
        """Current login allowance for *username*.

        An expired lockout is cleared here and a full allowance returned.
        """
        with self._user_locks.hold(username):
            now = int(self._clock())
            attempt = self._repo.get_attempt(username)
            if attempt is None:
                return RateLimitStatus(allowed=True, remaining_attempts=self._max_attempts)

            if attempt.locked_until is not None:
                if attempt.locked_until > now:
                    return RateLimitStatus(
                        allowed=False,
                        remaining_attempts=0,
                        locked_until=attempt.locked_until,
                    )
                self._repo.delete_attempt(username)
                self._logger.info(
                    "Lockout expired for %s; attempts reset.", username,
                    extra={"event": "LOCKOUT_EXPIRED"},
                )
                return RateLimitStatus(allowed=True, remaining_attempts=self._max_attempts)

            remaining = self._max_attempts - attempt.failed_count
            return RateLimitStatus(allowed=remaining > 0, remaining_attempts=max(0, remaining))

    def record_failed_login(self, username: str) -> LoginAttempt:
        """Count one failure and return the updated record.

        Sets ``locked_until`` once the count reaches the maximum.
        """
        with self._user_locks.hold(username), self._db.batch_write():
            now = int(self._clock())
            current = self._repo.get_attempt(username)
            count = (current.failed_count if current else 0) + 1
            attempt = LoginAttempt(
                username=username,
                failed_count=count,
                last_attempt_at=now,
                locked_until=now + self._lockout_seconds if count >= self._max_attempts else None,
            )
            self._repo.upsert_attempt(attempt)

        if attempt.locked_until is not None:
            self._logger.warning(
                "Account %s locked after %d failed attempts.", username, count,
                extra={"event": "LOCKOUT"},
            )
        return attempt

    def reset_login_attempts(self, username: str) -> None:
        with self._user_locks.hold(username):
            self._repo.delete_attempt(username)
