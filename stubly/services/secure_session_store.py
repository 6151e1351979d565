"""
Secure Session Store.

Persists the current :class:`~stubly.models.SecureSession` through an
opaque :class:`~stubly.secure_storage.SecureStorage` capability.  The
expiry is also written under its own key so :meth:`has_valid_session`
can answer without deserialising the token bundle.

Independent of the credential database: usable before (or without) it.
"""

from __future__ import annotations

import json
import time
from typing import Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from stubly.logger import StructuredLogger
from stubly.models.auth_models import SecureSession
from stubly.secure_storage import SecureStorage
from stubly.services.base_service import BaseService

SESSION_KEY = "stubly_session"
SESSION_EXPIRY_KEY = "stubly_session_expiry"


class SecureSessionStore(BaseService):
    """Load/save/expire contract over a secure key-value storage."""

    def __init__(
        self,
        storage: SecureStorage,
        logger: StructuredLogger,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(logger)
        self._storage: SecureStorage = storage
        self._clock = clock

    def save(self, session: SecureSession) -> None:
        """Persist *session*.  Storage failures propagate."""
        self._storage.set(SESSION_KEY, session.model_dump_json())
        self._storage.set(SESSION_EXPIRY_KEY, str(session.expires_at))
        self._logger.info("Session saved securely.", extra={"event": "SESSION_SAVED"})

    def get(self) -> Optional[SecureSession]:
        """The stored session, or ``None``.

        An expired or unreadable session is cleared before returning
        ``None``.
        """
        try:
            raw = self._storage.get(SESSION_KEY)
        except OSError as exc:
            self._logger.error("Failed to read secure session: %s", exc)
            return None
        if not raw:
            return None

        try:
            session = SecureSession.model_validate_json(raw)
        except (PydanticValidationError, json.JSONDecodeError) as exc:
            self._logger.warning("Stored session is malformed, clearing it: %s", exc)
            self.clear()
            return None

        if session.expires_at < int(self._clock()):
            self._logger.info("Session expired, clearing.", extra={"event": "SESSION_EXPIRED"})
            self.clear()
            return None
        return session

    def clear(self) -> None:
        """Remove the session.  Failures are logged, never raised."""
        try:
            self._storage.remove(SESSION_KEY)
            self._storage.remove(SESSION_EXPIRY_KEY)
            self._logger.info("Session cleared.", extra={"event": "SESSION_CLEARED"})
        except OSError as exc:
            self._logger.error("Failed to clear secure session: %s", exc)

    def has_valid_session(self) -> bool:
        try:
            value = self._storage.get(SESSION_EXPIRY_KEY)
        except OSError as exc:
            self._logger.error("Failed to check session validity: %s", exc)
            return False
        if not value:
            return False
        try:
            return int(value) >= int(self._clock())
        except ValueError:
            return False
