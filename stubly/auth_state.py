"""
Published Authentication State.

Provides an injectable ``AuthStateStore`` holding the process-wide
:class:`~stubly.models.AuthState` snapshot.  UI layers subscribe to it;
only the ``AuthCoordinator`` calls the transition methods.

Usage::

    from stubly.auth_state import AuthStateStore

    state = AuthStateStore()
    unsubscribe = state.subscribe(lambda s: print(s.mode))
    state.set_offline_auth("alice")
    unsubscribe()
"""

from __future__ import annotations

import threading
from typing import Callable, Optional

from stubly.logger import StructuredLogger
from stubly.models.auth_models import AuthState, RemoteSession, RemoteUser
from stubly.models.enums import AuthMode

Subscriber = Callable[[AuthState], None]

INITIAL_STATE = AuthState()


class AuthStateStore:
    """Thread-safe observable holder of the current ``AuthState``.

    Every transition replaces the snapshot wholesale and notifies the
    subscribers outside the lock, in subscription order.  A subscriber
    that raises is logged and does not prevent the others from running.
    """

    def __init__(self, logger: Optional[StructuredLogger] = None) -> None:
        self._lock: threading.RLock = threading.RLock()
        self._state: AuthState = INITIAL_STATE
        self._subscribers: list[Subscriber] = []
        self._logger: Optional[StructuredLogger] = logger

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def snapshot(self) -> AuthState:
        with self._lock:
            return self._state

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register *callback* and call it once with the current state.

        Returns a zero-argument function that removes the subscription.
        """
        with self._lock:
            self._subscribers.append(callback)
            current = self._state
        self._deliver(callback, current)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def set_online_auth(
        self, user: RemoteUser, session: RemoteSession, is_anonymous: bool = False,
    ) -> None:
        self._replace(lambda s: s.model_copy(update={
            "user": user,
            "session": session,
            "is_authenticated": True,
            "is_loading": False,
            "mode": AuthMode.ONLINE,
            "local_username": None,
            "is_anonymous": is_anonymous,
        }))

    def set_offline_auth(self, username: str, is_anonymous: bool = False) -> None:
        self._replace(lambda s: s.model_copy(update={
            "user": None,
            "session": None,
            "is_authenticated": True,
            "is_loading": False,
            "mode": AuthMode.OFFLINE,
            "local_username": username,
            "is_anonymous": is_anonymous,
        }))

    def set_loading(self, is_loading: bool) -> None:
        self._replace(lambda s: s.model_copy(update={"is_loading": is_loading}))

    def update_session(self, session: RemoteSession) -> None:
        """Swap in a refreshed session (and its user)."""
        self._replace(lambda s: s.model_copy(update={
            "session": session,
            "user": session.user,
        }))

    def logout(self) -> None:
        self._replace(lambda _: INITIAL_STATE)

    def reset(self) -> None:
        """Back to the initial state, but not loading (unauthenticated)."""
        self._replace(lambda _: INITIAL_STATE.model_copy(update={"is_loading": False}))

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def is_authenticated(self) -> bool:
        return self.snapshot().is_authenticated

    @property
    def is_online(self) -> bool:
        return self.snapshot().mode == AuthMode.ONLINE

    @property
    def is_offline(self) -> bool:
        return self.snapshot().mode == AuthMode.OFFLINE

    @property
    def current_username(self) -> Optional[str]:
        """The remote email, else the local username."""
        state = self.snapshot()
        if state.user is not None and state.user.email:
            return state.user.email
        return state.local_username

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _replace(self, transition: Callable[[AuthState], AuthState]) -> None:
        with self._lock:
            self._state = transition(self._state)
            new_state = self._state
            subscribers = list(self._subscribers)
        for callback in subscribers:
            self._deliver(callback, new_state)

    def _deliver(self, callback: Subscriber, state: AuthState) -> None:
        try:
            callback(state)
        except Exception as exc:
            if self._logger is not None:
                self._logger.error("Auth state subscriber failed: %s", exc, exc_info=True)
