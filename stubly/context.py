"""
Application Context.

Builds the whole dependency graph (configuration, logging, local
databases, remote clients, secure storage, auth state and services)
with an explicit lifecycle.  Nothing here runs at import time.

Usage::

    with AppContext() as ctx:
        result = ctx.coordinator.initialize()
"""

from __future__ import annotations

import sqlite3
import time
from pathlib import Path
from typing import Callable, Optional

from stubly.auth_state import AuthStateStore
from stubly.config import AppConfig, get_config
from stubly.database import ConnectionRegistry, LocalDatabase
from stubly.errors import StublyError
from stubly.logger import StructuredLogger, get_logger
from stubly.platform import DesktopPlatform, PlatformCapabilities, WebPlatform
from stubly.remote import SupabaseDataClient, SupabaseIdentityClient, create_supabase_client
from stubly.schema import initialize_auth_schema, initialize_mirror_schema
from stubly.secure_storage import EncryptedFileStorage, InMemorySecureStorage, SecureStorage
from stubly.services import ServiceContainer, create_services
from stubly.services.auth_coordinator import AuthCoordinator


class AppContext:
    """Owns every long-lived object of one application run.

    Parameters
    ----------
    config:
        Application configuration; defaults to :func:`get_config`.
    platform:
        Capability provider; defaults to :class:`DesktopPlatform` pointed
        at the configured Supabase host.
    storage:
        Secure storage backend; defaults to :class:`EncryptedFileStorage`
        on native platforms and :class:`InMemorySecureStorage` otherwise.
    clock:
        Epoch-seconds clock shared by the services.
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        platform: Optional[PlatformCapabilities] = None,
        storage: Optional[SecureStorage] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config: AppConfig = config or get_config()
        self.logger: StructuredLogger = get_logger("stubly")

        self.platform: PlatformCapabilities = platform or DesktopPlatform(
            logger=get_logger("platform"),
            remote_url=self.config.SUPABASE_URL,
            redirect_url=self.config.OAUTH_NATIVE_REDIRECT,
        )
        self.storage: SecureStorage = storage or self._default_storage()

        self.registry: ConnectionRegistry = ConnectionRegistry()
        db_logger = get_logger("database")
        self.auth_db: LocalDatabase = LocalDatabase(
            path=Path(self.config.AUTH_DB_PATH),
            schema_initializer=initialize_auth_schema,
            registry=self.registry,
            logger=db_logger,
        )
        self.mirror_db: LocalDatabase = LocalDatabase(
            path=Path(self.config.MIRROR_DB_PATH),
            schema_initializer=initialize_mirror_schema,
            registry=self.registry,
            logger=db_logger,
        )

        remote_logger = get_logger("remote")
        client = create_supabase_client(
            self.config.SUPABASE_URL,
            self.config.SUPABASE_ANON_KEY.get_secret_value(),
            remote_logger,
            timeout_s=self.config.REMOTE_TIMEOUT_S,
        )
        self.identity: SupabaseIdentityClient = SupabaseIdentityClient(client, remote_logger)
        self.data: SupabaseDataClient = SupabaseDataClient(client, remote_logger)

        self.state: AuthStateStore = AuthStateStore(logger=get_logger("auth_state"))
        self.services: ServiceContainer = create_services(
            config=self.config,
            auth_db=self.auth_db,
            mirror_db=self.mirror_db,
            identity=self.identity,
            data=self.data,
            storage=self.storage,
            state=self.state,
            platform=self.platform,
            clock=clock,
        )
        self._opened: bool = False

    @classmethod
    def for_web(cls, config: Optional[AppConfig] = None) -> "AppContext":
        """Context for a browser-style runtime: no local persistence."""
        cfg = config or get_config()
        platform = WebPlatform(
            logger=get_logger("platform"),
            remote_url=cfg.SUPABASE_URL,
            origin=cfg.OAUTH_WEB_ORIGIN,
        )
        return cls(config=cfg, platform=platform, storage=InMemorySecureStorage())

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def coordinator(self) -> AuthCoordinator:
        return self.services["auth_coordinator"]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> "AppContext":
        """Open the mirror database and start the sync trigger.

        The credential database is opened by
        :meth:`AuthCoordinator.initialize` so that a failure there
        degrades the app to online-only instead of aborting startup.
        """
        if self._opened:
            return self
        if self.platform.is_native():
            try:
                self.mirror_db.initialize()
            except (StublyError, sqlite3.Error, OSError) as exc:
                self.logger.error("Mirror database unavailable; sync disabled: %s", exc)
            else:
                self.services["sync_trigger"].start()
        self._opened = True
        return self

    def close(self) -> None:
        """Stop background hooks and close every database connection.  Safe to call twice."""
        if not self._opened:
            return
        self.services["sync_trigger"].stop()
        self.auth_db.close()
        self.mirror_db.close()
        self.registry.close_all()
        self._opened = False
        self.logger.info("Application context closed.")

    def __enter__(self) -> "AppContext":
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _default_storage(self) -> SecureStorage:
        if self.platform.is_native():
            return EncryptedFileStorage(
                path=Path(self.config.SECURE_STORE_PATH),
                logger=get_logger("secure_storage"),
            )
        return InMemorySecureStorage()
