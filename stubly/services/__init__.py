"""
Business Logic Services Package.

Services depend on the Repository layer for local data access and on
the remote clients in :mod:`stubly.remote` for the hosted backend.

The ``create_services()`` factory wires every repository and service
together, returning a typed dict that the application layer can consume
without knowing the internal dependency graph.
"""

from __future__ import annotations

import time
from typing import Callable, TypedDict

from stubly.auth_state import AuthStateStore
from stubly.config import AppConfig
from stubly.database import LocalDatabase
from stubly.logger import get_logger
from stubly.platform import PlatformCapabilities
from stubly.remote import RemoteDataClient, RemoteIdentityClient
from stubly.repositories.mirror_repository import MirrorRepository
from stubly.secure_storage import SecureStorage
from stubly.services.auth_coordinator import AuthCoordinator
from stubly.services.credential_store import CredentialStore
from stubly.services.secure_session_store import SecureSessionStore
from stubly.services.sync_service import SyncReconciler, SyncTrigger


class ServiceContainer(TypedDict):
    """Typed container for all application services."""

    # --- Local persistence ---
    credential_store: CredentialStore
    secure_session_store: SecureSessionStore
    mirror_repository: MirrorRepository

    # --- Auth ---
    auth_coordinator: AuthCoordinator

    # --- Sync ---
    sync_reconciler: SyncReconciler
    sync_trigger: SyncTrigger


def create_services(
    config: AppConfig,
    auth_db: LocalDatabase,
    mirror_db: LocalDatabase,
    identity: RemoteIdentityClient,
    data: RemoteDataClient,
    storage: SecureStorage,
    state: AuthStateStore,
    platform: PlatformCapabilities,
    clock: Callable[[], float] = time.time,
) -> ServiceContainer:
    """
    Wire all repositories and services together.

    This is the single composition root for the service layer.  The
    databases do not need to be initialised yet: the coordinator opens
    the credential database during ``initialize()``.

    Args:
        config: Application configuration.
        auth_db: Credential database (``initialize_auth_schema``).
        mirror_db: Mirror database (``initialize_mirror_schema``).
        identity: Remote identity client.
        data: Remote data client used by the sync reconciler.
        storage: Secure key-value storage for the persisted session.
        state: Published auth state.
        platform: Platform capability provider.
        clock: Epoch-seconds clock shared by every time-dependent service.

    Returns:
        ServiceContainer mapping service names to fully-wired instances.
    """
    logger = get_logger("services")

    # ------------------------------------------------------------------
    # 1. Repositories / stores (data-access layer)
    # ------------------------------------------------------------------
    mirror_repository = MirrorRepository(db=mirror_db, logger=logger)
    credential_store = CredentialStore(
        db=auth_db,
        logger=logger,
        rounds=config.BCRYPT_ROUNDS,
        max_attempts=config.MAX_LOGIN_ATTEMPTS,
        lockout_seconds=config.LOCKOUT_MINUTES * 60,
        clock=clock,
    )
    secure_session_store = SecureSessionStore(storage=storage, logger=logger, clock=clock)

    # ------------------------------------------------------------------
    # 2. Auth coordinator
    # ------------------------------------------------------------------
    auth_coordinator = AuthCoordinator(
        credentials=credential_store,
        sessions=secure_session_store,
        identity=identity,
        state=state,
        platform=platform,
        logger=logger,
        offline_session_days=config.OFFLINE_SESSION_DAYS,
        online_session_seconds=config.ONLINE_SESSION_SECONDS,
        anonymous_email_domain=config.ANONYMOUS_EMAIL_DOMAIN,
        clock=clock,
    )

    # ------------------------------------------------------------------
    # 3. Sync
    # ------------------------------------------------------------------
    sync_reconciler = SyncReconciler(remote=data, mirror=mirror_repository, logger=logger)
    sync_trigger = SyncTrigger(state=state, reconciler=sync_reconciler, logger=logger)

    logger.info("Service container initialised.")

    return ServiceContainer(
        credential_store=credential_store,
        secure_session_store=secure_session_store,
        mirror_repository=mirror_repository,
        auth_coordinator=auth_coordinator,
        sync_reconciler=sync_reconciler,
        sync_trigger=sync_trigger,
    )
