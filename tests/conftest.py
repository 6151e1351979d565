"""
Shared test configuration and fixtures.

Every fixture builds isolated instances: temp-dir databases, an
in-memory secure storage, fake remote clients and a settable clock.
bcrypt runs at its minimum work factor to keep the suite fast.
"""

import os

# File logging off before any stubly module reads the configuration.
os.environ.setdefault("LOG_FILE", "")

import pytest

from stubly.auth_state import AuthStateStore
from stubly.database import ConnectionRegistry, LocalDatabase
from stubly.logger import StructuredLogger, get_logger
from stubly.repositories.mirror_repository import MirrorRepository
from stubly.schema import initialize_auth_schema, initialize_mirror_schema
from stubly.secure_storage import InMemorySecureStorage
from stubly.services.auth_coordinator import AuthCoordinator
from stubly.services.credential_store import CredentialStore
from stubly.services.secure_session_store import SecureSessionStore
from stubly.services.sync_service import SyncReconciler
from tests.fakes import FakeClock, FakeDataClient, FakeIdentityClient, FakePlatform

TEST_BCRYPT_ROUNDS = 4


@pytest.fixture
def logger() -> StructuredLogger:
    return get_logger("stubly.tests")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry() -> ConnectionRegistry:
    reg = ConnectionRegistry()
    yield reg
    reg.close_all()


@pytest.fixture
def auth_db(tmp_path, registry, logger) -> LocalDatabase:
    db = LocalDatabase(tmp_path / "auth.db", initialize_auth_schema, registry, logger)
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def uninitialized_auth_db(tmp_path, registry, logger) -> LocalDatabase:
    db = LocalDatabase(tmp_path / "auth.db", initialize_auth_schema, registry, logger)
    yield db
    db.close()


@pytest.fixture
def mirror_db(tmp_path, registry, logger) -> LocalDatabase:
    db = LocalDatabase(tmp_path / "mirror.db", initialize_mirror_schema, registry, logger)
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def mirror(mirror_db, logger) -> MirrorRepository:
    return MirrorRepository(db=mirror_db, logger=logger)


@pytest.fixture
def credentials(auth_db, logger, clock) -> CredentialStore:
    return CredentialStore(auth_db, logger, rounds=TEST_BCRYPT_ROUNDS, clock=clock)


@pytest.fixture
def storage() -> InMemorySecureStorage:
    return InMemorySecureStorage()


@pytest.fixture
def sessions(storage, logger, clock) -> SecureSessionStore:
    return SecureSessionStore(storage, logger, clock=clock)


@pytest.fixture
def identity(clock) -> FakeIdentityClient:
    return FakeIdentityClient(clock)


@pytest.fixture
def remote_data() -> FakeDataClient:
    return FakeDataClient()


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform(native=True, online=False)


@pytest.fixture
def state(logger) -> AuthStateStore:
    return AuthStateStore(logger=logger)


@pytest.fixture
def coordinator(credentials, sessions, identity, state, platform, logger, clock) -> AuthCoordinator:
    return AuthCoordinator(
        credentials=credentials,
        sessions=sessions,
        identity=identity,
        state=state,
        platform=platform,
        logger=logger,
        clock=clock,
    )


@pytest.fixture
def reconciler(remote_data, mirror, logger) -> SyncReconciler:
    return SyncReconciler(remote=remote_data, mirror=mirror, logger=logger)
