"""
Pytest fixtures: an in-memory SQL remote store, a temp-dir local cache,
a synchronous sync manager and a store wired to them.
"""
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from machinehub.db import Base, get_db, make_engine, make_sessionmaker
from machinehub.models import models  # noqa: F401  registers tables
from machinehub.schemas.auth import AccessSession, Role
from machinehub.schemas.machines import Equipment, EquipmentType, Machine
from machinehub.services.sync import SyncManager
from machinehub.storage.local_provider import LocalCacheProvider
from machinehub.storage.remote_provider import SqlRemoteStore
from machinehub.store import EntityStore


JAN_1 = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield make_sessionmaker(engine)
    engine.dispose()


@pytest.fixture
def remote(session_factory):
    return SqlRemoteStore(session_factory)


@pytest.fixture
def cache(tmp_path):
    return LocalCacheProvider(str(tmp_path / "cache" / "machines.json"))


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def sync(cache, remote, sleeps):
    return SyncManager(
        cache,
        remote,
        max_retries=2,
        backoff_seconds=0.01,
        background=False,
        sleep=sleeps.append,
        warning_history=10,
    )


@pytest.fixture
def store(sync):
    return EntityStore(sync)


def make_machine(*types, **fields) -> Machine:
    """Build a machine with one equipment item per type (crane if none given)."""
    types = types or (EquipmentType.crane,)
    data = {
        "name": "Hiab 1",
        "model": "X-HiPro 232",
        "serial_number": "HB-232-0001",
        "equipment": [Equipment(type=t) for t in types],
        "created_at": JAN_1,
    }
    data.update(fields)
    return Machine(**data)


@pytest.fixture
def crane_machine(store):
    machine = make_machine(EquipmentType.crane, EquipmentType.truck, id="machine-crane")
    store.insert_machine(machine)
    store.sync.drain()
    return store.get_machine("machine-crane")


# Sessions
@pytest.fixture
def admin():
    return AccessSession.authenticated("u-admin", "Ada Admin", Role.admin)


@pytest.fixture
def mechanic():
    return AccessSession.authenticated("u-mech", "Maria Mechanic", Role.mechanic)


@pytest.fixture
def driver():
    return AccessSession.authenticated("u-driver", "Dan Driver", Role.driver)


@pytest.fixture
def viewer():
    return AccessSession.authenticated("u-viewer", "Vera Viewer", Role.viewer)


@pytest.fixture
def public():
    return AccessSession.public("machine-crane")


@pytest.fixture
def anonymous():
    return AccessSession.anonymous()


# HTTP
@pytest.fixture
def app(store, session_factory):
    from machinehub.main import create_app

    app = create_app(store=store)

    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


def bearer(user_id: str, name: str, role: Role) -> dict:
    from machinehub.auth.security import create_access_token

    return {"Authorization": f"Bearer {create_access_token(user_id, name, role.value)}"}
