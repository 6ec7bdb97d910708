"""Entity store and sync manager tests"""
import json
import threading
import time
from datetime import timedelta

import pytest

from conftest import JAN_1, make_machine
from machinehub.errors import NotFoundError, PersistenceError
from machinehub.schemas.machines import EquipmentType, Location
from machinehub.services import events
from machinehub.services import machines as machine_service
from machinehub.services.sync import SyncManager
from machinehub.storage.local_provider import LocalCacheProvider
from machinehub.storage.provider import MachineCache, RemoteStore
from machinehub.store import EntityStore


class BrokenCache(MachineCache):
    """Accepts the first `ok_writes` writes, then fails."""

    def __init__(self, ok_writes=0):
        self.ok_writes = ok_writes
        self.written = []

    def read(self):
        return None

    def write(self, machines):
        if self.ok_writes <= 0:
            raise PersistenceError("disk full")
        self.ok_writes -= 1
        self.written.append(list(machines))


class FlakyRemote(RemoteStore):
    """Fails the first `failures` calls, then records writes."""

    def __init__(self, failures=0, machines=None):
        self.failures = failures
        self.calls = 0
        self.upserts = []
        self.deletes = []
        self.machines = machines

    def _maybe_fail(self):
        self.calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("remote unavailable")

    def list_machines(self):
        if self.machines is None:
            raise ConnectionError("remote unavailable")
        return list(self.machines)

    def upsert_machine(self, machine):
        self._maybe_fail()
        self.upserts.append(machine)

    def delete_machine(self, machine_id):
        self._maybe_fail()
        self.deletes.append(machine_id)


class SlowCache(MachineCache):
    """In-memory cache whose writes take a while."""

    def __init__(self, delay=0.2):
        self.delay = delay
        self.machines = None

    def read(self):
        return self.machines

    def write(self, machines):
        time.sleep(self.delay)
        self.machines = list(machines)


class BlockingRemote(FlakyRemote):
    """Holds every upsert until `release` is set."""

    def __init__(self):
        super().__init__()
        self.release = threading.Event()

    def upsert_machine(self, machine):
        self.release.wait(5.0)
        super().upsert_machine(machine)


HYDRAULIC_OIL = {
    "name": "Hydraulic oil",
    "type": "hydraulic",
    "viscosity": "ISO VG 46",
    "applicableEquipment": ["crane"],
    "quantity": "120 L",
}


# Store
def test_commit_writes_cache_and_swaps_snapshot(store, cache):
    machine = make_machine(id="machine-1")
    store.insert_machine(machine)

    assert store.machines == [machine]
    assert cache.read() == [machine]
    assert store.sync.pending == 1


def test_failed_cache_write_keeps_previous_snapshot(sleeps, driver):
    sync = SyncManager(BrokenCache(ok_writes=1), FlakyRemote(), background=False, sleep=sleeps.append)
    store = EntityStore(sync)
    machine = make_machine(id="machine-1")
    store.insert_machine(machine)
    store.sync.drain()

    with pytest.raises(PersistenceError):
        events.record_lubrication(store, "machine-1", "crane", session=driver, overrides={})

    assert store.machines == [machine]
    assert store.get_machine("machine-1").lubrication_history == []
    assert store.sync.pending == 0


def test_remove_machine(store, cache):
    store.insert_machine(make_machine(id="machine-1"))
    store.insert_machine(make_machine(id="machine-2", name="Hooklift 2"))
    store.remove_machine("machine-1")

    assert [m.id for m in store.machines] == ["machine-2"]
    assert [m.id for m in cache.read()] == ["machine-2"]
    with pytest.raises(NotFoundError):
        store.get_machine("machine-1")
    with pytest.raises(NotFoundError):
        store.remove_machine("machine-1")


def test_store_session_transitions(store):
    assert store.session.is_anonymous
    assert store.grant_public_access("machine-1").is_public
    session = store.login("u1", "Una", "mechanic")
    assert session.is_authenticated
    # scanning while logged in keeps the identity
    assert store.grant_public_access("machine-1") is session
    assert store.logout().is_anonymous


def test_operations_default_to_store_session(store, crane_machine):
    store.login("u1", "Una", "driver")
    machine, record, _ = events.record_lubrication(store, crane_machine.id, "crane", overrides={})
    assert record.performed_by == "Una"
    assert len(machine.lubrication_history) == 1


# Local cache
def test_cache_round_trip(tmp_path, store, crane_machine, mechanic, driver):
    machine_service.add_oil(store, crane_machine.id, HYDRAULIC_OIL, session=mechanic)
    events.record_service(store, crane_machine.id, "truck", "Oil change", odometer_reading=1000, session=mechanic, overrides={})
    events.record_lubrication(store, crane_machine.id, "crane", notes="Boom", session=driver, overrides={})
    store.insert_machine(make_machine(EquipmentType.winch, id="machine-2", location=Location(name="Yard B", lat=59.9, lon=10.7)))
    store.insert_machine(make_machine(EquipmentType.hooklift, id="machine-3", location="Dock 4"))

    reloaded = LocalCacheProvider(str(tmp_path / "cache" / "machines.json")).read()
    assert reloaded[0].oils[0].viscosity == "ISO VG 46"
    assert reloaded == store.machines


def test_cache_uses_camel_case_key_layout(cache, store):
    store.insert_machine(make_machine(id="machine-1"))
    with open(cache.path, encoding="utf-8") as f:
        document = json.load(f)
    assert list(document) == ["dashboard_machines"]
    entry = document["dashboard_machines"][0]
    assert entry["serialNumber"] == "HB-232-0001"
    assert "serviceHistory" in entry and "maintenanceSchedules" in entry


def test_cache_preserves_other_keys(cache):
    cache.path.parent.mkdir(parents=True, exist_ok=True)
    cache.path.write_text(json.dumps({"other": 1}), encoding="utf-8")
    cache.write([make_machine(id="machine-1")])
    document = json.loads(cache.path.read_text(encoding="utf-8"))
    assert document["other"] == 1
    assert len(document["dashboard_machines"]) == 1


def test_missing_and_corrupt_cache(cache):
    assert cache.read() is None
    cache.path.parent.mkdir(parents=True, exist_ok=True)
    cache.path.write_text("{broken", encoding="utf-8")
    with pytest.raises(PersistenceError):
        cache.read()


# Sync manager
def test_remote_write_is_retried_with_backoff(cache, sleeps):
    remote = FlakyRemote(failures=2)
    sync = SyncManager(cache, remote, max_retries=3, backoff_seconds=0.5, background=False, sleep=sleeps.append)
    sync.enqueue_upsert(make_machine(id="machine-1"))

    assert sync.drain() == 1
    assert sleeps == [0.5, 1.0]
    assert [m.id for m in remote.upserts] == ["machine-1"]
    assert list(sync.warnings) == []


def test_remote_write_dropped_after_retries(cache, sleeps):
    remote = FlakyRemote(failures=10)
    sync = SyncManager(cache, remote, max_retries=2, backoff_seconds=0.1, background=False, sleep=sleeps.append)
    sync.enqueue_delete("machine-1")
    sync.drain()

    assert remote.calls == 3
    assert len(sleeps) == 2
    assert remote.deletes == []
    (warning,) = sync.warnings
    assert warning.operation == "delete"
    assert warning.machine_id == "machine-1"
    assert warning.attempts == 3


def test_remote_failure_does_not_touch_store(cache, sleeps, driver):
    sync = SyncManager(cache, FlakyRemote(failures=100), max_retries=1, background=False, sleep=sleeps.append)
    store = EntityStore(sync)
    store.insert_machine(make_machine(id="machine-1"))
    events.record_lubrication(store, "machine-1", "crane", session=driver, overrides={})
    sync.drain()

    assert len(store.get_machine("machine-1").lubrication_history) == 1
    assert len(cache.read()[0].lubrication_history) == 1
    assert len(sync.warnings) == 2


def test_queued_snapshot_is_a_copy(cache, sleeps):
    remote = FlakyRemote()
    sync = SyncManager(cache, remote, background=False, sleep=sleeps.append)
    machine = make_machine(id="machine-1")
    sync.enqueue_upsert(machine)
    sync.drain()
    assert remote.upserts[0] == machine
    assert remote.upserts[0] is not machine


def test_background_worker_flushes(cache):
    remote = FlakyRemote()
    sync = SyncManager(cache, remote, background=True, sleep=lambda s: None)
    try:
        sync.enqueue_upsert(make_machine(id="machine-1"))
        assert sync.flush(timeout=5.0)
        assert [m.id for m in remote.upserts] == ["machine-1"]
    finally:
        sync.stop()


def test_load_initial_prefers_remote(cache, sleeps):
    seeded = [make_machine(id="machine-remote")]
    cache.write([make_machine(id="machine-cached")])
    sync = SyncManager(cache, FlakyRemote(machines=seeded), background=False, sleep=sleeps.append)

    store = EntityStore.bootstrap(sync)
    assert [m.id for m in store.machines] == ["machine-remote"]
    # the cache is refreshed from the remote seed
    assert [m.id for m in cache.read()] == ["machine-remote"]


def test_load_initial_falls_back_to_cache(cache, sleeps):
    cache.write([make_machine(id="machine-cached")])
    sync = SyncManager(cache, FlakyRemote(machines=None), background=False, sleep=sleeps.append)
    assert [m.id for m in EntityStore.bootstrap(sync).machines] == ["machine-cached"]


def test_load_initial_empty(cache, sleeps):
    sync = SyncManager(cache, FlakyRemote(machines=None), background=False, sleep=sleeps.append)
    assert EntityStore.bootstrap(sync).machines == []


def test_remote_store_round_trip(store, remote, crane_machine, mechanic, driver):
    machine_service.add_oil(store, crane_machine.id, HYDRAULIC_OIL, session=mechanic)
    events.record_service(store, crane_machine.id, "truck", "Oil change", issues="Worn belt", session=mechanic, overrides={})
    _, _, task = events.record_lubrication(store, crane_machine.id, "crane", session=driver, overrides={})
    events.complete_task(store, crane_machine.id, task.id, session=driver)
    store.insert_machine(make_machine(EquipmentType.winch, id="machine-2", location="Dock 4", created_at=JAN_1 + timedelta(days=1)))
    store.sync.drain()

    assert remote.list_machines() == store.machines
    assert remote.get_machine(crane_machine.id) == store.get_machine(crane_machine.id)

    store.remove_machine("machine-2")
    store.sync.drain()
    assert remote.get_machine("machine-2") is None
    assert [m.id for m in remote.list_machines()] == [crane_machine.id]


def test_concurrent_events_on_different_machines_are_all_kept(sleeps, mechanic):
    sync = SyncManager(SlowCache(), FlakyRemote(), background=False, sleep=sleeps.append)
    store = EntityStore(sync, [make_machine(id="machine-a"), make_machine(id="machine-b")])

    def record(machine_id):
        events.record_service(store, machine_id, "crane", "Slew ring check", session=mechanic, overrides={})

    threads = [threading.Thread(target=record, args=(machine_id,)) for machine_id in ("machine-a", "machine-b")]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10.0)

    assert len(store.get_machine("machine-a").service_history) == 1
    assert len(store.get_machine("machine-b").service_history) == 1
    assert [len(m.service_history) for m in sync.cache.machines] == [1, 1]
    assert sync.pending == 2


def test_flush_times_out_while_remote_is_busy(cache):
    remote = BlockingRemote()
    sync = SyncManager(cache, remote, background=True, sleep=lambda s: None)
    try:
        sync.enqueue_upsert(make_machine(id="machine-1"))
        assert sync.flush(timeout=0.05) is False
        remote.release.set()
        assert sync.flush(timeout=5.0) is True
        assert [m.id for m in remote.upserts] == ["machine-1"]
    finally:
        remote.release.set()
        sync.stop()
