"""Machine registry tests"""
import pytest

from machinehub.errors import NotFoundError, PermissionDenied, ValidationError
from machinehub.schemas.auth import Role
from machinehub.schemas.machines import MachineStatus
from machinehub.services import machines as machine_service
from machinehub.services import permissions


DATA = {
    "name": "Hooklift 2",
    "model": "Multilift XR21",
    "serialNumber": "ML-XR21-0042",
    "equipment": [{"type": "truck"}, {"type": "hooklift"}],
}


def test_add_machine(store, mechanic):
    machine = machine_service.add_machine(store, DATA, session=mechanic)
    assert machine.id.startswith("machine-")
    assert [e.type.value for e in machine.equipment] == ["truck", "hooklift"]
    assert store.get_machine(machine.id) == machine
    assert store.sync.pending == 1


@pytest.mark.parametrize(
    "broken",
    [
        {**DATA, "serialNumber": ""},
        {**DATA, "equipment": []},
        {**DATA, "equipment": [{"type": "forklift"}]},
        {"name": "Only a name"},
    ],
)
def test_add_machine_validation(store, mechanic, broken):
    with pytest.raises(ValidationError):
        machine_service.add_machine(store, broken, session=mechanic)
    assert store.machines == []


def test_add_machine_requires_mechanic(store, driver, anonymous):
    for session in (driver, anonymous):
        with pytest.raises(PermissionDenied):
            machine_service.add_machine(store, DATA, session=session)


def test_update_machine_respects_edit_permissions(store, admin, mechanic, driver):
    machine = machine_service.add_machine(store, {**DATA, "editPermissions": ["driver"]}, session=admin)

    with pytest.raises(PermissionDenied):
        machine_service.update_machine(store, machine.id, {"status": "repair"}, session=mechanic)

    updated = machine_service.update_machine(store, machine.id, {"status": "repair", "year": "2021"}, session=driver)
    assert updated.status == MachineStatus.repair
    assert updated.year == "2021"
    assert updated.serial_number == machine.serial_number
    assert store.get_machine(machine.id).status == MachineStatus.repair


def test_update_without_changes_is_a_no_op(store, mechanic):
    machine = machine_service.add_machine(store, DATA, session=mechanic)
    assert machine_service.update_machine(store, machine.id, {}, session=mechanic) is machine


def test_delete_machine_is_admin_only(store, mechanic, admin):
    machine = machine_service.add_machine(store, DATA, session=mechanic)
    with pytest.raises(PermissionDenied):
        machine_service.delete_machine(store, machine.id, session=mechanic)
    machine_service.delete_machine(store, machine.id, session=admin)
    with pytest.raises(NotFoundError):
        machine_service.get_machine(store, machine.id, session=admin)


def test_scan_grants_public_access(store, mechanic, anonymous):
    machine = machine_service.add_machine(store, DATA, session=mechanic)

    found, session, location = machine_service.scan(store, machine.id, session=anonymous)
    assert found == machine
    assert session.is_public and session.machine_id == machine.id
    assert location == f"/machines/{machine.id}?qr=true"
    assert machine_service.list_machines(store, session=session) == [machine]

    _, kept, _ = machine_service.scan(store, permissions.scan_payload_for(machine), session=mechanic)
    assert kept.role == Role.mechanic

    with pytest.raises(NotFoundError):
        machine_service.scan(store, "machine-unknown", session=anonymous)


def test_public_session_only_sees_the_scanned_machine(store, mechanic, anonymous):
    scanned = machine_service.add_machine(store, DATA, session=mechanic)
    other = machine_service.add_machine(store, {**DATA, "serialNumber": "ML-XR21-0043"}, session=mechanic)
    _, session, _ = machine_service.scan(store, scanned.id, session=anonymous)

    assert machine_service.list_machines(store, session=session) == [scanned]
    assert machine_service.get_machine(store, scanned.id, session=session) == scanned
    with pytest.raises(PermissionDenied):
        machine_service.get_machine(store, other.id, session=session)
    assert len(machine_service.list_machines(store, session=mechanic)) == 2


OIL = {"name": "Gear oil", "type": "gear", "viscosity": "SAE 80W-90", "applicableEquipment": ["hooklift"]}


def test_add_oil(store, mechanic):
    machine = machine_service.add_machine(store, DATA, session=mechanic)
    first = machine_service.add_oil(store, machine.id, OIL, session=mechanic)
    second = machine_service.add_oil(store, machine.id, {**OIL, "name": "Hydraulic oil", "viscosity": "ISO VG 46"}, session=mechanic)

    oils = store.get_machine(machine.id).oils
    assert [o.id for o in oils] == [second.id, first.id]
    assert first.id.startswith("oil-")
    assert first.last_changed is not None and first.next_change is None
    assert [t.value for t in first.applicable_equipment] == ["hooklift"]


def test_add_oil_checks_permission_and_fields(store, mechanic, driver):
    machine = machine_service.add_machine(store, DATA, session=mechanic)
    with pytest.raises(PermissionDenied):
        machine_service.add_oil(store, machine.id, OIL, session=driver)
    with pytest.raises(ValidationError):
        machine_service.add_oil(store, machine.id, {**OIL, "viscosity": " "}, session=mechanic)
    with pytest.raises(NotFoundError):
        machine_service.add_oil(store, "machine-missing", OIL, session=mechanic)
    assert store.get_machine(machine.id).oils == []
