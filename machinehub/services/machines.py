"""
Machine registry: create, edit, delete and look up machines, keep each
machine's oil register, and resolve scanned codes into public access.
"""
from typing import List, Optional, Tuple, Union

import structlog
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError
from ..schemas.auth import AccessSession
from ..schemas.machines import Machine, MachineCreate, MachineUpdate, Oil, OilCreate, ScanPayload, utcnow
from . import permissions


logger = structlog.get_logger(__name__)


def _validated(schema, data):
    if isinstance(data, schema):
        return data
    try:
        return schema.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid machine data",
            detail={"errors": e.errors(include_url=False, include_context=False, include_input=False)},
        ) from e


def list_machines(store, session: Optional[AccessSession] = None) -> List[Machine]:
    """Every machine for logged-in sessions; only the granted machine for public access."""
    session = session or store.session
    return permissions.visible_machines(session, store.machines)


def get_machine(store, machine_id: str, session: Optional[AccessSession] = None) -> Machine:
    session = session or store.session
    permissions.require_view(session, machine_id)
    return store.get_machine(machine_id)


def add_machine(store, data: Union[MachineCreate, dict], session: Optional[AccessSession] = None) -> Machine:
    session = session or store.session
    permissions.require(session, "add_machine")
    payload = _validated(MachineCreate, data)
    now = utcnow()
    machine = Machine(**payload.model_dump(), created_at=now, updated_at=now)
    store.insert_machine(machine)
    logger.info("machine_created", machine_id=machine.id, name=machine.name)
    return machine


def update_machine(
    store,
    machine_id: str,
    data: Union[MachineUpdate, dict],
    session: Optional[AccessSession] = None,
) -> Machine:
    session = session or store.session
    payload = _validated(MachineUpdate, data)
    changes = payload.model_dump(exclude_unset=True)

    def build(machine: Machine):
        permissions.require_edit(session, machine)
        if not changes:
            return machine, None
        try:
            updated = Machine.model_validate({**machine.model_dump(), **changes, "updated_at": utcnow()})
        except PydanticValidationError as e:
            raise ValidationError("Invalid machine data", detail={"errors": e.errors(include_url=False, include_context=False, include_input=False)}) from e
        return updated, None

    updated, _ = store.update(machine_id, build)
    if changes:
        logger.info("machine_updated", machine_id=machine_id, fields=sorted(changes))
    return updated


def add_oil(
    store,
    machine_id: str,
    data: Union[OilCreate, dict],
    session: Optional[AccessSession] = None,
) -> Oil:
    """Register an oil on a machine. The newest oil is listed first."""
    session = session or store.session
    permissions.require(session, "upload_documents")
    payload = _validated(OilCreate, data)
    oil = Oil(**payload.model_dump(), last_changed=utcnow())
    store.update(machine_id, lambda machine: (machine.model_copy(update={"oils": [oil, *machine.oils]}), None))
    logger.info("oil_added", machine_id=machine_id, oil_id=oil.id, name=oil.name)
    return oil


def delete_machine(store, machine_id: str, session: Optional[AccessSession] = None) -> None:
    session = session or store.session
    permissions.require(session, "delete_machine")
    store.remove_machine(machine_id)
    logger.info("machine_deleted", machine_id=machine_id)


def scan(
    store,
    code: Union[str, ScanPayload],
    session: Optional[AccessSession] = None,
) -> Tuple[Machine, AccessSession, str]:
    """
    Resolve a scanned code to a machine and grant public access to it.

    Returns:
        (machine, session, location) where location carries the public marker
    """
    session = session or store.session
    machine = permissions.resolve_scan(store.machines, code)
    granted = permissions.grant_public_access(session, machine.id)
    logger.info("machine_scanned", machine_id=machine.id, session_kind=granted.kind.value)
    return machine, granted, permissions.public_location(machine.id)
