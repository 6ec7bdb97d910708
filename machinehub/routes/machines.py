from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response

from ..auth.security import get_session, get_store
from ..schemas.auth import AccessSession
from ..schemas.machines import (
    EquipmentType,
    EventResponse,
    LubricationRecordCreate,
    Machine,
    MachineCreate,
    MachineUpdate,
    MaintenanceSchedule,
    Oil,
    OilCreate,
    ScanRequest,
    ScanResponse,
    ServiceRecordCreate,
    Task,
    TaskComplete,
    TaskCreate,
)
from ..services import events, machines as machine_service


router = APIRouter(prefix="/machines", tags=["machines"])
scan_router = APIRouter(tags=["machines"])


@router.get("", response_model=List[Machine])
def list_machines(store=Depends(get_store), session: AccessSession = Depends(get_session)):
    return machine_service.list_machines(store, session=session)


@router.post("", response_model=Machine, status_code=201)
def create_machine(
    body: MachineCreate,
    store=Depends(get_store),
    session: AccessSession = Depends(get_session),
):
    return machine_service.add_machine(store, body, session=session)


@router.get("/{machine_id}", response_model=Machine)
def get_machine(machine_id: str, store=Depends(get_store), session: AccessSession = Depends(get_session)):
    return machine_service.get_machine(store, machine_id, session=session)


@router.patch("/{machine_id}", response_model=Machine)
def update_machine(
    machine_id: str,
    body: MachineUpdate,
    store=Depends(get_store),
    session: AccessSession = Depends(get_session),
):
    return machine_service.update_machine(store, machine_id, body, session=session)


@router.delete("/{machine_id}", status_code=204)
def delete_machine(machine_id: str, store=Depends(get_store), session: AccessSession = Depends(get_session)):
    machine_service.delete_machine(store, machine_id, session=session)
    return Response(status_code=204)


# Maintenance events
@router.post("/{machine_id}/service", response_model=EventResponse, status_code=201)
def record_service(
    machine_id: str,
    body: ServiceRecordCreate,
    store=Depends(get_store),
    session: AccessSession = Depends(get_session),
):
    machine, record, task = events.record_service(
        store,
        machine_id,
        body.equipment_type,
        body.description,
        issues=body.issues,
        performed_at=body.performed_at,
        odometer_reading=body.odometer_reading,
        session=session,
    )
    return EventResponse(machine=machine, record=record, task=task)


@router.post("/{machine_id}/lubrication", response_model=EventResponse, status_code=201)
def record_lubrication(
    machine_id: str,
    body: LubricationRecordCreate,
    store=Depends(get_store),
    session: AccessSession = Depends(get_session),
):
    machine, record, task = events.record_lubrication(
        store,
        machine_id,
        body.equipment_type,
        notes=body.notes,
        performed_at=body.performed_at,
        session=session,
    )
    return EventResponse(machine=machine, record=record, task=task)


# Tasks
@router.post("/{machine_id}/tasks", response_model=Task, status_code=201)
def add_task(
    machine_id: str,
    body: TaskCreate,
    store=Depends(get_store),
    session: AccessSession = Depends(get_session),
):
    return events.add_task(
        store,
        machine_id,
        body.title,
        body.due_date,
        body.equipment_type,
        description=body.description,
        priority=body.priority,
        session=session,
    )


@router.post("/{machine_id}/tasks/{task_id}/start", response_model=Task)
def start_task(
    machine_id: str,
    task_id: str,
    store=Depends(get_store),
    session: AccessSession = Depends(get_session),
):
    return events.start_task(store, machine_id, task_id, session=session)


@router.post("/{machine_id}/tasks/{task_id}/complete", response_model=Task)
def complete_task(
    machine_id: str,
    task_id: str,
    body: TaskComplete = TaskComplete(),
    store=Depends(get_store),
    session: AccessSession = Depends(get_session),
):
    return events.complete_task(store, machine_id, task_id, completed_by=body.completed_by, session=session)


@router.get("/{machine_id}/schedules/{equipment_type}", response_model=MaintenanceSchedule)
def read_schedule(
    machine_id: str,
    equipment_type: EquipmentType,
    store=Depends(get_store),
    session: AccessSession = Depends(get_session),
):
    return events.read_schedule(store, machine_id, equipment_type, session=session)


# Oils
@router.post("/{machine_id}/oils", response_model=Oil, status_code=201)
def add_oil(
    machine_id: str,
    body: OilCreate,
    store=Depends(get_store),
    session: AccessSession = Depends(get_session),
):
    return machine_service.add_oil(store, machine_id, body, session=session)


# Scanning
@scan_router.post("/scan", response_model=ScanResponse)
def scan(body: ScanRequest, store=Depends(get_store), session: AccessSession = Depends(get_session)):
    code = body.payload if body.payload is not None else body.code
    if code is None:
        raise HTTPException(status_code=400, detail="Provide a code or a payload")
    machine, _, location = machine_service.scan(store, code, session=session)
    return ScanResponse(machine_id=machine.id, name=machine.name, location=location)
