"""
Event recorder.

Turns a service or lubrication event into the next machine value: a history
record, a rolled-forward schedule and one pending follow-up task. The
apply_* builders are pure; the record_* operations check permissions and
commit the result through the store once.
"""
from datetime import datetime, timezone
from typing import Mapping, Optional, Tuple

import structlog

from ..errors import NotFoundError, ValidationError
from ..schemas.auth import AccessSession
from ..schemas.machines import (
    EquipmentType,
    IntervalSpec,
    LubricationRecord,
    Machine,
    MaintenanceSchedule,
    ServiceRecord,
    Task,
    TaskPriority,
    TaskStatus,
    utcnow,
)
from . import permissions
from .schedule import advance, coerce_equipment_type, ensure_schedule, replace_schedule


logger = structlog.get_logger(__name__)


def _as_utc(value: Optional[datetime]) -> datetime:
    if value is None:
        return utcnow()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _required(value: Optional[str], field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required", detail={"field": field})
    return str(value).strip()


# Task titles
def lubrication_title(equipment_type: EquipmentType) -> str:
    equipment_type = coerce_equipment_type(equipment_type)
    if equipment_type == EquipmentType.crane:
        return "Boom lubrication"
    return f"Lubrication of {equipment_type.value}"


def service_title(equipment_type: EquipmentType) -> str:
    return f"Service of {coerce_equipment_type(equipment_type).value}"


def maintenance_title(equipment_type: EquipmentType) -> str:
    return f"Maintenance of {coerce_equipment_type(equipment_type).value}"


def _follow_up(schedule: MaintenanceSchedule, title: str, description: str, created_at: datetime) -> Task:
    return Task(
        title=title,
        description=description,
        due_date=schedule.next_due,
        created_at=created_at,
        status=TaskStatus.pending,
        equipment_type=schedule.equipment_type,
    )


def _roll_forward(
    machine: Machine,
    equipment_type: EquipmentType,
    performed_at: datetime,
    overrides: Optional[Mapping[EquipmentType, IntervalSpec]],
) -> Tuple[Machine, MaintenanceSchedule]:
    machine, schedule, _ = ensure_schedule(machine, equipment_type, now=performed_at, overrides=overrides)
    schedule = advance(schedule, performed_at)
    return replace_schedule(machine, schedule), schedule


# Pure builders
def apply_service(
    machine: Machine,
    equipment_type: EquipmentType,
    description: str,
    performer: str,
    issues: Optional[str] = None,
    performed_at: Optional[datetime] = None,
    odometer_reading: Optional[int] = None,
    overrides: Optional[Mapping[EquipmentType, IntervalSpec]] = None,
) -> Tuple[Machine, ServiceRecord, Task]:
    """Return (machine, record, task) for a service event. Does not touch the store."""
    equipment_type = coerce_equipment_type(equipment_type)
    description = _required(description, "description")
    performer = _required(performer, "performed_by")
    performed_at = _as_utc(performed_at)

    record = ServiceRecord(
        date=performed_at,
        performed_by=performer,
        equipment_type=equipment_type,
        description=description,
        issues=issues or None,
        odometer_reading=odometer_reading,
    )
    machine, schedule = _roll_forward(machine, equipment_type, performed_at, overrides)
    task = _follow_up(schedule, service_title(equipment_type), schedule.task_description, performed_at)
    machine = machine.model_copy(
        update={
            "service_history": [*machine.service_history, record],
            "tasks": [*machine.tasks, task],
            "updated_at": performed_at,
        }
    )
    return machine, record, task


def apply_lubrication(
    machine: Machine,
    equipment_type: EquipmentType,
    notes: Optional[str],
    performer: str,
    performed_at: Optional[datetime] = None,
    overrides: Optional[Mapping[EquipmentType, IntervalSpec]] = None,
) -> Tuple[Machine, LubricationRecord, Task]:
    """Return (machine, record, task) for a lubrication event. Does not touch the store."""
    equipment_type = coerce_equipment_type(equipment_type)
    performer = _required(performer, "performed_by")
    performed_at = _as_utc(performed_at)

    record = LubricationRecord(
        date=performed_at,
        performed_by=performer,
        equipment_type=equipment_type,
        notes=notes or None,
    )
    machine, schedule = _roll_forward(machine, equipment_type, performed_at, overrides)
    task = _follow_up(schedule, lubrication_title(equipment_type), schedule.task_description, performed_at)
    machine = machine.model_copy(
        update={
            "lubrication_history": [*machine.lubrication_history, record],
            "tasks": [*machine.tasks, task],
            "updated_at": performed_at,
        }
    )
    return machine, record, task


# Store-facing operations
def record_service(
    store,
    machine_id: str,
    equipment_type: EquipmentType,
    description: str,
    performer: Optional[str] = None,
    issues: Optional[str] = None,
    performed_at: Optional[datetime] = None,
    odometer_reading: Optional[int] = None,
    session: Optional[AccessSession] = None,
    overrides: Optional[Mapping[EquipmentType, IntervalSpec]] = None,
) -> Tuple[Machine, ServiceRecord, Task]:
    session = session or store.session
    permissions.require(session, "add_service_record")

    def build(machine: Machine):
        machine, record, task = apply_service(
            machine,
            equipment_type,
            description,
            performer or session.display_name,
            issues=issues,
            performed_at=performed_at,
            odometer_reading=odometer_reading,
            overrides=overrides,
        )
        return machine, (record, task)

    machine, (record, task) = store.update(machine_id, build)
    logger.info(
        "service_recorded",
        machine_id=machine.id,
        equipment_type=record.equipment_type.value,
        record_id=record.id,
        next_due=task.due_date.isoformat(),
    )
    return machine, record, task


def record_lubrication(
    store,
    machine_id: str,
    equipment_type: EquipmentType,
    notes: Optional[str] = None,
    performer: Optional[str] = None,
    performed_at: Optional[datetime] = None,
    session: Optional[AccessSession] = None,
    overrides: Optional[Mapping[EquipmentType, IntervalSpec]] = None,
) -> Tuple[Machine, LubricationRecord, Task]:
    session = session or store.session
    permissions.require(session, "mark_lubrication")

    def build(machine: Machine):
        machine, record, task = apply_lubrication(
            machine,
            equipment_type,
            notes,
            performer or session.display_name,
            performed_at=performed_at,
            overrides=overrides,
        )
        return machine, (record, task)

    machine, (record, task) = store.update(machine_id, build)
    logger.info(
        "lubrication_recorded",
        machine_id=machine.id,
        equipment_type=record.equipment_type.value,
        record_id=record.id,
        next_due=task.due_date.isoformat(),
    )
    return machine, record, task


def add_task(
    store,
    machine_id: str,
    title: str,
    due_date: datetime,
    equipment_type: EquipmentType,
    description: str = "",
    priority: Optional[TaskPriority] = None,
    session: Optional[AccessSession] = None,
) -> Task:
    session = session or store.session
    permissions.require(session, "add_task")
    task = Task(
        title=_required(title, "title"),
        description=description or "",
        due_date=_as_utc(due_date),
        equipment_type=coerce_equipment_type(equipment_type),
        priority=priority,
    )
    store.update(machine_id, lambda machine: (machine.model_copy(update={"tasks": [*machine.tasks, task]}), None))
    logger.info("task_added", machine_id=machine_id, task_id=task.id)
    return task


def _get_task(machine: Machine, task_id: str) -> Task:
    task = machine.find_task(task_id)
    if task is None:
        raise NotFoundError("Task not found", detail={"machine_id": machine.id, "task_id": task_id})
    return task


def _replace_task(machine: Machine, task: Task) -> Machine:
    return machine.model_copy(update={"tasks": [task if t.id == task.id else t for t in machine.tasks]})


def start_task(store, machine_id: str, task_id: str, session: Optional[AccessSession] = None) -> Task:
    session = session or store.session
    permissions.require(session, "complete_task")

    def build(machine: Machine):
        task = _get_task(machine, task_id)
        if task.status != TaskStatus.pending:
            return machine, task
        task = task.model_copy(update={"status": TaskStatus.in_progress})
        return _replace_task(machine, task), task

    _, task = store.update(machine_id, build)
    logger.info("task_started", machine_id=machine_id, task_id=task_id, status=task.status.value)
    return task


def complete_task(
    store,
    machine_id: str,
    task_id: str,
    completed_by: Optional[str] = None,
    session: Optional[AccessSession] = None,
) -> Task:
    """Mark a task completed. Completing an already completed task changes nothing."""
    session = session or store.session
    permissions.require(session, "complete_task")

    def build(machine: Machine):
        task = _get_task(machine, task_id)
        if task.status == TaskStatus.completed:
            return machine, task
        task = task.model_copy(
            update={
                "status": TaskStatus.completed,
                "assigned_to": completed_by or session.display_name,
            }
        )
        return _replace_task(machine, task), task

    _, task = store.update(machine_id, build)
    logger.info("task_completed", machine_id=machine_id, task_id=task_id, completed_by=task.assigned_to)
    return task


def read_schedule(
    store,
    machine_id: str,
    equipment_type: EquipmentType,
    session: Optional[AccessSession] = None,
    now: Optional[datetime] = None,
    overrides: Optional[Mapping[EquipmentType, IntervalSpec]] = None,
) -> MaintenanceSchedule:
    """
    Return the schedule for a machine's equipment type.

    A missing schedule is created with the default interval and committed
    together with one routine maintenance task. An existing schedule is
    returned as is.
    """
    session = session or store.session
    permissions.require_view(session, machine_id)
    equipment_type = coerce_equipment_type(equipment_type)
    now = _as_utc(now)

    def build(machine: Machine):
        updated, schedule, created = ensure_schedule(machine, equipment_type, now=now, overrides=overrides)
        if not created:
            return machine, schedule
        task = _follow_up(schedule, maintenance_title(schedule.equipment_type), schedule.task_description, now)
        return updated.model_copy(update={"tasks": [*updated.tasks, task]}), schedule

    _, schedule = store.update(machine_id, build)
    return schedule
