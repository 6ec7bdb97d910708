"""
Remote store backed by SQLAlchemy: one row per machine plus append-only
task and maintenance record tables keyed by machine id.
"""
from datetime import datetime, timezone
from typing import Callable, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from ..models.models import MachineRow, MachineTaskRow, MaintenanceRecordRow
from ..schemas.machines import (
    Equipment,
    LubricationRecord,
    Location,
    Machine,
    MaintenanceSchedule,
    Oil,
    ServiceRecord,
    Task,
)
from .provider import RemoteStore


logger = structlog.get_logger(__name__)


def _aware(dt: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo; everything is stored in UTC
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _location_to_json(location) -> Optional[dict]:
    if location is None:
        return None
    if isinstance(location, str):
        return {"text": location}
    return location.model_dump(mode="json", by_alias=True)


def _location_from_json(data: Optional[dict]):
    if not data:
        return None
    if "text" in data:
        return data["text"]
    return Location.model_validate(data)


class SqlRemoteStore(RemoteStore):
    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    # Reads
    def list_machines(self) -> List[Machine]:
        with self._session_factory() as db:
            rows = db.execute(
                select(MachineRow)
                .options(selectinload(MachineRow.tasks), selectinload(MachineRow.records))
                .order_by(MachineRow.created_at, MachineRow.id)
            ).scalars().all()
            return [self._to_machine(row) for row in rows]

    def get_machine(self, machine_id: str) -> Optional[Machine]:
        with self._session_factory() as db:
            row = db.get(MachineRow, machine_id)
            if row is None:
                return None
            return self._to_machine(row)

    # Writes
    def upsert_machine(self, machine: Machine) -> None:
        with self._session_factory() as db:
            with db.begin():
                row = db.get(MachineRow, machine.id)
                if row is None:
                    row = MachineRow(id=machine.id)
                    db.add(row)
                row.name = machine.name
                row.model = machine.model
                row.serial_number = machine.serial_number
                row.status = machine.status.value
                row.equipment = [e.model_dump(mode="json", by_alias=True) for e in machine.equipment]
                row.location = _location_to_json(machine.location)
                row.description = machine.description
                row.brand = machine.brand
                row.year = machine.year
                row.edit_permissions = [r.value for r in machine.edit_permissions]
                row.maintenance_schedules = [s.model_dump(mode="json", by_alias=True) for s in machine.maintenance_schedules]
                row.oils = [o.model_dump(mode="json", by_alias=True) for o in machine.oils]
                row.created_at = machine.created_at
                row.updated_at = machine.updated_at

                for position, task in enumerate(machine.tasks):
                    db.merge(MachineTaskRow(
                        id=task.id,
                        machine_id=machine.id,
                        position=position,
                        title=task.title,
                        description=task.description,
                        due_date=task.due_date,
                        status=task.status.value,
                        priority=task.priority.value if task.priority else None,
                        assigned_to=task.assigned_to,
                        equipment_type=task.equipment_type.value,
                        created_at=task.created_at,
                    ))

                existing = set(db.execute(
                    select(MaintenanceRecordRow.id).where(MaintenanceRecordRow.machine_id == machine.id)
                ).scalars().all())
                for position, record in enumerate(machine.service_history):
                    if record.id in existing:
                        continue
                    db.add(MaintenanceRecordRow(
                        id=record.id,
                        machine_id=machine.id,
                        kind="service",
                        position=position,
                        date=record.date,
                        performed_by=record.performed_by,
                        equipment_type=record.equipment_type.value,
                        description=record.description,
                        issues=record.issues,
                        odometer_reading=record.odometer_reading,
                    ))
                for position, record in enumerate(machine.lubrication_history):
                    if record.id in existing:
                        continue
                    db.add(MaintenanceRecordRow(
                        id=record.id,
                        machine_id=machine.id,
                        kind="lubrication",
                        position=position,
                        date=record.date,
                        performed_by=record.performed_by,
                        equipment_type=record.equipment_type.value,
                        notes=record.notes,
                    ))
        logger.debug("remote_machine_upserted", machine_id=machine.id)

    def delete_machine(self, machine_id: str) -> None:
        with self._session_factory() as db:
            with db.begin():
                # Explicit child deletes; SQLite does not enforce ON DELETE CASCADE by default
                db.query(MachineTaskRow).filter(MachineTaskRow.machine_id == machine_id).delete()
                db.query(MaintenanceRecordRow).filter(MaintenanceRecordRow.machine_id == machine_id).delete()
                db.query(MachineRow).filter(MachineRow.id == machine_id).delete()
        logger.debug("remote_machine_deleted", machine_id=machine_id)

    # Row -> domain
    def _to_machine(self, row: MachineRow) -> Machine:
        services: List[ServiceRecord] = []
        lubrications: List[LubricationRecord] = []
        for rec in row.records:
            if rec.kind == "service":
                services.append(ServiceRecord(
                    id=rec.id,
                    date=_aware(rec.date),
                    performed_by=rec.performed_by,
                    equipment_type=rec.equipment_type,
                    description=rec.description or "",
                    issues=rec.issues,
                    odometer_reading=rec.odometer_reading,
                ))
            else:
                lubrications.append(LubricationRecord(
                    id=rec.id,
                    date=_aware(rec.date),
                    performed_by=rec.performed_by,
                    equipment_type=rec.equipment_type,
                    notes=rec.notes,
                ))
        tasks = [
            Task(
                id=t.id,
                title=t.title,
                description=t.description or "",
                due_date=_aware(t.due_date),
                created_at=_aware(t.created_at),
                status=t.status,
                priority=t.priority,
                assigned_to=t.assigned_to,
                equipment_type=t.equipment_type,
            )
            for t in row.tasks
        ]
        return Machine(
            id=row.id,
            name=row.name,
            model=row.model,
            serial_number=row.serial_number,
            description=row.description,
            brand=row.brand,
            year=row.year,
            status=row.status,
            location=_location_from_json(row.location),
            equipment=[Equipment.model_validate(e) for e in (row.equipment or [])],
            service_history=services,
            lubrication_history=lubrications,
            tasks=tasks,
            maintenance_schedules=[MaintenanceSchedule.model_validate(s) for s in (row.maintenance_schedules or [])],
            oils=[Oil.model_validate(o) for o in (row.oils or [])],
            edit_permissions=row.edit_permissions or [],
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
        )
