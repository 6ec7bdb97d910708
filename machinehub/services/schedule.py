"""
Schedule engine.
Keeps one maintenance schedule per machine + equipment type and rolls it
forward when service or lubrication is recorded.
"""
import json
from datetime import datetime, timedelta
from typing import Dict, Mapping, Optional, Tuple, Union

import structlog

from ..config import settings
from ..errors import ConfigurationError, ValidationError
from ..schemas.machines import (
    EquipmentType,
    IntervalPeriod,
    IntervalSpec,
    Machine,
    MaintenanceSchedule,
    utcnow,
)
from .intervals import parse_interval, resolve


logger = structlog.get_logger(__name__)

DEFAULT_INTERVALS: Dict[EquipmentType, IntervalSpec] = {
    EquipmentType.crane: IntervalSpec.named(IntervalPeriod.biweekly),
}
FALLBACK_INTERVAL = IntervalSpec.named(IntervalPeriod.monthly)


def coerce_equipment_type(value: Union[str, EquipmentType]) -> EquipmentType:
    """
    Raises:
        ValidationError: value is not a known equipment type
    """
    try:
        return EquipmentType(value)
    except ValueError as e:
        raise ValidationError(
            f"Unknown equipment type: {value!r}",
            detail={"field": "equipment_type", "value": str(value)},
        ) from e


def load_interval_overrides(raw: Optional[str] = None) -> Dict[EquipmentType, IntervalSpec]:
    """
    Parse the site-wide equipment interval overrides (EQUIPMENT_INTERVALS).

    Raises:
        ConfigurationError: the JSON is malformed or names an unknown type/interval
    """
    raw = settings.equipment_intervals_json if raw is None else raw
    if not raw or not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.error("equipment_intervals_invalid_json", error=str(e))
        raise ConfigurationError("EQUIPMENT_INTERVALS is not valid JSON") from e
    if not isinstance(data, dict):
        raise ConfigurationError("EQUIPMENT_INTERVALS must be a JSON object")

    overrides: Dict[EquipmentType, IntervalSpec] = {}
    for key, value in data.items():
        try:
            equipment_type = EquipmentType(key)
        except ValueError as e:
            logger.error("equipment_intervals_unknown_type", equipment_type=key)
            raise ConfigurationError(f"Unknown equipment type in EQUIPMENT_INTERVALS: {key!r}") from e
        spec = parse_interval(value)
        resolve(spec)  # reject non-positive custom lengths up front
        overrides[equipment_type] = spec
    return overrides


def default_interval(
    equipment_type: EquipmentType,
    overrides: Optional[Mapping[EquipmentType, IntervalSpec]] = None,
) -> IntervalSpec:
    """Crane defaults to biweekly, everything else to monthly, unless overridden."""
    if overrides is None:
        overrides = load_interval_overrides()
    equipment_type = coerce_equipment_type(equipment_type)
    if equipment_type in overrides:
        return overrides[equipment_type]
    return DEFAULT_INTERVALS.get(equipment_type, FALLBACK_INTERVAL)


def compute_next_due(reference: datetime, interval: IntervalSpec) -> datetime:
    return reference + timedelta(days=resolve(interval))


def new_schedule(
    equipment_type: EquipmentType,
    created_at: Optional[datetime] = None,
    interval: Optional[Union[str, dict, IntervalSpec]] = None,
    overrides: Optional[Mapping[EquipmentType, IntervalSpec]] = None,
) -> MaintenanceSchedule:
    equipment_type = coerce_equipment_type(equipment_type)
    created_at = created_at or utcnow()
    spec = parse_interval(interval) if interval is not None else default_interval(equipment_type, overrides)
    return MaintenanceSchedule(
        equipment_type=equipment_type,
        task_description=f"Routine maintenance of {equipment_type.value}",
        interval=spec,
        created_at=created_at,
        next_due=compute_next_due(created_at, spec),
    )


def advance(schedule: MaintenanceSchedule, performed_at: datetime) -> MaintenanceSchedule:
    """Return the schedule rolled forward from an event performed at `performed_at`."""
    return schedule.model_copy(
        update={
            "last_performed": performed_at,
            "next_due": compute_next_due(performed_at, schedule.interval),
        }
    )


def find_schedule(machine: Machine, equipment_type: EquipmentType) -> Optional[MaintenanceSchedule]:
    equipment_type = coerce_equipment_type(equipment_type)
    for schedule in machine.maintenance_schedules:
        if schedule.equipment_type == equipment_type:
            return schedule
    return None


def ensure_schedule(
    machine: Machine,
    equipment_type: EquipmentType,
    now: Optional[datetime] = None,
    overrides: Optional[Mapping[EquipmentType, IntervalSpec]] = None,
) -> Tuple[Machine, MaintenanceSchedule, bool]:
    """
    Return the machine's schedule for an equipment type, attaching a default
    one if none exists.

    Returns:
        (machine, schedule, created) where machine is unchanged when created is False
    """
    existing = find_schedule(machine, equipment_type)
    if existing is not None:
        return machine, existing, False

    schedule = new_schedule(equipment_type, created_at=now, overrides=overrides)
    updated = machine.model_copy(
        update={"maintenance_schedules": [*machine.maintenance_schedules, schedule]}
    )
    logger.info(
        "schedule_bootstrapped",
        machine_id=machine.id,
        equipment_type=schedule.equipment_type.value,
        interval=schedule.interval.period.value,
        next_due=schedule.next_due.isoformat(),
    )
    return updated, schedule, True


def replace_schedule(machine: Machine, schedule: MaintenanceSchedule) -> Machine:
    schedules = [schedule if s.id == schedule.id else s for s in machine.maintenance_schedules]
    return machine.model_copy(update={"maintenance_schedules": schedules})


def days_until_due(schedule: MaintenanceSchedule, now: Optional[datetime] = None) -> int:
    now = now or utcnow()
    return (schedule.next_due - now).days


def is_overdue(schedule: MaintenanceSchedule, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    return schedule.next_due < now
