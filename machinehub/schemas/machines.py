import uuid
from datetime import datetime, timezone
from typing import List, Optional, Dict, Union
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .auth import Role


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class CamelModel(BaseModel):
    """Serializes with camelCase keys (the cache and API wire shape)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Enums
class EquipmentType(str, Enum):
    truck = "truck"
    crane = "crane"
    winch = "winch"
    hooklift = "hooklift"


class MachineStatus(str, Enum):
    active = "active"
    inactive = "inactive"
    maintenance = "maintenance"
    repair = "repair"


class TaskStatus(str, Enum):
    pending = "pending"
    in_progress = "in-progress"
    completed = "completed"


class TaskPriority(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class IntervalPeriod(str, Enum):
    daily = "daily"
    weekly = "weekly"
    biweekly = "biweekly"
    monthly = "monthly"
    quarterly = "quarterly"
    yearly = "yearly"
    custom = "custom"


class IntervalUnit(str, Enum):
    days = "days"
    weeks = "weeks"
    months = "months"


# Interval specification
class IntervalSpec(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    period: IntervalPeriod
    length: Optional[int] = None  # only for custom
    unit: Optional[IntervalUnit] = None  # only for custom

    @classmethod
    def named(cls, period: Union[str, IntervalPeriod]) -> "IntervalSpec":
        return cls(period=IntervalPeriod(period))

    @classmethod
    def custom(cls, length: int, unit: Union[str, IntervalUnit] = IntervalUnit.days) -> "IntervalSpec":
        return cls(period=IntervalPeriod.custom, length=length, unit=IntervalUnit(unit))


class Location(CamelModel):
    id: Optional[str] = None
    name: str
    address: str = ""
    lat: Optional[float] = None
    lon: Optional[float] = None


# Equipment
class Equipment(CamelModel):
    id: str = Field(default_factory=lambda: new_id("equipment"))
    type: EquipmentType
    brand: Optional[str] = None
    model: Optional[str] = None
    serial_number: Optional[str] = None
    year: Optional[str] = None
    specifications: Dict[str, str] = Field(default_factory=dict)


# History records are immutable once created
class ServiceRecord(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(default_factory=lambda: new_id("service"))
    date: datetime
    performed_by: str
    equipment_type: EquipmentType
    description: str
    issues: Optional[str] = None
    odometer_reading: Optional[int] = None


class LubricationRecord(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(default_factory=lambda: new_id("lubrication"))
    date: datetime
    performed_by: str
    equipment_type: EquipmentType
    notes: Optional[str] = None


class Task(CamelModel):
    id: str = Field(default_factory=lambda: new_id("task"))
    title: str
    description: str = ""
    due_date: datetime
    created_at: datetime = Field(default_factory=utcnow)
    status: TaskStatus = TaskStatus.pending
    priority: Optional[TaskPriority] = None
    assigned_to: Optional[str] = None
    equipment_type: EquipmentType


class MaintenanceSchedule(CamelModel):
    id: str = Field(default_factory=lambda: new_id("schedule"))
    equipment_type: EquipmentType
    task_description: str = ""
    interval: IntervalSpec
    created_at: datetime = Field(default_factory=utcnow)
    last_performed: Optional[datetime] = None
    next_due: datetime


class Oil(CamelModel):
    """An oil or grease used on the machine, with its change dates."""

    id: str = Field(default_factory=lambda: new_id("oil"))
    name: str
    type: str
    viscosity: str
    specification: Optional[str] = None
    applicable_equipment: List[EquipmentType] = Field(default_factory=list)
    quantity: Optional[str] = None
    notes: Optional[str] = None
    last_changed: Optional[datetime] = None
    next_change: Optional[datetime] = None


class Machine(CamelModel):
    id: str = Field(default_factory=lambda: new_id("machine"))
    name: str
    model: str
    serial_number: str
    description: Optional[str] = None
    brand: Optional[str] = None
    year: Optional[str] = None
    status: MachineStatus = MachineStatus.active
    location: Optional[Union[Location, str]] = None
    equipment: List[Equipment] = Field(default_factory=list)
    service_history: List[ServiceRecord] = Field(default_factory=list)
    lubrication_history: List[LubricationRecord] = Field(default_factory=list)
    tasks: List[Task] = Field(default_factory=list)
    maintenance_schedules: List[MaintenanceSchedule] = Field(default_factory=list)
    oils: List[Oil] = Field(default_factory=list)
    edit_permissions: List[Role] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    def equipment_types(self) -> List[EquipmentType]:
        seen: List[EquipmentType] = []
        for item in self.equipment:
            if item.type not in seen:
                seen.append(item.type)
        return seen

    def find_task(self, task_id: str) -> Optional[Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None


# Scan payload encoded in machine QR codes
class ScanPayload(CamelModel):
    id: str
    name: str
    model: str
    serial_number: str


# Request / response schemas
def _require_text(value: Optional[str]) -> str:
    if value is None or not str(value).strip():
        raise ValueError("must not be blank")
    return str(value).strip()


class MachineCreate(CamelModel):
    name: str
    model: str
    serial_number: str
    description: Optional[str] = None
    brand: Optional[str] = None
    year: Optional[str] = None
    status: MachineStatus = MachineStatus.active
    location: Optional[Union[Location, str]] = None
    equipment: List[Equipment]
    edit_permissions: List[Role] = Field(default_factory=list)

    @field_validator("name", "model", "serial_number")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        return _require_text(v)

    @field_validator("equipment")
    @classmethod
    def _at_least_one_equipment(cls, v: List[Equipment]) -> List[Equipment]:
        if not v:
            raise ValueError("a machine needs at least one equipment item")
        return v


class MachineUpdate(CamelModel):
    name: Optional[str] = None
    model: Optional[str] = None
    serial_number: Optional[str] = None
    description: Optional[str] = None
    brand: Optional[str] = None
    year: Optional[str] = None
    status: Optional[MachineStatus] = None
    location: Optional[Union[Location, str]] = None
    equipment: Optional[List[Equipment]] = None
    edit_permissions: Optional[List[Role]] = None

    @field_validator("name", "model", "serial_number")
    @classmethod
    def _not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _require_text(v)

    @field_validator("equipment")
    @classmethod
    def _at_least_one_equipment(cls, v: Optional[List[Equipment]]) -> Optional[List[Equipment]]:
        if v is not None and not v:
            raise ValueError("a machine needs at least one equipment item")
        return v


class ServiceRecordCreate(CamelModel):
    equipment_type: EquipmentType
    description: str
    issues: Optional[str] = None
    odometer_reading: Optional[int] = None
    performed_at: Optional[datetime] = None


class LubricationRecordCreate(CamelModel):
    equipment_type: EquipmentType
    notes: str = ""
    performed_at: Optional[datetime] = None


class TaskCreate(CamelModel):
    title: str
    description: str = ""
    due_date: datetime
    equipment_type: EquipmentType
    priority: Optional[TaskPriority] = None


class OilCreate(CamelModel):
    name: str
    type: str
    viscosity: str
    specification: Optional[str] = None
    applicable_equipment: List[EquipmentType] = Field(default_factory=list)
    quantity: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("name", "type", "viscosity")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        return _require_text(v)


class TaskComplete(CamelModel):
    completed_by: Optional[str] = None


class EventResponse(CamelModel):
    machine: Machine
    record: Union[ServiceRecord, LubricationRecord]
    task: Task


class ScanRequest(CamelModel):
    code: Optional[str] = None
    payload: Optional[ScanPayload] = None


class ScanResponse(CamelModel):
    machine_id: str
    name: str
    location: str


class SyncStatusResponse(CamelModel):
    pending: int
    warnings: List[Dict[str, Union[str, int]]]
