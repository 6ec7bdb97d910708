import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Boolean,
    ForeignKey,
    Integer,
    JSON,
    Text,
    Index,
    Uuid,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False, default="viewer")  # admin|mechanic|technician|driver|blacksmith|guest|viewer|customer
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


# =====================
# Machines & maintenance history
# =====================

class MachineRow(Base):
    """One row per machine; equipment and location kept as JSON"""
    __tablename__ = "machines"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    model: Mapped[str] = mapped_column(String(255), nullable=False)
    serial_number: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(50), default="active", index=True)  # active|inactive|maintenance|repair
    equipment: Mapped[Optional[list]] = mapped_column(JSON)  # [{id, type, brand, model, serialNumber, year, specifications}]
    location: Mapped[Optional[dict]] = mapped_column(JSON)  # {"text": "..."} or {name, address, lat, lon}
    description: Mapped[Optional[str]] = mapped_column(Text)
    brand: Mapped[Optional[str]] = mapped_column(String(255))
    year: Mapped[Optional[str]] = mapped_column(String(10))
    edit_permissions: Mapped[Optional[list]] = mapped_column(JSON)  # list of role names
    maintenance_schedules: Mapped[Optional[list]] = mapped_column(JSON)  # full schedule snapshots
    oils: Mapped[Optional[list]] = mapped_column(JSON)  # oil register, newest first
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    tasks = relationship("MachineTaskRow", back_populates="machine", cascade="all, delete-orphan", order_by="MachineTaskRow.position")
    records = relationship("MaintenanceRecordRow", back_populates="machine", cascade="all, delete-orphan", order_by="MaintenanceRecordRow.position")


class MachineTaskRow(Base):
    """Tasks are inserted or updated by id, never deleted on their own"""
    __tablename__ = "machine_tasks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    machine_id: Mapped[str] = mapped_column(String(64), ForeignKey("machines.id", ondelete="CASCADE"), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, default=0)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    due_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(50), default="pending", index=True)  # pending|in-progress|completed
    priority: Mapped[Optional[str]] = mapped_column(String(20))  # low|medium|high|critical
    assigned_to: Mapped[Optional[str]] = mapped_column(String(255))
    equipment_type: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    machine = relationship("MachineRow", back_populates="tasks")

    __table_args__ = (
        Index('idx_machine_task_status', 'machine_id', 'status'),
    )


class MaintenanceRecordRow(Base):
    """Service and lubrication records, append-only"""
    __tablename__ = "maintenance_records"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    machine_id: Mapped[str] = mapped_column(String(64), ForeignKey("machines.id", ondelete="CASCADE"), nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False, index=True)  # service|lubrication
    position: Mapped[int] = mapped_column(Integer, default=0)
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    performed_by: Mapped[str] = mapped_column(String(255), nullable=False)
    equipment_type: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)  # service only
    issues: Mapped[Optional[str]] = mapped_column(Text)  # service only
    odometer_reading: Mapped[Optional[int]] = mapped_column(Integer)  # service only
    notes: Mapped[Optional[str]] = mapped_column(Text)  # lubrication only

    machine = relationship("MachineRow", back_populates="records")

    __table_args__ = (
        Index('idx_record_machine_kind', 'machine_id', 'kind'),
    )
