"""Appointments and appointment history tables using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    MetaData,
    Table,
    Text,
    Uuid,
    func,
    text,
)

# Metadata for the appointment tables
metadata = MetaData()

APPOINTMENT_STATUSES = (
    "PROGRAMADA",
    "CONFIRMADA",
    "PRESENTE",
    "COMPLETADA",
    "CANCELADA",
    "REAGENDADA",
    "NO_ASISTIO",
)

# Statuses that hold their (doctor, instant) slot
SLOT_HOLDING_STATUSES = ("PROGRAMADA", "CONFIRMADA", "PRESENTE", "REAGENDADA")

_status_list = ", ".join(f"'{s}'" for s in APPOINTMENT_STATUSES)
_holding_list = ", ".join(f"'{s}'" for s in SLOT_HOLDING_STATUSES)

# Appointments table
appointments = Table(
    "appointments",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # References (owned by the patient / doctor subsystems)
    Column("patient_id", Uuid, nullable=False, index=True),
    Column("doctor_id", Uuid, nullable=True, index=True),
    # Appointment details
    Column("scheduled_at", DateTime(timezone=True), nullable=False, index=True),
    Column("reasons", JSON, nullable=False),
    Column("is_first_visit", Boolean, nullable=False, server_default=text("false")),
    Column("notes", Text, nullable=True),
    # Status management
    Column("status", Text, nullable=False, server_default="PROGRAMADA", index=True),
    # Audit fields
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    # Constraints
    CheckConstraint(f"status IN ({_status_list})", name="appointments_status_check"),
)

# Authoritative slot guard: one slot-holding appointment per doctor and instant
SLOT_INDEX_NAME = "uq_appointments_doctor_slot_active"

Index(
    SLOT_INDEX_NAME,
    appointments.c.doctor_id,
    appointments.c.scheduled_at,
    unique=True,
    postgresql_where=text(f"doctor_id IS NOT NULL AND status IN ({_holding_list})"),
    sqlite_where=text(f"doctor_id IS NOT NULL AND status IN ({_holding_list})"),
)

# Append-only status change log
appointment_history = Table(
    "appointment_history",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column(
        "appointment_id",
        Uuid,
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("previous_status", Text, nullable=False),
    Column("new_status", Text, nullable=False),
    Column("changed_at", DateTime(timezone=True), nullable=False),
    Column("changed_by", Uuid, nullable=True),
    Column("reason_note", Text, nullable=True),
    # Present only for reschedules
    Column("previous_scheduled_at", DateTime(timezone=True), nullable=True),
    Column("new_scheduled_at", DateTime(timezone=True), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)

Index(
    "ix_appointment_history_appointment_changed",
    appointment_history.c.appointment_id,
    appointment_history.c.changed_at,
)
