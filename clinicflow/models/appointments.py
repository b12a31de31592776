"""Appointments table model using SQLAlchemy Core."""

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    Table,
    Text,
    Time,
    Uuid,
    text,
)

from clinicflow.models.base import metadata

# Appointments table
appointments = Table(
    "appointments",
    metadata,
    Column("id", Uuid, primary_key=True),
    # Ownership / references
    Column("patient_id", Uuid, nullable=False, index=True),
    Column("doctor_id", Uuid, nullable=False, index=True),
    # Snapshot fields (denormalized for live event payloads)
    Column("patient_name", Text, nullable=False),
    # Slot
    Column("appointment_date", Date, nullable=False),
    Column("appointment_time", Time, nullable=False),
    Column("consultation_type", Text, nullable=False, server_default="IN_PERSON"),
    Column("reason_for_visit", Text, nullable=True),
    # Status management
    Column("status", Text, nullable=False, server_default="PENDING"),
    Column("queue_token", Integer, nullable=True),
    # Audit fields
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Column("cancelled_at", DateTime(timezone=True), nullable=True),
    # Constraints
    CheckConstraint(
        "status IN ('PENDING', 'CONFIRMED', 'COMPLETED', 'CANCELLED', 'MISSED')",
        name="appointments_status_check",
    ),
    CheckConstraint(
        "consultation_type IN ('IN_PERSON', 'TELEMEDICINE')",
        name="appointments_consultation_type_check",
    ),
)

# One live booking per doctor slot; cancelled rows free the slot again
Index(
    "uq_appointments_active_slot",
    appointments.c.doctor_id,
    appointments.c.appointment_date,
    appointments.c.appointment_time,
    unique=True,
    postgresql_where=text("status <> 'CANCELLED'"),
    sqlite_where=text("status <> 'CANCELLED'"),
)

Index(
    "idx_appointments_doctor_date",
    appointments.c.doctor_id,
    appointments.c.appointment_date,
)
