"""Initial migration - scheduling and queue tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade database schema."""
    # Appointments
    op.create_table(
        "appointments",
        sa.Column("id", postgresql.UUID(), nullable=False),
        sa.Column("patient_id", postgresql.UUID(), nullable=False),
        sa.Column("doctor_id", postgresql.UUID(), nullable=False),
        sa.Column("patient_name", sa.Text(), nullable=False),
        sa.Column("appointment_date", sa.Date(), nullable=False),
        sa.Column("appointment_time", sa.Time(), nullable=False),
        sa.Column("consultation_type", sa.Text(), server_default="IN_PERSON", nullable=False),
        sa.Column("reason_for_visit", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), server_default="PENDING", nullable=False),
        sa.Column("queue_token", sa.Integer(), nullable=True),
        sa.Column("created_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("cancelled_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'COMPLETED', 'CANCELLED', 'MISSED')",
            name="appointments_status_check",
        ),
        sa.CheckConstraint(
            "consultation_type IN ('IN_PERSON', 'TELEMEDICINE')",
            name="appointments_consultation_type_check",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_appointments_patient_id", "appointments", ["patient_id"])
    op.create_index("ix_appointments_doctor_id", "appointments", ["doctor_id"])
    op.create_index(
        "idx_appointments_doctor_date", "appointments", ["doctor_id", "appointment_date"]
    )
    # One live booking per doctor slot
    op.create_index(
        "uq_appointments_active_slot",
        "appointments",
        ["doctor_id", "appointment_date", "appointment_time"],
        unique=True,
        postgresql_where=sa.text("status <> 'CANCELLED'"),
    )

    # Availability (maintained by the doctor directory)
    op.create_table(
        "doctor_availability",
        sa.Column("id", postgresql.UUID(), nullable=False),
        sa.Column("doctor_id", postgresql.UUID(), nullable=False),
        sa.Column("day_of_week", sa.SmallInteger(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("slot_duration_minutes", sa.Integer(), server_default="30", nullable=False),
        sa.Column("max_patients_per_slot", sa.Integer(), server_default="1", nullable=False),
        sa.Column("supports_in_person", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column(
            "supports_telemedicine", sa.Boolean(), server_default=sa.text("false"), nullable=False
        ),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("created_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.CheckConstraint("day_of_week BETWEEN 0 AND 6", name="doctor_availability_day_check"),
        sa.CheckConstraint("start_time < end_time", name="doctor_availability_window_check"),
        sa.CheckConstraint("slot_duration_minutes > 0", name="doctor_availability_duration_check"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_doctor_availability_doctor_id", "doctor_availability", ["doctor_id"])

    op.create_table(
        "slot_blocks",
        sa.Column("id", postgresql.UUID(), nullable=False),
        sa.Column("doctor_id", postgresql.UUID(), nullable=False),
        sa.Column("block_date", sa.Date(), nullable=False),
        sa.Column("block_time", sa.Time(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_slot_blocks_doctor_id", "slot_blocks", ["doctor_id"])

    # Queues
    op.create_table(
        "queue_states",
        sa.Column("doctor_id", postgresql.UUID(), nullable=False),
        sa.Column("queue_date", sa.Date(), nullable=False),
        sa.Column("next_token", sa.Integer(), server_default=sa.text("1"), nullable=False),
        sa.Column("current_serving_token", sa.Integer(), nullable=True),
        sa.Column("is_paused", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("created_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("doctor_id", "queue_date", name="pk_queue_states"),
    )

    op.create_table(
        "queue_entries",
        sa.Column("id", postgresql.UUID(), nullable=False),
        sa.Column("doctor_id", postgresql.UUID(), nullable=False),
        sa.Column("queue_date", sa.Date(), nullable=False),
        sa.Column("token", sa.Integer(), nullable=False),
        sa.Column("appointment_id", postgresql.UUID(), nullable=False),
        sa.Column("is_priority", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("state", sa.Text(), server_default="WAITING", nullable=False),
        sa.Column("enqueued_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("called_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("finished_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.CheckConstraint(
            "state IN ('WAITING', 'SERVING', 'DONE', 'SKIPPED')",
            name="queue_entries_state_check",
        ),
        sa.ForeignKeyConstraint(["appointment_id"], ["appointments.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("doctor_id", "queue_date", "token", name="uq_queue_entries_token"),
    )
    op.create_index("ix_queue_entries_appointment_id", "queue_entries", ["appointment_id"])
    op.create_index(
        "uq_queue_entries_active_appointment",
        "queue_entries",
        ["appointment_id"],
        unique=True,
        postgresql_where=sa.text("state IN ('WAITING', 'SERVING')"),
    )
    # At most one patient served per queue
    op.create_index(
        "uq_queue_entries_serving",
        "queue_entries",
        ["doctor_id", "queue_date"],
        unique=True,
        postgresql_where=sa.text("state = 'SERVING'"),
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index("uq_queue_entries_serving", table_name="queue_entries")
    op.drop_index("uq_queue_entries_active_appointment", table_name="queue_entries")
    op.drop_index("ix_queue_entries_appointment_id", table_name="queue_entries")
    op.drop_table("queue_entries")
    op.drop_table("queue_states")

    op.drop_index("ix_slot_blocks_doctor_id", table_name="slot_blocks")
    op.drop_table("slot_blocks")

    op.drop_index("ix_doctor_availability_doctor_id", table_name="doctor_availability")
    op.drop_table("doctor_availability")

    op.drop_index("uq_appointments_active_slot", table_name="appointments")
    op.drop_index("idx_appointments_doctor_date", table_name="appointments")
    op.drop_index("ix_appointments_doctor_id", table_name="appointments")
    op.drop_index("ix_appointments_patient_id", table_name="appointments")
    op.drop_table("appointments")
