"""Doctor availability tables.

Both tables are maintained by the doctor profile service; the scheduling
core only reads them.
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Integer,
    SmallInteger,
    Table,
    Text,
    Time,
    Uuid,
    text,
)

from clinicflow.models.base import metadata

doctor_availability = Table(
    "doctor_availability",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("doctor_id", Uuid, nullable=False, index=True),
    # 0 = Monday ... 6 = Sunday
    Column("day_of_week", SmallInteger, nullable=False),
    Column("start_time", Time, nullable=False),
    Column("end_time", Time, nullable=False),
    Column("slot_duration_minutes", Integer, nullable=False, server_default=text("30")),
    Column("max_patients_per_slot", Integer, nullable=False, server_default=text("1")),
    Column("supports_in_person", Boolean, nullable=False, server_default=text("true")),
    Column("supports_telemedicine", Boolean, nullable=False, server_default=text("false")),
    Column("is_active", Boolean, nullable=False, server_default=text("true")),
    Column("created_at", DateTime(timezone=True), nullable=True),
    CheckConstraint("day_of_week BETWEEN 0 AND 6", name="doctor_availability_day_check"),
    CheckConstraint("start_time < end_time", name="doctor_availability_window_check"),
    CheckConstraint("slot_duration_minutes > 0", name="doctor_availability_duration_check"),
)

slot_blocks = Table(
    "slot_blocks",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("doctor_id", Uuid, nullable=False, index=True),
    Column("block_date", Date, nullable=False),
    # NULL blocks the whole day
    Column("block_time", Time, nullable=True),
    Column("reason", Text, nullable=True),
)
