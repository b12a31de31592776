"""Queue tables using SQLAlchemy Core."""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    PrimaryKeyConstraint,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)

from clinicflow.models.base import metadata

# One row per doctor per day: token counter and serving pointer
queue_states = Table(
    "queue_states",
    metadata,
    Column("doctor_id", Uuid, nullable=False),
    Column("queue_date", Date, nullable=False),
    Column("next_token", Integer, nullable=False, server_default=text("1")),
    Column("current_serving_token", Integer, nullable=True),
    Column("is_paused", Boolean, nullable=False, server_default=text("false")),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    PrimaryKeyConstraint("doctor_id", "queue_date", name="pk_queue_states"),
)

queue_entries = Table(
    "queue_entries",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("doctor_id", Uuid, nullable=False),
    Column("queue_date", Date, nullable=False),
    Column("token", Integer, nullable=False),
    Column(
        "appointment_id",
        Uuid,
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("is_priority", Boolean, nullable=False, server_default=text("false")),
    Column("state", Text, nullable=False, server_default="WAITING"),
    Column("enqueued_at", DateTime(timezone=True), nullable=False),
    Column("called_at", DateTime(timezone=True), nullable=True),
    Column("finished_at", DateTime(timezone=True), nullable=True),
    UniqueConstraint("doctor_id", "queue_date", "token", name="uq_queue_entries_token"),
    CheckConstraint(
        "state IN ('WAITING', 'SERVING', 'DONE', 'SKIPPED')",
        name="queue_entries_state_check",
    ),
)

# An appointment holds at most one live token at a time
Index(
    "uq_queue_entries_active_appointment",
    queue_entries.c.appointment_id,
    unique=True,
    postgresql_where=text("state IN ('WAITING', 'SERVING')"),
    sqlite_where=text("state IN ('WAITING', 'SERVING')"),
)

# At most one patient is being served per queue
Index(
    "uq_queue_entries_serving",
    queue_entries.c.doctor_id,
    queue_entries.c.queue_date,
    unique=True,
    postgresql_where=text("state = 'SERVING'"),
    sqlite_where=text("state = 'SERVING'"),
)
