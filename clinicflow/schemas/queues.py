"""Queue schemas for request/response validation."""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class QueueEntryState(str, Enum):
    """Queue entry state enumeration."""

    WAITING = "WAITING"
    SERVING = "SERVING"
    DONE = "DONE"
    SKIPPED = "SKIPPED"


LIVE_ENTRY_STATES = frozenset({QueueEntryState.WAITING, QueueEntryState.SERVING})


class QueueAction(str, Enum):
    """What a queue event announces."""

    ENQUEUED = "ENQUEUED"
    CALLED = "CALLED"
    RECALLED = "RECALLED"
    SKIPPED = "SKIPPED"
    PAUSED = "PAUSED"
    RESUMED = "RESUMED"
    COMPLETED = "COMPLETED"


class EnqueueRequest(BaseModel):
    """Schema for putting an appointment into today's queue."""

    appointment_id: UUID
    priority: bool = Field(False, description="Serve ahead of regular waiting entries")


class QueueEntryResponse(BaseModel):
    """Schema for a queue entry."""

    id: UUID
    doctor_id: UUID
    queue_date: date
    token: int
    appointment_id: UUID
    patient_name: str | None = None
    is_priority: bool = False
    state: QueueEntryState
    enqueued_at: datetime
    called_at: datetime | None = None
    finished_at: datetime | None = None

    model_config = {"from_attributes": True}


class QueueStats(BaseModel):
    """Entry counts by state."""

    total: int = 0
    waiting: int = 0
    serving: int = 0
    done: int = 0
    skipped: int = 0


class QueueStatusResponse(BaseModel):
    """Queue counters after a control operation."""

    doctor_id: UUID
    queue_date: date
    current_serving_token: int | None = None
    waiting_count: int
    is_paused: bool
    entry: QueueEntryResponse | None = None


class QueueSnapshot(BaseModel):
    """Full view of one doctor's queue for one day."""

    doctor_id: UUID
    queue_date: date
    current_serving_token: int | None = None
    next_token: int = 1
    is_paused: bool = False
    waiting_count: int = 0
    stats: QueueStats
    entries: list[QueueEntryResponse]


class QueuePosition(BaseModel):
    """Where one appointment stands in its queue."""

    appointment_id: UUID
    doctor_id: UUID
    queue_date: date
    token: int
    state: QueueEntryState
    current_serving_token: int | None = None
    patients_ahead: int
    estimated_wait_minutes: int
    is_your_turn: bool


class QueueDatesResponse(BaseModel):
    """Days for which a doctor has a queue."""

    doctor_id: UUID
    dates: list[date]
