"""Domain events emitted after committed state changes.

Events are consumed by live sessions (via the broadcaster) and by the
external notification dispatcher. They serialize to camelCase JSON.
"""

from collections.abc import Mapping
from datetime import date, datetime, time
from typing import Any, ClassVar, Self
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from clinicflow.core.events import appointment_topic, queue_topic
from clinicflow.schemas.queues import QueueAction


class DomainEvent(BaseModel):
    """Base class for events published by the scheduling core."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    event_type: ClassVar[str]

    updated_at: datetime

    def topics(self) -> list[str]:
        """Live topics the event belongs to."""
        raise NotImplementedError

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready body with the event type included."""
        return {"type": self.event_type, **self.model_dump(mode="json", by_alias=True)}


class AppointmentEvent(DomainEvent):
    """Fields shared by every appointment event."""

    appointment_id: UUID
    doctor_id: UUID
    patient_id: UUID
    patient_name: str
    appointment_date: date
    appointment_time: time
    status: str
    token: int | None = None

    def topics(self) -> list[str]:
        return [appointment_topic(self.appointment_id)]

    @classmethod
    def from_row(cls, row: Mapping[str, Any], **extra: Any) -> Self:
        """Build an event from an appointment row."""
        return cls(
            appointment_id=row["id"],
            doctor_id=row["doctor_id"],
            patient_id=row["patient_id"],
            patient_name=row["patient_name"],
            appointment_date=row["appointment_date"],
            appointment_time=row["appointment_time"],
            status=row["status"],
            token=row["queue_token"],
            updated_at=row["updated_at"],
            **extra,
        )


class AppointmentCreated(AppointmentEvent):
    """A slot was booked."""

    event_type: ClassVar[str] = "AppointmentCreated"

    consultation_type: str


class AppointmentStatusChanged(AppointmentEvent):
    """An appointment moved through the lifecycle."""

    event_type: ClassVar[str] = "AppointmentStatusChanged"

    old_status: str
    new_status: str
    actor_role: str | None = None


class AppointmentRescheduled(AppointmentEvent):
    """An appointment moved to another slot."""

    event_type: ClassVar[str] = "AppointmentRescheduled"

    previous_date: date
    previous_time: time


class QueueAdvanced(DomainEvent):
    """A queue changed or re-announced its serving token."""

    event_type: ClassVar[str] = "QueueAdvanced"

    doctor_id: UUID
    queue_date: date = Field(..., alias="date")
    current_serving_token: int | None = None
    waiting_count: int
    is_paused: bool = False
    action: QueueAction
    token: int | None = None
    appointment_id: UUID | None = None
    patient_name: str | None = None
    status: str | None = None

    def topics(self) -> list[str]:
        return [queue_topic(self.doctor_id, self.queue_date)]
