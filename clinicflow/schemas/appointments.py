"""Appointment schemas for request/response validation."""

from datetime import date, datetime, time
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    MISSED = "MISSED"

    @property
    def is_terminal(self) -> bool:
        """Terminal states accept no further transitions."""
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.MISSED}
)

ACTIVE_STATUSES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED})


class ConsultationType(str, Enum):
    """Consultation type enumeration."""

    IN_PERSON = "IN_PERSON"
    TELEMEDICINE = "TELEMEDICINE"


class AppointmentCreate(BaseModel):
    """Schema for booking a slot."""

    doctor_id: UUID
    appointment_date: date
    appointment_time: time
    consultation_type: ConsultationType = ConsultationType.IN_PERSON
    reason_for_visit: str | None = Field(None, max_length=1000)
    patient_name: str = Field(..., min_length=1, max_length=200)
    # Only staff may book on behalf of another patient
    patient_id: UUID | None = None

    @field_validator("appointment_time")
    @classmethod
    def strip_seconds(cls, v: time) -> time:
        """Slots start on whole minutes."""
        return v.replace(second=0, microsecond=0, tzinfo=None)


class AppointmentReschedule(BaseModel):
    """Schema for moving an appointment to another slot."""

    appointment_date: date
    appointment_time: time

    @field_validator("appointment_time")
    @classmethod
    def strip_seconds(cls, v: time) -> time:
        """Slots start on whole minutes."""
        return v.replace(second=0, microsecond=0, tzinfo=None)


class AppointmentStatusUpdate(BaseModel):
    """Schema for updating appointment status."""

    status: AppointmentStatus
    expected_status: AppointmentStatus | None = Field(
        None,
        description="Status the caller last saw; the update fails with StaleState if it moved",
    )


class AppointmentResponse(BaseModel):
    """Schema for appointment response."""

    id: UUID
    patient_id: UUID
    patient_name: str
    doctor_id: UUID
    appointment_date: date
    appointment_time: time
    consultation_type: ConsultationType
    reason_for_visit: str | None = None
    status: AppointmentStatus
    queue_token: int | None = None
    created_at: datetime
    updated_at: datetime
    cancelled_at: datetime | None = None

    model_config = {"from_attributes": True}


class AppointmentListResponse(BaseModel):
    """Schema for paginated appointment list response."""

    total: int
    page: int
    page_size: int
    items: list[AppointmentResponse]


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering."""

    status: AppointmentStatus | None = None
    doctor_id: UUID | None = None
    patient_id: UUID | None = None
    appointment_date: date | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class MissedSweepRequest(BaseModel):
    """Schema for the missed-appointment sweep."""

    before_date: date | None = Field(
        None,
        description="Mark CONFIRMED appointments dated before this day; defaults to today",
    )


class MissedSweepResponse(BaseModel):
    """Result of the missed-appointment sweep."""

    marked: list[UUID]
    skipped: int = Field(0, description="Appointments that changed concurrently and were left alone")
