"""Availability and slot proposal schemas."""

import datetime as dt
from datetime import date, time
from uuid import UUID

from pydantic import BaseModel, Field

from clinicflow.schemas.appointments import ConsultationType


class DoctorAvailability(BaseModel):
    """One recurring availability window for a doctor."""

    id: UUID
    doctor_id: UUID
    day_of_week: int = Field(..., ge=0, le=6, description="0 = Monday")
    start_time: time
    end_time: time
    slot_duration_minutes: int = Field(..., gt=0)
    max_patients_per_slot: int = Field(1, ge=0)
    supports_in_person: bool = True
    supports_telemedicine: bool = False
    is_active: bool = True

    model_config = {"from_attributes": True}

    def supports(self, consultation_type: ConsultationType) -> bool:
        """Check whether the window offers a consultation type."""
        if consultation_type == ConsultationType.TELEMEDICINE:
            return self.supports_telemedicine
        return self.supports_in_person

    @property
    def slot_capacity(self) -> int:
        """Bookings one slot may hold; one live booking per slot at most."""
        return min(self.max_patients_per_slot, 1)


class SlotBlock(BaseModel):
    """A blocked slot or a blocked day."""

    doctor_id: UUID
    block_date: date
    block_time: time | None = None
    reason: str | None = None

    model_config = {"from_attributes": True}


class SlotOption(BaseModel):
    """A free slot offered for booking."""

    start_time: time
    end_time: time
    consultation_type: ConsultationType


class SlotProposalResponse(BaseModel):
    """Free slots for one doctor on one day."""

    doctor_id: UUID
    date: dt.date
    consultation_type: ConsultationType
    slots: list[SlotOption]
