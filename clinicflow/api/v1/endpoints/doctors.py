"""Doctor slot endpoints."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, status

from clinicflow.dependencies import AppClock, Cache, CurrentActor, DatabaseSession
from clinicflow.schemas.appointments import ConsultationType
from clinicflow.schemas.availability import SlotProposalResponse
from clinicflow.services.slot_allocator import SlotAllocator

router = APIRouter()


@router.get(
    "/doctors/{doctor_id}/slots",
    response_model=SlotProposalResponse,
    status_code=status.HTTP_200_OK,
    tags=["Doctors"],
    summary="List free slots",
)
async def list_free_slots(
    doctor_id: UUID,
    current_actor: CurrentActor,
    db: DatabaseSession,
    cache_manager: Cache,
    clock: AppClock,
    on: date = Query(..., alias="date"),
    consultation_type: ConsultationType = Query(ConsultationType.IN_PERSON),
) -> SlotProposalResponse:
    """
    Propose the free slots of a doctor for one day.

    - **date**: Calendar day (YYYY-MM-DD)
    - **consultation_type**: IN_PERSON or TELEMEDICINE

    Past days, blocked days and fully booked days return an empty list.
    """
    allocator = SlotAllocator(db, clock=clock, cache_manager=cache_manager)
    slots = await allocator.propose_slots(doctor_id, on, consultation_type)
    return SlotProposalResponse(
        doctor_id=doctor_id,
        date=on,
        consultation_type=consultation_type,
        slots=slots,
    )
