"""Appointment endpoints."""

from datetime import date
from uuid import UUID

import structlog
from fastapi import APIRouter, Query, status

from clinicflow.core.exceptions import AppException, ForbiddenException
from clinicflow.dependencies import AppClock, Cache, CurrentActor, DatabaseSession, Publisher
from clinicflow.schemas.actors import Actor
from clinicflow.schemas.appointments import (
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentReschedule,
    AppointmentResponse,
    AppointmentStatus,
    AppointmentStatusUpdate,
    MissedSweepRequest,
    MissedSweepResponse,
)
from clinicflow.services.appointment_service import AppointmentService
from clinicflow.services.queue_service import QueueService
from clinicflow.services.slot_allocator import SlotAllocator

router = APIRouter()

logger = structlog.get_logger(__name__)


@router.post(
    "/",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Book a slot",
)
async def create_appointment(
    data: AppointmentCreate,
    current_actor: CurrentActor,
    db: DatabaseSession,
    publisher: Publisher,
    cache_manager: Cache,
    clock: AppClock,
) -> AppointmentResponse:
    """
    Book a slot with a doctor.

    Patients book for themselves; staff pass ``patient_id`` to book on a
    patient's behalf.

    Raises:
        SlotUnavailable: If the time is not an offered slot
        SlotConflict: If the slot was taken first
    """
    allocator = SlotAllocator(db, publisher, clock, cache_manager)
    return await allocator.book_slot(current_actor, data)


@router.get(
    "/",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="List appointments",
)
async def list_appointments(
    current_actor: CurrentActor,
    db: DatabaseSession,
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    doctor_id: UUID | None = Query(None),
    patient_id: UUID | None = Query(None),
    appointment_date: date | None = Query(None, alias="date"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> AppointmentListResponse:
    """
    List appointments with filtering.

    Args:
        current_actor: Caller identity
        db: Database session
        status_filter: Filter by status
        doctor_id: Filter by doctor ID
        patient_id: Filter by patient ID (staff only)
        appointment_date: Filter by day
        page: Page number
        page_size: Items per page

    Returns:
        Paginated list of appointments
    """
    filters = AppointmentFilters(
        status=status_filter,
        doctor_id=doctor_id,
        patient_id=patient_id,
        appointment_date=appointment_date,
        page=page,
        page_size=page_size,
    )

    service = AppointmentService(db)
    return await service.list_appointments(current_actor, filters)


@router.post(
    "/missed-sweep",
    response_model=MissedSweepResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Mark past confirmed appointments as missed",
)
async def missed_sweep(
    data: MissedSweepRequest,
    current_actor: CurrentActor,
    db: DatabaseSession,
    publisher: Publisher,
    clock: AppClock,
) -> MissedSweepResponse:
    """Run the missed-appointment sweep (staff and the system timer only)."""
    if not current_actor.is_staff:
        raise ForbiddenException("Only staff can run the missed sweep")

    service = AppointmentService(db, publisher, clock)
    return await service.mark_missed(data.before_date)


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    current_actor: CurrentActor,
    db: DatabaseSession,
) -> AppointmentResponse:
    """
    Get a specific appointment by ID.

    Raises:
        NotFoundException: If appointment not found
        ForbiddenException: If the caller has no access
    """
    service = AppointmentService(db)
    return await service.get_appointment(current_actor, appointment_id)


async def _sync_queue(
    queue_service: QueueService,
    actor: Actor,
    appointment: AppointmentResponse,
    today: date,
) -> bool:
    """
    Keep today's queue in step with a status change.

    Runs after the status change has committed. A failure here leaves the
    appointment as it is; staff can enqueue or skip by hand.

    Returns:
        True if the queue was touched
    """
    try:
        if appointment.status == AppointmentStatus.CANCELLED:
            return await queue_service.withdraw(appointment.id) is not None
        if appointment.status in (AppointmentStatus.COMPLETED, AppointmentStatus.MISSED):
            finished = await queue_service.finish(appointment.id)
            withdrawn = await queue_service.withdraw(appointment.id)
            return finished is not None or withdrawn is not None
        if (
            appointment.status == AppointmentStatus.CONFIRMED
            and appointment.appointment_date == today
        ):
            await queue_service.enqueue(actor, appointment.id)
            return True
    except AppException as e:
        logger.warning(
            "queue_follow_up_failed",
            appointment_id=str(appointment.id),
            status=appointment.status.value,
            error=e.message,
        )
    return False


@router.patch(
    "/{appointment_id}/status",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Update appointment status",
)
async def update_appointment_status(
    appointment_id: UUID,
    data: AppointmentStatusUpdate,
    current_actor: CurrentActor,
    db: DatabaseSession,
    publisher: Publisher,
    clock: AppClock,
) -> AppointmentResponse:
    """
    Move an appointment through its lifecycle (confirm, cancel, complete, miss).

    Confirming an appointment for today also puts it into today's queue;
    cancelling one that is waiting withdraws it from the queue, and
    completing or missing one closes its queue entry.

    Raises:
        InvalidTransition: If the lifecycle forbids the move
        StaleState: If ``expected_status`` no longer matches
    """
    service = AppointmentService(db, publisher, clock)
    appointment = await service.transition(
        current_actor, appointment_id, data.status, data.expected_status
    )

    queue_service = QueueService(db, publisher, clock)
    if await _sync_queue(queue_service, current_actor, appointment, clock.today()):
        appointment = await service.get_appointment(current_actor, appointment_id)

    return appointment


@router.post(
    "/{appointment_id}/reschedule",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Reschedule appointment",
)
async def reschedule_appointment(
    appointment_id: UUID,
    data: AppointmentReschedule,
    current_actor: CurrentActor,
    db: DatabaseSession,
    publisher: Publisher,
    cache_manager: Cache,
    clock: AppClock,
) -> AppointmentResponse:
    """
    Move an appointment to another free slot.

    Raises:
        SlotUnavailable: If the target is not an offered slot
        SlotConflict: If the target slot is taken
    """
    allocator = SlotAllocator(db, publisher, clock, cache_manager)
    return await allocator.reschedule_slot(
        current_actor, appointment_id, data.appointment_date, data.appointment_time
    )
