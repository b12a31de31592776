"""Live queue endpoints."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, status

from clinicflow.dependencies import AppClock, CurrentActor, DatabaseSession, Publisher
from clinicflow.schemas.queues import (
    EnqueueRequest,
    QueueDatesResponse,
    QueueEntryResponse,
    QueuePosition,
    QueueSnapshot,
    QueueStatusResponse,
)
from clinicflow.services.queue_service import QueueService

router = APIRouter()


@router.post(
    "/entries",
    response_model=QueueEntryResponse,
    status_code=status.HTTP_200_OK,
    summary="Join today's queue",
)
async def enqueue(
    data: EnqueueRequest,
    current_actor: CurrentActor,
    db: DatabaseSession,
    publisher: Publisher,
    clock: AppClock,
) -> QueueEntryResponse:
    """
    Issue a queue token for one of today's appointments.

    Repeating the call while the appointment is waiting or being served
    returns the same token.
    """
    service = QueueService(db, publisher, clock)
    return await service.enqueue(current_actor, data.appointment_id, data.priority)


@router.get(
    "/appointments/{appointment_id}/position",
    response_model=QueuePosition,
    summary="Queue position of an appointment",
)
async def get_position(
    appointment_id: UUID,
    current_actor: CurrentActor,
    db: DatabaseSession,
    clock: AppClock,
) -> QueuePosition:
    """Token, patients ahead and estimated wait for an appointment."""
    service = QueueService(db, clock=clock)
    return await service.position(current_actor, appointment_id)


@router.get(
    "/{doctor_id}/dates",
    response_model=QueueDatesResponse,
    summary="Days with a queue",
)
async def list_queue_dates(
    doctor_id: UUID,
    current_actor: CurrentActor,
    db: DatabaseSession,
) -> QueueDatesResponse:
    """List the days on which a doctor's queue was opened."""
    service = QueueService(db)
    return await service.list_dates(doctor_id)


@router.get(
    "/{doctor_id}/{queue_date}",
    response_model=QueueSnapshot,
    summary="Queue snapshot",
)
async def get_queue(
    doctor_id: UUID,
    queue_date: date,
    current_actor: CurrentActor,
    db: DatabaseSession,
) -> QueueSnapshot:
    """
    Current state of a doctor's queue for one day.

    Live clients fetch this after (re)subscribing, then apply events whose
    ``seq`` follows.
    """
    service = QueueService(db)
    return await service.snapshot(doctor_id, queue_date)


@router.post(
    "/{doctor_id}/{queue_date}/activate",
    response_model=list[QueueEntryResponse],
    summary="Enqueue the day's confirmed appointments",
)
async def activate_queue(
    doctor_id: UUID,
    queue_date: date,
    current_actor: CurrentActor,
    db: DatabaseSession,
    publisher: Publisher,
    clock: AppClock,
) -> list[QueueEntryResponse]:
    """Issue tokens, in slot order, to every confirmed appointment still without one."""
    service = QueueService(db, publisher, clock)
    return await service.activate_day(current_actor, doctor_id, queue_date)


@router.post(
    "/{doctor_id}/{queue_date}/call-next",
    response_model=QueueStatusResponse,
    summary="Call the next patient",
)
async def call_next(
    doctor_id: UUID,
    queue_date: date,
    current_actor: CurrentActor,
    db: DatabaseSession,
    publisher: Publisher,
    clock: AppClock,
) -> QueueStatusResponse:
    """
    Finish the current patient and call the next waiting token.

    Raises:
        QueueEmpty: If nobody is waiting
        QueuePaused: If the queue is paused
    """
    service = QueueService(db, publisher, clock)
    return await service.call_next(current_actor, doctor_id, queue_date)


@router.post(
    "/{doctor_id}/{queue_date}/recall",
    response_model=QueueStatusResponse,
    summary="Recall the current token",
)
async def recall(
    doctor_id: UUID,
    queue_date: date,
    current_actor: CurrentActor,
    db: DatabaseSession,
    publisher: Publisher,
    clock: AppClock,
) -> QueueStatusResponse:
    """Announce the current serving token again."""
    service = QueueService(db, publisher, clock)
    return await service.recall(current_actor, doctor_id, queue_date)


@router.post(
    "/{doctor_id}/{queue_date}/pause",
    response_model=QueueStatusResponse,
    summary="Pause the queue",
)
async def pause(
    doctor_id: UUID,
    queue_date: date,
    current_actor: CurrentActor,
    db: DatabaseSession,
    publisher: Publisher,
    clock: AppClock,
) -> QueueStatusResponse:
    service = QueueService(db, publisher, clock)
    return await service.pause(current_actor, doctor_id, queue_date)


@router.post(
    "/{doctor_id}/{queue_date}/resume",
    response_model=QueueStatusResponse,
    summary="Resume the queue",
)
async def resume(
    doctor_id: UUID,
    queue_date: date,
    current_actor: CurrentActor,
    db: DatabaseSession,
    publisher: Publisher,
    clock: AppClock,
) -> QueueStatusResponse:
    service = QueueService(db, publisher, clock)
    return await service.resume(current_actor, doctor_id, queue_date)


@router.post(
    "/{doctor_id}/{queue_date}/entries/{token}/skip",
    response_model=QueueStatusResponse,
    summary="Skip a token",
)
async def skip(
    doctor_id: UUID,
    queue_date: date,
    token: int,
    current_actor: CurrentActor,
    db: DatabaseSession,
    publisher: Publisher,
    clock: AppClock,
) -> QueueStatusResponse:
    """
    Mark a waiting or serving token as skipped.

    Raises:
        NotFoundException: If the token was never issued
        InvalidTransition: If the token is already done or skipped
    """
    service = QueueService(db, publisher, clock)
    return await service.skip(current_actor, doctor_id, queue_date, token)
