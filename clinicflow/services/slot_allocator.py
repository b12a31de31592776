"""Slot proposal, booking and rescheduling."""

from datetime import date, datetime, time, timedelta
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clinicflow.config import settings
from clinicflow.core.clock import Clock, get_clock, new_id
from clinicflow.core.exceptions import (
    BadRequestException,
    ForbiddenException,
    InvalidTransition,
    SlotConflict,
    SlotUnavailable,
    StaleState,
)
from clinicflow.core.locks import KeyedLock, slot_locks
from clinicflow.core.metrics import BOOKINGS
from clinicflow.core.redis_client import CacheManager
from clinicflow.models.queues import queue_entries
from clinicflow.schemas.actors import Actor, ActorRole
from clinicflow.schemas.appointments import (
    AppointmentCreate,
    AppointmentResponse,
    AppointmentStatus,
    ConsultationType,
)
from clinicflow.schemas.availability import SlotOption
from clinicflow.schemas.events import AppointmentCreated, AppointmentRescheduled, DomainEvent
from clinicflow.schemas.queues import LIVE_ENTRY_STATES
from clinicflow.services.availability_service import AvailabilityService
from clinicflow.services.event_publisher import EventPublisher
from clinicflow.services.schedule_store import ScheduleStore

logger = structlog.get_logger(__name__)


def slot_key(doctor_id: UUID, on: date, at: time) -> tuple[str, str, str, str]:
    """Lock key for one bookable slot."""
    return ("slot", str(doctor_id), on.isoformat(), at.isoformat())


class SlotAllocator:
    """
    Hands out appointment slots without double-booking.

    Bookings for one (doctor, date, time) are serialised with an in-process
    keyed lock; the partial unique index on live appointments is the final
    word across processes.
    """

    def __init__(
        self,
        db: AsyncSession,
        publisher: EventPublisher | None = None,
        clock: Clock | None = None,
        cache_manager: CacheManager | None = None,
        locks: KeyedLock | None = None,
    ):
        """Initialize allocator with database session and collaborators."""
        self.db = db
        self.store = ScheduleStore(db)
        self.availability = AvailabilityService(db, cache_manager)
        self.publisher = publisher
        self.clock = clock or get_clock()
        self.locks = locks or slot_locks

    async def _offered(
        self,
        doctor_id: UUID,
        on: date,
        consultation_type: ConsultationType,
    ) -> dict[time, tuple[SlotOption, int]]:
        """Candidate slots for a day with their capacity, before bookings are subtracted."""
        now = self.clock.local_now()
        if on < now.date():
            return {}

        blocks = await self.availability.get_blocks(doctor_id, on)
        if any(block.block_time is None for block in blocks):
            return {}
        blocked = {block.block_time for block in blocks}

        offered: dict[time, tuple[SlotOption, int]] = {}
        for window in await self.availability.get_windows_for_date(doctor_id, on):
            if not window.supports(consultation_type) or window.slot_capacity < 1:
                continue

            step = timedelta(minutes=window.slot_duration_minutes)
            start = datetime.combine(on, window.start_time, tzinfo=self.clock.timezone)
            end = datetime.combine(on, window.end_time, tzinfo=self.clock.timezone)

            while start + step <= end:
                begins = start.timetz().replace(tzinfo=None)
                if begins not in blocked and begins not in offered and start > now:
                    option = SlotOption(
                        start_time=begins,
                        end_time=(start + step).timetz().replace(tzinfo=None),
                        consultation_type=consultation_type,
                    )
                    offered[begins] = (option, window.slot_capacity)
                start += step

        return offered

    async def propose_slots(
        self,
        doctor_id: UUID,
        on: date,
        consultation_type: ConsultationType = ConsultationType.IN_PERSON,
    ) -> list[SlotOption]:
        """
        List free slots for a doctor on one day, ordered by start time.

        Args:
            doctor_id: Doctor ID
            on: Calendar day
            consultation_type: Consultation type the slot must support

        Returns:
            Free slots; empty for past days or a fully blocked day
        """
        offered = await self._offered(doctor_id, on, consultation_type)
        if not offered:
            return []

        booked = await self.store.booked_counts(doctor_id, on)
        return [
            option
            for start, (option, capacity) in sorted(offered.items())
            if booked.get(start, 0) < capacity
        ]

    def _resolve_patient(self, actor: Actor, data: AppointmentCreate) -> UUID:
        if actor.role == ActorRole.PATIENT:
            if data.patient_id is not None and data.patient_id != actor.id:
                raise ForbiddenException("Patients can only book for themselves")
            return actor.id

        if actor.is_staff or actor.is_doctor(data.doctor_id):
            if data.patient_id is None:
                raise BadRequestException("patient_id is required when booking for a patient")
            return data.patient_id

        raise ForbiddenException("Doctors can only book into their own schedule")

    async def book_slot(self, actor: Actor, data: AppointmentCreate) -> AppointmentResponse:
        """
        Book one slot.

        Args:
            actor: Caller identity
            data: Booking request

        Returns:
            Created appointment

        Raises:
            SlotUnavailable: If the time is not an offered slot
            SlotConflict: If the slot is already taken
        """
        patient_id = self._resolve_patient(actor, data)
        offered = await self._offered(data.doctor_id, data.appointment_date, data.consultation_type)
        if data.appointment_time not in offered:
            BOOKINGS.labels(outcome="unavailable").inc()
            raise SlotUnavailable("Requested time is not an available slot")
        _, capacity = offered[data.appointment_time]

        key = slot_key(data.doctor_id, data.appointment_date, data.appointment_time)
        async with self.locks.hold(key):
            try:
                booked = await self.store.count_booked(
                    data.doctor_id, data.appointment_date, data.appointment_time
                )
                if booked >= capacity:
                    raise SlotConflict()

                now = self.clock.now()
                status = (
                    AppointmentStatus.CONFIRMED
                    if settings.auto_confirm_bookings
                    else AppointmentStatus.PENDING
                )
                row = await self.store.insert(
                    {
                        "id": new_id(),
                        "patient_id": patient_id,
                        "patient_name": data.patient_name,
                        "doctor_id": data.doctor_id,
                        "appointment_date": data.appointment_date,
                        "appointment_time": data.appointment_time,
                        "consultation_type": data.consultation_type.value,
                        "reason_for_visit": data.reason_for_visit,
                        "status": status.value,
                        "created_at": now,
                        "updated_at": now,
                    }
                )
                await self.db.commit()
            except (SlotConflict, IntegrityError):
                await self.db.rollback()
                BOOKINGS.labels(outcome="conflict").inc()
                logger.info(
                    "slot_conflict",
                    doctor_id=str(data.doctor_id),
                    date=data.appointment_date.isoformat(),
                    time=data.appointment_time.isoformat(),
                )
                raise SlotConflict() from None

            BOOKINGS.labels(outcome="booked").inc()
            logger.info(
                "appointment_booked",
                appointment_id=str(row["id"]),
                doctor_id=str(row["doctor_id"]),
                status=row["status"],
            )
            await self._publish(
                AppointmentCreated.from_row(row, consultation_type=row["consultation_type"])
            )

        return AppointmentResponse.model_validate(row)

    async def _in_queue(self, appointment_id: UUID) -> bool:
        result = await self.db.execute(
            select(queue_entries.c.id).where(
                queue_entries.c.appointment_id == appointment_id,
                queue_entries.c.state.in_([state.value for state in LIVE_ENTRY_STATES]),
            )
        )
        return result.first() is not None

    async def reschedule_slot(
        self,
        actor: Actor,
        appointment_id: UUID,
        new_date: date,
        new_time: time,
    ) -> AppointmentResponse:
        """
        Move an appointment to another slot.

        The original booking is untouched unless the move succeeds.

        Raises:
            ForbiddenException: If the actor may not move this appointment
            InvalidTransition: If the appointment is terminal or in a live queue
            SlotUnavailable: If the target is not an offered slot
            SlotConflict: If the target slot is taken
            StaleState: If the appointment changed while moving
        """
        current = await self.store.require(appointment_id)
        if not (
            actor.is_staff
            or actor.is_patient(current["patient_id"])
            or actor.is_doctor(current["doctor_id"])
        ):
            raise ForbiddenException("Access denied to this appointment")

        status = AppointmentStatus(current["status"])
        if status.is_terminal:
            raise InvalidTransition(f"Cannot reschedule a {status.value} appointment")
        if await self._in_queue(appointment_id):
            raise InvalidTransition("Appointment is in the queue; skip it before rescheduling")

        old_date: date = current["appointment_date"]
        old_time: time = current["appointment_time"]
        if (old_date, old_time) == (new_date, new_time):
            return AppointmentResponse.model_validate(current)

        offered = await self._offered(
            current["doctor_id"], new_date, ConsultationType(current["consultation_type"])
        )
        if new_time not in offered:
            raise SlotUnavailable("Requested time is not an available slot")
        _, capacity = offered[new_time]

        doctor_id = current["doctor_id"]
        async with self.locks.hold(
            slot_key(doctor_id, old_date, old_time),
            slot_key(doctor_id, new_date, new_time),
        ):
            try:
                if await self.store.count_booked(doctor_id, new_date, new_time) >= capacity:
                    raise SlotConflict()
                row = await self.store.move(
                    appointment_id, old_date, old_time, new_date, new_time, self.clock.now()
                )
                if row is None:
                    await self.db.rollback()
                    raise StaleState()
                await self.db.commit()
            except (SlotConflict, IntegrityError):
                await self.db.rollback()
                logger.info(
                    "slot_conflict",
                    doctor_id=str(doctor_id),
                    date=new_date.isoformat(),
                    time=new_time.isoformat(),
                )
                raise SlotConflict() from None

            logger.info(
                "appointment_rescheduled",
                appointment_id=str(appointment_id),
                previous=f"{old_date.isoformat()}T{old_time.isoformat()}",
                current=f"{new_date.isoformat()}T{new_time.isoformat()}",
            )
            await self._publish(
                AppointmentRescheduled.from_row(row, previous_date=old_date, previous_time=old_time)
            )

        return AppointmentResponse.model_validate(row)

    async def _publish(self, event: DomainEvent) -> None:
        if self.publisher is not None:
            await self.publisher.publish(event)
