"""Appointment lifecycle: role-checked, compare-and-swap status transitions."""

from datetime import date
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from clinicflow.core.clock import Clock, get_clock
from clinicflow.core.exceptions import (
    ForbiddenException,
    InvalidTransition,
    StaleState,
)
from clinicflow.core.locks import KeyedLock, appointment_locks
from clinicflow.core.metrics import STATUS_TRANSITIONS
from clinicflow.schemas.actors import Actor, ActorRole
from clinicflow.schemas.appointments import (
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentStatus,
    MissedSweepResponse,
)
from clinicflow.schemas.events import AppointmentStatusChanged
from clinicflow.services.event_publisher import EventPublisher
from clinicflow.services.schedule_store import ScheduleStore

logger = structlog.get_logger(__name__)

_S = AppointmentStatus
_R = ActorRole

# (from, to) -> roles allowed to make the move
TRANSITIONS: dict[tuple[AppointmentStatus, AppointmentStatus], frozenset[ActorRole]] = {
    (_S.PENDING, _S.CONFIRMED): frozenset({_R.STAFF, _R.DOCTOR, _R.SYSTEM}),
    (_S.PENDING, _S.CANCELLED): frozenset({_R.PATIENT, _R.STAFF}),
    (_S.CONFIRMED, _S.CANCELLED): frozenset({_R.PATIENT, _R.STAFF}),
    (_S.CONFIRMED, _S.COMPLETED): frozenset({_R.STAFF, _R.DOCTOR}),
    (_S.CONFIRMED, _S.MISSED): frozenset({_R.STAFF, _R.SYSTEM}),
}

SYSTEM_ACTOR = Actor(id=UUID(int=0), role=ActorRole.SYSTEM)


def check_transition(
    actor: Actor,
    appointment: dict,
    current: AppointmentStatus,
    target: AppointmentStatus,
) -> None:
    """
    Validate a status move against the lifecycle table and the actor.

    Raises:
        InvalidTransition: If the move is not in the table
        ForbiddenException: If the actor may not make the move
    """
    allowed = TRANSITIONS.get((current, target))
    if allowed is None:
        raise InvalidTransition(f"Cannot move appointment from {current.value} to {target.value}")

    if actor.role not in allowed:
        raise ForbiddenException(
            f"{actor.role.value} cannot move appointment from {current.value} to {target.value}"
        )

    if actor.role == ActorRole.PATIENT and actor.id != appointment["patient_id"]:
        raise ForbiddenException("Access denied to this appointment")

    if actor.role == ActorRole.DOCTOR and actor.id != appointment["doctor_id"]:
        raise ForbiddenException("Access denied to this appointment")


def can_view(actor: Actor, appointment: dict) -> bool:
    """Check whether an actor may read an appointment."""
    return (
        actor.is_staff
        or actor.is_patient(appointment["patient_id"])
        or actor.is_doctor(appointment["doctor_id"])
    )


class AppointmentService:
    """Service for reading appointments and driving their lifecycle."""

    def __init__(
        self,
        db: AsyncSession,
        publisher: EventPublisher | None = None,
        clock: Clock | None = None,
        locks: KeyedLock | None = None,
    ):
        """Initialize service with database session and collaborators."""
        self.db = db
        self.store = ScheduleStore(db)
        self.publisher = publisher
        self.clock = clock or get_clock()
        self.locks = locks or appointment_locks

    async def get_appointment(self, actor: Actor, appointment_id: UUID) -> AppointmentResponse:
        """
        Get appointment by ID.

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If actor doesn't have access
        """
        row = await self.store.require(appointment_id)
        if not can_view(actor, row):
            raise ForbiddenException("Access denied to this appointment")
        return AppointmentResponse.model_validate(row)

    async def list_appointments(
        self,
        actor: Actor,
        filters: AppointmentFilters,
    ) -> AppointmentListResponse:
        """
        List appointments with filtering and pagination.

        Patients only ever see their own appointments and doctors their own
        schedule; staff see everything.
        """
        if actor.role == ActorRole.PATIENT:
            filters = filters.model_copy(update={"patient_id": actor.id})
        elif actor.role == ActorRole.DOCTOR:
            filters = filters.model_copy(update={"doctor_id": actor.id})

        total, rows = await self.store.search(filters)

        return AppointmentListResponse(
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            items=[AppointmentResponse.model_validate(row) for row in rows],
        )

    async def transition(
        self,
        actor: Actor,
        appointment_id: UUID,
        target: AppointmentStatus,
        expected: AppointmentStatus | None = None,
    ) -> AppointmentResponse:
        """
        Move an appointment to a new status.

        Args:
            actor: Caller identity
            appointment_id: Appointment ID
            target: Status to move to
            expected: Status the caller last saw, if any

        Returns:
            Updated appointment

        Raises:
            NotFoundException: If appointment not found
            InvalidTransition: If the lifecycle forbids the move
            ForbiddenException: If the actor may not make the move
            StaleState: If the stored status moved underneath the caller
        """
        async with self.locks.hold(("appointment", str(appointment_id))):
            row = await self.store.require(appointment_id)
            current = AppointmentStatus(row["status"])

            if expected is not None and expected != current:
                raise StaleState(
                    f"Appointment is {current.value}, expected {expected.value}"
                )

            check_transition(actor, row, current, target)

            updated = await self.store.compare_and_set_status(
                appointment_id, current, target, self.clock.now()
            )
            if updated is None:
                await self.db.rollback()
                raise StaleState()
            await self.db.commit()

            STATUS_TRANSITIONS.labels(from_status=current.value, to_status=target.value).inc()
            logger.info(
                "appointment_status_changed",
                appointment_id=str(appointment_id),
                old_status=current.value,
                new_status=target.value,
                actor_role=actor.role.value,
            )

            if self.publisher is not None:
                await self.publisher.publish(
                    AppointmentStatusChanged.from_row(
                        updated,
                        old_status=current.value,
                        new_status=target.value,
                        actor_role=actor.role.value,
                    )
                )

        return AppointmentResponse.model_validate(updated)

    async def mark_missed(self, before: date | None = None) -> MissedSweepResponse:
        """
        Move every CONFIRMED appointment dated before a day to MISSED.

        Each appointment is its own transition; ones that change while the
        sweep runs are counted and left alone.
        """
        cutoff = before or self.clock.today()
        marked: list[UUID] = []
        skipped = 0

        for row in await self.store.confirmed_before(cutoff):
            try:
                await self.transition(
                    SYSTEM_ACTOR,
                    row["id"],
                    AppointmentStatus.MISSED,
                    expected=AppointmentStatus.CONFIRMED,
                )
            except (StaleState, InvalidTransition):
                skipped += 1
                continue
            marked.append(row["id"])

        logger.info(
            "missed_sweep_completed",
            cutoff=cutoff.isoformat(),
            marked=len(marked),
            skipped=skipped,
        )

        return MissedSweepResponse(marked=marked, skipped=skipped)
