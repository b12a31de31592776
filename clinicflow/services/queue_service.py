"""Live token queue per doctor per day."""

from datetime import date, datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clinicflow.config import settings
from clinicflow.core.clock import Clock, get_clock, new_id
from clinicflow.core.exceptions import (
    AlreadyQueued,
    BadRequestException,
    ForbiddenException,
    InvalidTransition,
    NotFoundException,
    QueueEmpty,
    QueuePaused,
    StaleState,
)
from clinicflow.core.locks import KeyedLock, queue_locks
from clinicflow.core.metrics import QUEUE_OPERATIONS
from clinicflow.models.appointments import appointments
from clinicflow.models.queues import queue_entries, queue_states
from clinicflow.schemas.actors import Actor
from clinicflow.schemas.appointments import AppointmentStatus
from clinicflow.schemas.events import QueueAdvanced
from clinicflow.schemas.queues import (
    LIVE_ENTRY_STATES,
    QueueAction,
    QueueDatesResponse,
    QueueEntryResponse,
    QueueEntryState,
    QueuePosition,
    QueueSnapshot,
    QueueStats,
    QueueStatusResponse,
)
from clinicflow.services.event_publisher import EventPublisher
from clinicflow.services.schedule_store import ScheduleStore

logger = structlog.get_logger(__name__)

_LIVE = [state.value for state in LIVE_ENTRY_STATES]


def queue_key(doctor_id: UUID, on: date) -> tuple[str, str, str]:
    """Lock key for one doctor's queue on one day."""
    return ("queue", str(doctor_id), on.isoformat())


def _call_order(entry: dict[str, Any]) -> tuple[bool, int]:
    # Prioritised entries first, then by token
    return (not entry["is_priority"], entry["token"])


class QueueService:
    """
    Token queue for one doctor-day.

    Every mutation runs under the queue's keyed lock (plus a row lock on
    ``queue_states`` where the database supports it), commits, and then
    announces the new state with a ``QueueAdvanced`` event.
    """

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
        self.locks = locks or queue_locks

    # Reads

    @staticmethod
    def _entry_query():
        return select(
            queue_entries,
            appointments.c.patient_name,
            appointments.c.status.label("appointment_status"),
        ).select_from(
            queue_entries.join(appointments, queue_entries.c.appointment_id == appointments.c.id)
        )

    async def _get_state(
        self,
        doctor_id: UUID,
        on: date,
        for_update: bool = False,
    ) -> dict[str, Any] | None:
        stmt = select(queue_states).where(
            queue_states.c.doctor_id == doctor_id,
            queue_states.c.queue_date == on,
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        row = result.mappings().first()
        return dict(row) if row else None

    async def _ensure_state(self, doctor_id: UUID, on: date) -> dict[str, Any]:
        """Lock the queue row, creating it on first use."""
        state = await self._get_state(doctor_id, on, for_update=True)
        if state is not None:
            return state

        now = self.clock.now()
        try:
            await self.db.execute(
                queue_states.insert().values(
                    doctor_id=doctor_id,
                    queue_date=on,
                    next_token=1,
                    current_serving_token=None,
                    is_paused=False,
                    created_at=now,
                    updated_at=now,
                )
            )
        except IntegrityError:
            # Another process opened the queue first
            await self.db.rollback()

        state = await self._get_state(doctor_id, on, for_update=True)
        if state is None:
            raise StaleState("Queue could not be opened")
        return state

    async def _entries(self, doctor_id: UUID, on: date) -> list[dict[str, Any]]:
        stmt = (
            self._entry_query()
            .where(
                queue_entries.c.doctor_id == doctor_id,
                queue_entries.c.queue_date == on,
            )
            .order_by(queue_entries.c.token)
        )
        result = await self.db.execute(stmt)
        return [dict(row) for row in result.mappings().all()]

    async def _entry_by_token(self, doctor_id: UUID, on: date, token: int) -> dict[str, Any] | None:
        stmt = self._entry_query().where(
            queue_entries.c.doctor_id == doctor_id,
            queue_entries.c.queue_date == on,
            queue_entries.c.token == token,
        )
        result = await self.db.execute(stmt)
        row = result.mappings().first()
        return dict(row) if row else None

    async def _entries_for_appointment(self, appointment_id: UUID) -> list[dict[str, Any]]:
        """Every entry an appointment ever held, newest first."""
        stmt = (
            self._entry_query()
            .where(queue_entries.c.appointment_id == appointment_id)
            .order_by(queue_entries.c.enqueued_at.desc(), queue_entries.c.token.desc())
        )
        result = await self.db.execute(stmt)
        return [dict(row) for row in result.mappings().all()]

    async def _waiting_count(self, doctor_id: UUID, on: date) -> int:
        stmt = (
            select(func.count())
            .select_from(queue_entries)
            .where(
                queue_entries.c.doctor_id == doctor_id,
                queue_entries.c.queue_date == on,
                queue_entries.c.state == QueueEntryState.WAITING.value,
            )
        )
        result = await self.db.execute(stmt)
        return result.scalar() or 0

    # Writes

    async def _set_entry_state(
        self,
        entry_id: UUID,
        state: QueueEntryState,
        now: datetime,
    ) -> None:
        values: dict[str, Any] = {"state": state.value}
        if state == QueueEntryState.SERVING:
            values["called_at"] = now
        else:
            values["finished_at"] = now
        await self.db.execute(
            update(queue_entries).where(queue_entries.c.id == entry_id).values(**values)
        )

    async def _append(
        self,
        state: dict[str, Any],
        appointment: dict[str, Any],
        priority: bool,
        now: datetime,
    ) -> dict[str, Any]:
        """Issue the next token of a locked queue to an appointment."""
        token = state["next_token"]
        state["next_token"] = token + 1

        await self.db.execute(
            update(queue_states)
            .where(
                queue_states.c.doctor_id == state["doctor_id"],
                queue_states.c.queue_date == state["queue_date"],
            )
            .values(next_token=state["next_token"], updated_at=now)
        )

        entry = {
            "id": new_id(),
            "doctor_id": state["doctor_id"],
            "queue_date": state["queue_date"],
            "token": token,
            "appointment_id": appointment["id"],
            "is_priority": priority,
            "state": QueueEntryState.WAITING.value,
            "enqueued_at": now,
            "called_at": None,
            "finished_at": None,
        }
        await self.db.execute(queue_entries.insert().values(**entry))
        await self.store.set_queue_token(appointment["id"], token, now)

        return {**entry, "patient_name": appointment["patient_name"]}

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise StaleState("Queue changed concurrently; refetch and retry") from None

    # Events

    async def _announce(
        self,
        state: dict[str, Any],
        action: QueueAction,
        waiting_count: int,
        entry: dict[str, Any] | None = None,
    ) -> QueueStatusResponse:
        QUEUE_OPERATIONS.labels(action=action.value).inc()

        if self.publisher is not None:
            await self.publisher.publish(
                QueueAdvanced(
                    doctor_id=state["doctor_id"],
                    queue_date=state["queue_date"],
                    current_serving_token=state["current_serving_token"],
                    waiting_count=waiting_count,
                    is_paused=state["is_paused"],
                    action=action,
                    token=entry["token"] if entry else None,
                    appointment_id=entry["appointment_id"] if entry else None,
                    patient_name=entry["patient_name"] if entry else None,
                    status=entry["state"] if entry else None,
                    updated_at=self.clock.now(),
                )
            )

        return QueueStatusResponse(
            doctor_id=state["doctor_id"],
            queue_date=state["queue_date"],
            current_serving_token=state["current_serving_token"],
            waiting_count=waiting_count,
            is_paused=state["is_paused"],
            entry=QueueEntryResponse.model_validate(entry) if entry else None,
        )

    # Access

    @staticmethod
    def _check_control(actor: Actor, doctor_id: UUID) -> None:
        if not (actor.is_staff or actor.is_doctor(doctor_id)):
            raise ForbiddenException("Only staff or the doctor can control this queue")

    async def check_room_access(self, actor: Actor, doctor_id: UUID, on: date) -> None:
        """
        Check the actor may watch a queue room.

        Staff and the doctor always may; a patient needs a non-cancelled
        appointment with the doctor on that day.

        Raises:
            ForbiddenException: If actor doesn't have access
        """
        if actor.is_staff or actor.is_doctor(doctor_id):
            return
        booked = await self.store.for_doctor_day(
            doctor_id,
            on,
            [s for s in AppointmentStatus if s != AppointmentStatus.CANCELLED],
        )
        if not any(actor.is_patient(row["patient_id"]) for row in booked):
            raise ForbiddenException("Access denied to this queue")

    # Operations

    async def enqueue(
        self,
        actor: Actor,
        appointment_id: UUID,
        priority: bool = False,
    ) -> QueueEntryResponse:
        """
        Put an appointment into today's queue.

        Calling again while the appointment is WAITING or SERVING returns the
        existing entry. After a SKIPPED entry a fresh token is issued.

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If the actor may not enqueue this appointment
            InvalidTransition: If the appointment is terminal
            BadRequestException: If the appointment is not for today
            AlreadyQueued: If the appointment was already served today
        """
        appointment = await self.store.require(appointment_id)
        doctor_id: UUID = appointment["doctor_id"]
        on: date = appointment["appointment_date"]

        if priority:
            self._check_control(actor, doctor_id)
        elif not (
            actor.is_staff
            or actor.is_doctor(doctor_id)
            or actor.is_patient(appointment["patient_id"])
        ):
            raise ForbiddenException("Access denied to this appointment")

        async with self.locks.hold(queue_key(doctor_id, on)):
            # Re-read under the lock: a cancel or reschedule may have landed
            appointment = await self.store.require(appointment_id)
            status = AppointmentStatus(appointment["status"])
            if status.is_terminal:
                raise InvalidTransition(f"Cannot enqueue a {status.value} appointment")
            if appointment["appointment_date"] != self.clock.today():
                raise BadRequestException("Only today's appointments can join the queue")
            if appointment["appointment_date"] != on:
                raise StaleState("Appointment was rescheduled")

            state = await self._ensure_state(doctor_id, on)
            history = [
                entry
                for entry in await self._entries_for_appointment(appointment_id)
                if entry["queue_date"] == on
            ]

            for entry in history:
                if entry["state"] in _LIVE:
                    await self._commit()
                    return QueueEntryResponse.model_validate(entry)
            if any(entry["state"] == QueueEntryState.DONE.value for entry in history):
                await self.db.rollback()
                raise AlreadyQueued()

            now = self.clock.now()
            entry = await self._append(state, appointment, priority, now)
            waiting = await self._waiting_count(doctor_id, on)
            await self._commit()

            logger.info(
                "queue_enqueued",
                doctor_id=str(doctor_id),
                date=on.isoformat(),
                token=entry["token"],
                appointment_id=str(appointment_id),
                priority=priority,
            )
            await self._announce(state, QueueAction.ENQUEUED, waiting, entry)

        return QueueEntryResponse.model_validate(entry)

    async def call_next(self, actor: Actor, doctor_id: UUID, on: date) -> QueueStatusResponse:
        """
        Finish the patient being served and call the next one.

        WAITING entries whose appointment has already ended (completed,
        cancelled or missed) are never called; they are marked SKIPPED here.

        Raises:
            QueuePaused: If the queue is paused
            QueueEmpty: If nobody is waiting; the serving pointer does not move
        """
        self._check_control(actor, doctor_id)

        async with self.locks.hold(queue_key(doctor_id, on)):
            state = await self._get_state(doctor_id, on, for_update=True)
            if state is None:
                raise QueueEmpty()
            if state["is_paused"]:
                await self.db.rollback()
                raise QueuePaused()

            now = self.clock.now()
            entries = await self._entries(doctor_id, on)
            waiting = []
            stale = []
            for entry in entries:
                if entry["state"] != QueueEntryState.WAITING.value:
                    continue
                if AppointmentStatus(entry["appointment_status"]).is_terminal:
                    stale.append(entry)
                else:
                    waiting.append(entry)
            waiting.sort(key=_call_order)

            for entry in stale:
                await self._set_entry_state(entry["id"], QueueEntryState.SKIPPED, now)
            if stale:
                logger.info(
                    "queue_stale_entries_skipped",
                    doctor_id=str(doctor_id),
                    date=on.isoformat(),
                    tokens=[entry["token"] for entry in stale],
                )

            if not waiting:
                if stale:
                    await self._commit()
                else:
                    await self.db.rollback()
                raise QueueEmpty()

            # The serving slot must be vacated before it is refilled
            for entry in entries:
                if entry["state"] == QueueEntryState.SERVING.value:
                    await self._set_entry_state(entry["id"], QueueEntryState.DONE, now)

            selected = waiting[0]
            await self._set_entry_state(selected["id"], QueueEntryState.SERVING, now)
            await self.db.execute(
                update(queue_states)
                .where(
                    queue_states.c.doctor_id == doctor_id,
                    queue_states.c.queue_date == on,
                )
                .values(current_serving_token=selected["token"], updated_at=now)
            )
            await self._commit()

            state["current_serving_token"] = selected["token"]
            selected = {**selected, "state": QueueEntryState.SERVING.value, "called_at": now}

            logger.info(
                "queue_called_next",
                doctor_id=str(doctor_id),
                date=on.isoformat(),
                token=selected["token"],
            )
            return await self._announce(state, QueueAction.CALLED, len(waiting) - 1, selected)

    async def recall(self, actor: Actor, doctor_id: UUID, on: date) -> QueueStatusResponse:
        """
        Announce the current serving token again without changing anything.

        Raises:
            QueueEmpty: If nobody is being served right now
        """
        self._check_control(actor, doctor_id)

        async with self.locks.hold(queue_key(doctor_id, on)):
            state = await self._get_state(doctor_id, on)
            if state is None or state["current_serving_token"] is None:
                raise QueueEmpty("No token has been called yet")

            entry = await self._entry_by_token(doctor_id, on, state["current_serving_token"])
            if entry is None or entry["state"] != QueueEntryState.SERVING.value:
                await self.db.rollback()
                raise QueueEmpty("No patient is being served")
            waiting = await self._waiting_count(doctor_id, on)
            await self.db.rollback()

            logger.info(
                "queue_recalled",
                doctor_id=str(doctor_id),
                date=on.isoformat(),
                token=state["current_serving_token"],
            )
            return await self._announce(state, QueueAction.RECALLED, waiting, entry)

    async def skip(
        self,
        actor: Actor,
        doctor_id: UUID,
        on: date,
        token: int,
    ) -> QueueStatusResponse:
        """
        Mark a WAITING or SERVING token as SKIPPED.

        The serving pointer does not move; only ``call_next`` advances it.

        Raises:
            NotFoundException: If the token was never issued
            InvalidTransition: If the token is already DONE or SKIPPED
        """
        self._check_control(actor, doctor_id)

        async with self.locks.hold(queue_key(doctor_id, on)):
            state = await self._get_state(doctor_id, on, for_update=True)
            entry = await self._entry_by_token(doctor_id, on, token) if state else None
            if state is None or entry is None:
                raise NotFoundException(f"Token {token} not found")
            if entry["state"] not in _LIVE:
                await self.db.rollback()
                raise InvalidTransition(f"Token {token} is already {entry['state']}")

            now = self.clock.now()
            await self._set_entry_state(entry["id"], QueueEntryState.SKIPPED, now)
            waiting = await self._waiting_count(doctor_id, on)
            await self._commit()

            entry = {**entry, "state": QueueEntryState.SKIPPED.value, "finished_at": now}
            logger.info("queue_skipped", doctor_id=str(doctor_id), date=on.isoformat(), token=token)
            return await self._announce(state, QueueAction.SKIPPED, waiting, entry)

    async def _set_paused(
        self,
        actor: Actor,
        doctor_id: UUID,
        on: date,
        paused: bool,
    ) -> QueueStatusResponse:
        self._check_control(actor, doctor_id)

        async with self.locks.hold(queue_key(doctor_id, on)):
            state = await self._ensure_state(doctor_id, on)
            now = self.clock.now()
            await self.db.execute(
                update(queue_states)
                .where(
                    queue_states.c.doctor_id == doctor_id,
                    queue_states.c.queue_date == on,
                )
                .values(is_paused=paused, updated_at=now)
            )
            waiting = await self._waiting_count(doctor_id, on)
            await self._commit()

            state["is_paused"] = paused
            action = QueueAction.PAUSED if paused else QueueAction.RESUMED
            logger.info(f"queue_{action.value.lower()}", doctor_id=str(doctor_id), date=on.isoformat())
            return await self._announce(state, action, waiting)

    async def pause(self, actor: Actor, doctor_id: UUID, on: date) -> QueueStatusResponse:
        """Stop ``call_next`` until the queue is resumed."""
        return await self._set_paused(actor, doctor_id, on, True)

    async def resume(self, actor: Actor, doctor_id: UUID, on: date) -> QueueStatusResponse:
        """Allow ``call_next`` again."""
        return await self._set_paused(actor, doctor_id, on, False)

    async def _close_entry(
        self,
        appointment_id: UUID,
        current: QueueEntryState,
        target: QueueEntryState,
        action: QueueAction,
        event: str,
    ) -> QueueEntryResponse | None:
        """Move an appointment's entry from ``current`` to ``target`` if it is still there."""
        matching = [
            entry
            for entry in await self._entries_for_appointment(appointment_id)
            if entry["state"] == current.value
        ]
        if not matching:
            return None
        entry = matching[0]
        doctor_id, on = entry["doctor_id"], entry["queue_date"]

        async with self.locks.hold(queue_key(doctor_id, on)):
            state = await self._get_state(doctor_id, on, for_update=True)
            now = self.clock.now()
            result = await self.db.execute(
                update(queue_entries)
                .where(
                    queue_entries.c.id == entry["id"],
                    queue_entries.c.state == current.value,
                )
                .values(state=target.value, finished_at=now)
            )
            if state is None or result.rowcount == 0:
                await self.db.rollback()
                return None
            waiting_count = await self._waiting_count(doctor_id, on)
            await self._commit()

            entry = {**entry, "state": target.value, "finished_at": now}
            logger.info(
                event,
                doctor_id=str(doctor_id),
                date=on.isoformat(),
                token=entry["token"],
                appointment_id=str(appointment_id),
            )
            await self._announce(state, action, waiting_count, entry)

        return QueueEntryResponse.model_validate(entry)

    async def withdraw(self, appointment_id: UUID) -> QueueEntryResponse | None:
        """
        Drop an ended appointment's WAITING entry from its queue.

        Returns:
            The skipped entry, or None if the appointment was not waiting
        """
        return await self._close_entry(
            appointment_id,
            QueueEntryState.WAITING,
            QueueEntryState.SKIPPED,
            QueueAction.SKIPPED,
            "queue_withdrawn",
        )

    async def finish(self, appointment_id: UUID) -> QueueEntryResponse | None:
        """
        Mark a completed or missed appointment's SERVING entry as DONE.

        The serving pointer stays on the token until ``call_next`` moves it.

        Returns:
            The finished entry, or None if the appointment was not being served
        """
        return await self._close_entry(
            appointment_id,
            QueueEntryState.SERVING,
            QueueEntryState.DONE,
            QueueAction.COMPLETED,
            "queue_finished",
        )

    async def activate_day(
        self,
        actor: Actor,
        doctor_id: UUID,
        on: date,
    ) -> list[QueueEntryResponse]:
        """
        Enqueue every CONFIRMED appointment of the day that has no entry yet.

        Tokens follow slot time order.

        Returns:
            Entries created by this call
        """
        self._check_control(actor, doctor_id)
        if on != self.clock.today():
            raise BadRequestException("Only today's queue can be activated")

        created: list[dict[str, Any]] = []
        async with self.locks.hold(queue_key(doctor_id, on)):
            state = await self._ensure_state(doctor_id, on)
            seen = {entry["appointment_id"] for entry in await self._entries(doctor_id, on)}
            confirmed = await self.store.for_doctor_day(
                doctor_id, on, [AppointmentStatus.CONFIRMED]
            )

            now = self.clock.now()
            for appointment in confirmed:
                if appointment["id"] in seen:
                    continue
                created.append(await self._append(state, appointment, False, now))

            if not created:
                await self.db.rollback()
                return []

            waiting = await self._waiting_count(doctor_id, on)
            await self._commit()

            logger.info(
                "queue_activated",
                doctor_id=str(doctor_id),
                date=on.isoformat(),
                enqueued=len(created),
            )
            # Waiting count as it stood after each token was issued
            base = waiting - len(created)
            for index, entry in enumerate(created, start=1):
                await self._announce(state, QueueAction.ENQUEUED, base + index, entry)

        return [QueueEntryResponse.model_validate(entry) for entry in created]

    # Queries

    async def snapshot(self, doctor_id: UUID, on: date) -> QueueSnapshot:
        """Full view of a queue; an unopened queue is empty."""
        state = await self._get_state(doctor_id, on)
        entries = await self._entries(doctor_id, on)

        counts = {s: 0 for s in QueueEntryState}
        for entry in entries:
            counts[QueueEntryState(entry["state"])] += 1

        return QueueSnapshot(
            doctor_id=doctor_id,
            queue_date=on,
            current_serving_token=state["current_serving_token"] if state else None,
            next_token=state["next_token"] if state else 1,
            is_paused=state["is_paused"] if state else False,
            waiting_count=counts[QueueEntryState.WAITING],
            stats=QueueStats(
                total=len(entries),
                waiting=counts[QueueEntryState.WAITING],
                serving=counts[QueueEntryState.SERVING],
                done=counts[QueueEntryState.DONE],
                skipped=counts[QueueEntryState.SKIPPED],
            ),
            entries=[QueueEntryResponse.model_validate(entry) for entry in entries],
        )

    async def position(self, actor: Actor, appointment_id: UUID) -> QueuePosition:
        """
        Where an appointment stands in its queue.

        Raises:
            NotFoundException: If the appointment never joined a queue
            ForbiddenException: If actor doesn't have access
        """
        appointment = await self.store.require(appointment_id)
        if not (
            actor.is_staff
            or actor.is_patient(appointment["patient_id"])
            or actor.is_doctor(appointment["doctor_id"])
        ):
            raise ForbiddenException("Access denied to this appointment")

        history = await self._entries_for_appointment(appointment_id)
        if not history:
            raise NotFoundException("Appointment is not in a queue")
        entry = history[0]

        doctor_id, on = entry["doctor_id"], entry["queue_date"]
        state = await self._get_state(doctor_id, on)

        ahead = 0
        if entry["state"] == QueueEntryState.WAITING.value:
            waiting = sorted(
                (
                    e
                    for e in await self._entries(doctor_id, on)
                    if e["state"] == QueueEntryState.WAITING.value
                ),
                key=_call_order,
            )
            ahead = next(
                (index for index, e in enumerate(waiting) if e["id"] == entry["id"]),
                len(waiting),
            )

        return QueuePosition(
            appointment_id=appointment_id,
            doctor_id=doctor_id,
            queue_date=on,
            token=entry["token"],
            state=QueueEntryState(entry["state"]),
            current_serving_token=state["current_serving_token"] if state else None,
            patients_ahead=ahead,
            estimated_wait_minutes=ahead * settings.average_consultation_minutes,
            is_your_turn=entry["state"] == QueueEntryState.SERVING.value,
        )

    async def list_dates(self, doctor_id: UUID) -> QueueDatesResponse:
        """Days on which a doctor's queue was opened, newest first."""
        stmt = (
            select(queue_states.c.queue_date)
            .where(queue_states.c.doctor_id == doctor_id)
            .order_by(queue_states.c.queue_date.desc())
        )
        result = await self.db.execute(stmt)
        return QueueDatesResponse(doctor_id=doctor_id, dates=list(result.scalars().all()))
