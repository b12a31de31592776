"""Data access for appointment records.

The store never commits; the calling service owns the transaction so a
check and its write land together.
"""

from collections.abc import Iterable
from datetime import date, datetime, time
from typing import Any
from uuid import UUID

from sqlalchemy import and_, func, select, true, update
from sqlalchemy.ext.asyncio import AsyncSession

from clinicflow.core.exceptions import NotFoundException
from clinicflow.models.appointments import appointments
from clinicflow.schemas.appointments import (
    ACTIVE_STATUSES,
    AppointmentFilters,
    AppointmentStatus,
)

_ACTIVE = [status.value for status in ACTIVE_STATUSES]


class ScheduleStore:
    """Reads and conditional writes against the appointments table."""

    def __init__(self, db: AsyncSession):
        """Initialize store with database session."""
        self.db = db

    async def get(self, appointment_id: UUID) -> dict[str, Any] | None:
        """Fetch one appointment row."""
        result = await self.db.execute(
            select(appointments).where(appointments.c.id == appointment_id)
        )
        row = result.mappings().first()
        return dict(row) if row else None

    async def require(self, appointment_id: UUID) -> dict[str, Any]:
        """
        Fetch one appointment row or fail.

        Raises:
            NotFoundException: If no such appointment exists
        """
        row = await self.get(appointment_id)
        if row is None:
            raise NotFoundException("Appointment not found")
        return row

    async def count_booked(self, doctor_id: UUID, on: date, at: time) -> int:
        """Count live (non-cancelled) bookings in one slot."""
        stmt = (
            select(func.count())
            .select_from(appointments)
            .where(
                appointments.c.doctor_id == doctor_id,
                appointments.c.appointment_date == on,
                appointments.c.appointment_time == at,
                appointments.c.status != AppointmentStatus.CANCELLED.value,
            )
        )
        result = await self.db.execute(stmt)
        return result.scalar() or 0

    async def booked_counts(self, doctor_id: UUID, on: date) -> dict[time, int]:
        """Live bookings per slot start for one doctor-day."""
        stmt = (
            select(appointments.c.appointment_time, func.count())
            .where(
                appointments.c.doctor_id == doctor_id,
                appointments.c.appointment_date == on,
                appointments.c.status != AppointmentStatus.CANCELLED.value,
            )
            .group_by(appointments.c.appointment_time)
        )
        result = await self.db.execute(stmt)
        return {slot: count for slot, count in result.all()}

    async def insert(self, values: dict[str, Any]) -> dict[str, Any]:
        """Insert an appointment row and return it."""
        result = await self.db.execute(
            appointments.insert().values(**values).returning(appointments)
        )
        return dict(result.mappings().one())

    async def compare_and_set_status(
        self,
        appointment_id: UUID,
        expected: AppointmentStatus,
        new: AppointmentStatus,
        now: datetime,
    ) -> dict[str, Any] | None:
        """
        Move status only if it still equals ``expected``.

        Returns:
            Updated row, or None if the stored status had moved on
        """
        values: dict[str, Any] = {"status": new.value, "updated_at": now}
        if new == AppointmentStatus.CANCELLED:
            values["cancelled_at"] = now

        stmt = (
            update(appointments)
            .where(
                appointments.c.id == appointment_id,
                appointments.c.status == expected.value,
            )
            .values(**values)
            .returning(appointments)
        )
        result = await self.db.execute(stmt)
        row = result.mappings().first()
        return dict(row) if row else None

    async def move(
        self,
        appointment_id: UUID,
        current_date: date,
        current_time: time,
        new_date: date,
        new_time: time,
        now: datetime,
    ) -> dict[str, Any] | None:
        """
        Move a live appointment to a new slot if it has not changed meanwhile.

        The queue token belongs to the old day and is cleared.

        Returns:
            Updated row, or None if the row no longer matched
        """
        stmt = (
            update(appointments)
            .where(
                appointments.c.id == appointment_id,
                appointments.c.appointment_date == current_date,
                appointments.c.appointment_time == current_time,
                appointments.c.status.in_(_ACTIVE),
            )
            .values(
                appointment_date=new_date,
                appointment_time=new_time,
                queue_token=None,
                updated_at=now,
            )
            .returning(appointments)
        )
        result = await self.db.execute(stmt)
        row = result.mappings().first()
        return dict(row) if row else None

    async def set_queue_token(self, appointment_id: UUID, token: int, now: datetime) -> None:
        """Record the queue token issued to an appointment."""
        await self.db.execute(
            update(appointments)
            .where(appointments.c.id == appointment_id)
            .values(queue_token=token, updated_at=now)
        )

    async def search(self, filters: AppointmentFilters) -> tuple[int, list[dict[str, Any]]]:
        """
        List appointments with filtering and pagination.

        Returns:
            Total matching rows and the requested page
        """
        conditions = []

        if filters.status:
            conditions.append(appointments.c.status == filters.status.value)

        if filters.doctor_id:
            conditions.append(appointments.c.doctor_id == filters.doctor_id)

        if filters.patient_id:
            conditions.append(appointments.c.patient_id == filters.patient_id)

        if filters.appointment_date:
            conditions.append(appointments.c.appointment_date == filters.appointment_date)

        where = and_(*conditions) if conditions else true()

        count_stmt = select(func.count()).select_from(appointments).where(where)
        total_result = await self.db.execute(count_stmt)
        total = total_result.scalar() or 0

        offset = (filters.page - 1) * filters.page_size

        stmt = (
            select(appointments)
            .where(where)
            .order_by(
                appointments.c.appointment_date.desc(),
                appointments.c.appointment_time.desc(),
            )
            .limit(filters.page_size)
            .offset(offset)
        )
        result = await self.db.execute(stmt)
        return total, [dict(row) for row in result.mappings().all()]

    async def for_doctor_day(
        self,
        doctor_id: UUID,
        on: date,
        statuses: Iterable[AppointmentStatus],
    ) -> list[dict[str, Any]]:
        """Appointments of one doctor-day in slot order."""
        stmt = (
            select(appointments)
            .where(
                appointments.c.doctor_id == doctor_id,
                appointments.c.appointment_date == on,
                appointments.c.status.in_([status.value for status in statuses]),
            )
            .order_by(appointments.c.appointment_time, appointments.c.created_at)
        )
        result = await self.db.execute(stmt)
        return [dict(row) for row in result.mappings().all()]

    async def confirmed_before(self, cutoff: date) -> list[dict[str, Any]]:
        """CONFIRMED appointments dated before a day, oldest first."""
        stmt = (
            select(appointments)
            .where(
                appointments.c.status == AppointmentStatus.CONFIRMED.value,
                appointments.c.appointment_date < cutoff,
            )
            .order_by(appointments.c.appointment_date, appointments.c.appointment_time)
        )
        result = await self.db.execute(stmt)
        return [dict(row) for row in result.mappings().all()]
