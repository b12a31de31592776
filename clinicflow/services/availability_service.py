"""Read access to doctor availability and slot blocks."""

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clinicflow.config import settings
from clinicflow.core.redis_client import CacheManager
from clinicflow.models.availability import doctor_availability, slot_blocks
from clinicflow.schemas.availability import DoctorAvailability, SlotBlock


class AvailabilityService:
    """Service for reading doctor availability."""

    def __init__(self, db: AsyncSession, cache_manager: CacheManager | None = None):
        """Initialize service with database session and optional cache manager."""
        self.db = db
        self.cache = cache_manager

    @staticmethod
    def _get_availability_cache_key(doctor_id: UUID) -> str:
        """Generate cache key for a doctor's weekly availability."""
        return f"availability:{doctor_id}"

    async def get_weekly_availability(self, doctor_id: UUID) -> list[DoctorAvailability]:
        """Get every availability window of a doctor, with caching."""
        # Try cache first
        if self.cache:
            cached = self.cache.get_json(self._get_availability_cache_key(doctor_id))
            if cached is not None:
                return [DoctorAvailability.model_validate(item) for item in cached]

        query = (
            select(doctor_availability)
            .where(doctor_availability.c.doctor_id == doctor_id)
            .order_by(doctor_availability.c.day_of_week, doctor_availability.c.start_time)
        )
        result = await self.db.execute(query)
        windows = [DoctorAvailability.model_validate(dict(row)) for row in result.mappings()]

        # Cache result
        if self.cache:
            self.cache.set_json(
                self._get_availability_cache_key(doctor_id),
                [window.model_dump(mode="json") for window in windows],
                ttl=settings.availability_cache_ttl,
            )

        return windows

    async def get_windows_for_date(self, doctor_id: UUID, on: date) -> list[DoctorAvailability]:
        """Active availability windows that apply to a calendar day."""
        weekday = on.weekday()
        return [
            window
            for window in await self.get_weekly_availability(doctor_id)
            if window.day_of_week == weekday and window.is_active
        ]

    async def get_blocks(self, doctor_id: UUID, on: date) -> list[SlotBlock]:
        """Blocked slots (or a blocked day) for one doctor-day."""
        query = select(slot_blocks).where(
            slot_blocks.c.doctor_id == doctor_id,
            slot_blocks.c.block_date == on,
        )
        result = await self.db.execute(query)
        return [SlotBlock.model_validate(dict(row)) for row in result.mappings()]
