"""Clock and identifier generation."""

import threading
import uuid
from datetime import UTC, date, datetime
from zoneinfo import ZoneInfo

from clinicflow.config import settings


class Clock:
    """
    Timezone-aware wall clock that never runs backwards.

    Timestamps are UTC. ``today()`` is the calendar day in the clinic's
    timezone, which is what queues and slot proposals are keyed on.
    """

    def __init__(self, timezone: str | None = None):
        """Initialize clock for the given clinic timezone."""
        self.timezone = ZoneInfo(timezone or settings.clinic_timezone)
        self._last: datetime | None = None
        self._lock = threading.Lock()

    def _read(self) -> datetime:
        return datetime.now(UTC)

    def now(self) -> datetime:
        """Return the current UTC time, monotonic across calls."""
        current = self._read()
        with self._lock:
            if self._last is not None and current < self._last:
                current = self._last
            self._last = current
        return current

    def local_now(self) -> datetime:
        """Return the current time in the clinic timezone."""
        return self.now().astimezone(self.timezone)

    def today(self) -> date:
        """Return the clinic's current calendar day."""
        return self.local_now().date()


def new_id() -> uuid.UUID:
    """Generate a unique identifier for appointments and queue entries."""
    return uuid.uuid4()


# Global clock instance
_clock: Clock | None = None


def get_clock() -> Clock:
    """Get or create the process-wide clock."""
    global _clock

    if _clock is None:
        _clock = Clock()

    return _clock
