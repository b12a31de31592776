"""Database models."""

from clinicflow.models.appointments import appointments
from clinicflow.models.availability import doctor_availability, slot_blocks
from clinicflow.models.base import metadata
from clinicflow.models.queues import queue_entries, queue_states

__all__ = [
    "appointments",
    "doctor_availability",
    "metadata",
    "queue_entries",
    "queue_states",
    "slot_blocks",
]
