"""Actor identity carried by every state-changing command."""

from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class ActorRole(str, Enum):
    """Role of the caller, as verified by the upstream gateway."""

    PATIENT = "PATIENT"
    DOCTOR = "DOCTOR"
    STAFF = "STAFF"
    SYSTEM = "SYSTEM"


class Actor(BaseModel):
    """Who is asking: a verified id plus role."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    role: ActorRole

    @property
    def is_staff(self) -> bool:
        """Staff and the system timer act with clinic-wide authority."""
        return self.role in (ActorRole.STAFF, ActorRole.SYSTEM)

    def is_doctor(self, doctor_id: UUID) -> bool:
        """Check whether the actor is the given doctor."""
        return self.role == ActorRole.DOCTOR and self.id == doctor_id

    def is_patient(self, patient_id: UUID) -> bool:
        """Check whether the actor is the given patient."""
        return self.role == ActorRole.PATIENT and self.id == patient_id
