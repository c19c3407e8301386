"""Appointment model definitions."""

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, text
from sqlalchemy.orm import relationship
from backend.database import Base
from backend.models.identifiers import new_id
from backend.models.patient import Patient
from backend.models.therapist import Therapist


class AppointmentStatus(str, Enum):
    """Appointment lifecycle states."""
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    CHECKED_IN = "CHECKED_IN"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


# Statuses that occupy the therapist's time slot.
BLOCKING_STATUSES = (AppointmentStatus.SCHEDULED.value, AppointmentStatus.CONFIRMED.value)

_ACTIVE_SLOT_PREDICATE = text("status IN ('SCHEDULED', 'CONFIRMED')")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Appointment(Base):
    """Represents a scheduled physiotherapy session."""
    __tablename__ = "appointments"

    id = Column(String(36), primary_key=True, default=new_id)
    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=False)
    therapist_id = Column(String(36), ForeignKey("therapists.id"), nullable=False)
    scheduled_at = Column(DateTime, nullable=False)
    duration = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=AppointmentStatus.SCHEDULED.value)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    notes = Column(Text)
    is_paid = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    patient = relationship(Patient)
    therapist = relationship(Therapist)

    __table_args__ = (
        Index("idx_appointments_therapist_scheduled", "therapist_id", "scheduled_at"),
        Index("idx_appointments_patient_scheduled", "patient_id", "scheduled_at"),
        # One active booking per therapist start time.
        Index(
            "uq_appointments_therapist_active_slot",
            "therapist_id",
            "scheduled_at",
            unique=True,
            postgresql_where=_ACTIVE_SLOT_PREDICATE,
            sqlite_where=_ACTIVE_SLOT_PREDICATE,
        ),
    )

    def __repr__(self) -> str:
        return f"<Appointment {self.id} {self.scheduled_at} {self.status}>"
