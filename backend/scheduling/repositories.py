"""Database access for the scheduling core."""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from backend.models.appointment import BLOCKING_STATUSES, Appointment
from backend.models.patient import Patient
from backend.models.therapist import Therapist
from backend.models.working_hours import WorkingHours


class WorkingHoursRepository:
    """Repository for therapist working hours."""

    def __init__(self, db: Session):
        self.db = db

    def find_one(self, therapist_id: str, day_of_week: int) -> Optional[WorkingHours]:
        return (
            self.db.query(WorkingHours)
            .filter(WorkingHours.therapist_id == therapist_id, WorkingHours.day_of_week == day_of_week)
            .first()
        )

    def list_for_therapist(self, therapist_id: str) -> list[WorkingHours]:
        return (
            self.db.query(WorkingHours)
            .filter(WorkingHours.therapist_id == therapist_id)
            .order_by(WorkingHours.day_of_week.asc())
            .all()
        )

    def upsert(self, therapist_id: str, day_of_week: int, start_time: str, end_time: str) -> WorkingHours:
        """Create or replace the window for one weekday"""
        working_hours = self.find_one(therapist_id, day_of_week)
        if working_hours is None:
            working_hours = WorkingHours(therapist_id=therapist_id, day_of_week=day_of_week)
            self.db.add(working_hours)

        working_hours.start_time = start_time
        working_hours.end_time = end_time
        self.db.commit()
        self.db.refresh(working_hours)
        return working_hours

    def delete(self, working_hours: WorkingHours) -> None:
        self.db.delete(working_hours)
        self.db.commit()


class AppointmentRepository:
    """Repository for appointment database operations"""

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def _with_relations(query):
        return query.options(
            joinedload(Appointment.patient).joinedload(Patient.user),
            joinedload(Appointment.therapist).joinedload(Therapist.user),
        )

    def find_by_id(self, appointment_id: str, with_relations: bool = False) -> Optional[Appointment]:
        query = self.db.query(Appointment)
        if with_relations:
            query = self._with_relations(query)
        return query.filter(Appointment.id == appointment_id).first()

    def therapist_exists(self, therapist_id: str) -> bool:
        return self.db.query(Therapist.id).filter(Therapist.id == therapist_id).first() is not None

    def patient_exists(self, patient_id: str) -> bool:
        return self.db.query(Patient.id).filter(Patient.id == patient_id).first() is not None

    def lock_therapist(self, therapist_id: str) -> None:
        """Take a row lock on the therapist until the current transaction ends.

        Serializes check-then-write sequences for one therapist. Dialects
        without ``FOR UPDATE`` support ignore the clause.
        """
        self.db.query(Therapist.id).filter(Therapist.id == therapist_id).with_for_update().first()

    def find_overlapping(
        self,
        therapist_id: str,
        window_start: datetime,
        window_end: datetime,
        exclude_id: Optional[str] = None,
    ) -> list[Appointment]:
        """Blocking appointments for a therapist starting inside the window.

        A coarse prefilter; callers compute exact overlap in memory.
        """
        query = self.db.query(Appointment).filter(
            Appointment.therapist_id == therapist_id,
            Appointment.status.in_(BLOCKING_STATUSES),
            Appointment.scheduled_at >= window_start,
            Appointment.scheduled_at <= window_end,
        )
        if exclude_id:
            query = query.filter(Appointment.id != exclude_id)
        return query.order_by(Appointment.scheduled_at.asc()).all()

    def find_patient_overlapping(
        self,
        patient_id: str,
        window_start: datetime,
        window_end: datetime,
        exclude_id: Optional[str] = None,
    ) -> list[Appointment]:
        query = self.db.query(Appointment).filter(
            Appointment.patient_id == patient_id,
            Appointment.status.in_(BLOCKING_STATUSES),
            Appointment.scheduled_at >= window_start,
            Appointment.scheduled_at <= window_end,
        )
        if exclude_id:
            query = query.filter(Appointment.id != exclude_id)
        return query.order_by(Appointment.scheduled_at.asc()).all()

    def find_many_for_therapist(self, therapist_id: str, start_date: datetime, end_date: datetime) -> list[Appointment]:
        return (
            self.db.query(Appointment)
            .options(joinedload(Appointment.patient).joinedload(Patient.user))
            .filter(
                Appointment.therapist_id == therapist_id,
                Appointment.scheduled_at >= start_date,
                Appointment.scheduled_at <= end_date,
            )
            .order_by(Appointment.scheduled_at.asc())
            .all()
        )

    def find_many_for_patient(self, patient_id: str, start_date: datetime, end_date: datetime) -> list[Appointment]:
        return (
            self.db.query(Appointment)
            .options(joinedload(Appointment.therapist).joinedload(Therapist.user))
            .filter(
                Appointment.patient_id == patient_id,
                Appointment.scheduled_at >= start_date,
                Appointment.scheduled_at <= end_date,
            )
            .order_by(Appointment.scheduled_at.asc())
            .all()
        )

    def find_upcoming(self, therapist_id: str, start_date: datetime, end_date: datetime) -> list[Appointment]:
        return (
            self.db.query(Appointment)
            .options(joinedload(Appointment.patient).joinedload(Patient.user))
            .filter(
                Appointment.therapist_id == therapist_id,
                Appointment.status.in_(BLOCKING_STATUSES),
                Appointment.scheduled_at >= start_date,
                Appointment.scheduled_at <= end_date,
            )
            .order_by(Appointment.scheduled_at.asc())
            .all()
        )

    def create(self, **appointment_data) -> Appointment:
        appointment = Appointment(**appointment_data)
        self.db.add(appointment)
        self.db.commit()
        return self.find_by_id(appointment.id, with_relations=True)

    def update(self, appointment: Appointment, **updates) -> Appointment:
        for key, value in updates.items():
            if hasattr(appointment, key):
                setattr(appointment, key, value)

        self.db.commit()
        self.db.refresh(appointment)
        return self.find_by_id(appointment.id, with_relations=True)

    def rollback(self) -> None:
        self.db.rollback()
