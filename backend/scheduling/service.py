"""Scheduling service - availability checks and appointment lifecycle."""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.core import config
from backend.models.appointment import BLOCKING_STATUSES, Appointment, AppointmentStatus
from backend.scheduling import intervals
from backend.scheduling.errors import AppointmentNotFoundError, ConflictError, InvalidTransitionError
from backend.scheduling.notifications import BackgroundNotifier, NotificationKind, get_notifier
from backend.scheduling.repositories import AppointmentRepository, WorkingHoursRepository

logger = logging.getLogger(__name__)

CANCELLATION_NOTE_PREFIX = 'Cancelado: '
CONCURRENT_BOOKING_MESSAGE = 'This time was booked by another request'
RESCHEDULE_CONFLICT_PREFIX = 'New time is not available'

UPDATABLE_FIELDS = frozenset(
    {'patient_id', 'therapist_id', 'scheduled_at', 'duration', 'status', 'notes', 'price', 'is_paid'}
)
SLOT_FIELDS = ('therapist_id', 'patient_id', 'scheduled_at', 'duration')
# Cancelled appointments only take payment updates; reasons go through cancel.
CANCELLED_MUTABLE_FIELDS = frozenset({'is_paid'})

_SLOT_INDEX_MARKERS = (
    'uq_appointments_therapist_active_slot',
    'appointments.therapist_id, appointments.scheduled_at',
)


class ConflictType(str, Enum):
    OVERLAP = 'OVERLAP'
    WORKING_HOURS = 'WORKING_HOURS'
    PATIENT_UNAVAILABLE = 'PATIENT_UNAVAILABLE'
    THERAPIST_UNAVAILABLE = 'THERAPIST_UNAVAILABLE'


@dataclass
class Conflict:
    type: ConflictType
    message: str
    conflicting_appointment: Optional[Appointment] = None


@dataclass
class AvailabilityResult:
    available: bool
    conflicts: list[Conflict] = field(default_factory=list)

    @property
    def messages(self) -> list[str]:
        return [conflict.message for conflict in self.conflicts]


@dataclass
class AppointmentCreate:
    patient_id: str
    therapist_id: str
    scheduled_at: datetime
    duration: int
    notes: Optional[str] = None
    status: Optional[AppointmentStatus] = None
    price: Optional[Decimal] = None


def append_cancellation_reason(notes: Optional[str], reason: Optional[str]) -> Optional[str]:
    """Add a cancellation reason after any existing notes."""
    if reason is None or not reason.strip():
        return notes

    entry = f'{CANCELLATION_NOTE_PREFIX}{reason.strip()}'
    if not notes:
        return entry
    return f'{notes}\n\n{entry}'


def _is_slot_collision(exc: IntegrityError) -> bool:
    detail = str(exc.orig)
    return any(marker in detail for marker in _SLOT_INDEX_MARKERS)


class SchedulingService:
    """Decides bookability and performs appointment mutations.

    Nothing is cached between calls: every operation reads fresh state from
    the repositories. Writes that claim a time slot run under a therapist row
    lock so the availability check and the write happen atomically.
    """

    def __init__(
        self,
        appointments: AppointmentRepository,
        working_hours: WorkingHoursRepository,
        notifier: BackgroundNotifier,
    ):
        self.appointments = appointments
        self.working_hours = working_hours
        self.notifier = notifier

    @classmethod
    def for_session(cls, db: Session, notifier: Optional[BackgroundNotifier] = None) -> 'SchedulingService':
        return cls(
            AppointmentRepository(db),
            WorkingHoursRepository(db),
            notifier or get_notifier(),
        )

    # Availability

    def check_availability(
        self,
        therapist_id: str,
        scheduled_at: datetime,
        duration: int,
        exclude_appointment_id: Optional[str] = None,
        patient_id: Optional[str] = None,
    ) -> AvailabilityResult:
        if not self.appointments.therapist_exists(therapist_id):
            return AvailabilityResult(
                available=False,
                conflicts=[Conflict(ConflictType.THERAPIST_UNAVAILABLE, 'Therapist not found')],
            )

        conflicts = self._working_hours_conflicts(therapist_id, scheduled_at, duration)

        overlap_conflicts = self._overlap_conflicts(therapist_id, scheduled_at, duration, exclude_appointment_id)
        conflicts.extend(overlap_conflicts)

        if patient_id and not self.appointments.patient_exists(patient_id):
            conflicts.append(Conflict(ConflictType.PATIENT_UNAVAILABLE, 'Patient not found'))
        elif patient_id:
            already_reported = {conflict.conflicting_appointment.id for conflict in overlap_conflicts}
            conflicts.extend(
                self._patient_conflicts(patient_id, scheduled_at, duration, exclude_appointment_id, already_reported)
            )

        return AvailabilityResult(available=not conflicts, conflicts=conflicts)

    def _working_hours_conflicts(self, therapist_id: str, scheduled_at: datetime, duration: int) -> list[Conflict]:
        working_hours = self.working_hours.find_one(therapist_id, intervals.day_of_week(scheduled_at))
        if working_hours is None:
            return [Conflict(ConflictType.WORKING_HOURS, 'Therapist does not work on this day')]

        if not intervals.fits_within(scheduled_at, duration, working_hours.start_time, working_hours.end_time):
            return [
                Conflict(
                    ConflictType.WORKING_HOURS,
                    f'Outside working hours ({working_hours.start_time} - {working_hours.end_time})',
                )
            ]

        return []

    def _overlap_conflicts(
        self,
        therapist_id: str,
        scheduled_at: datetime,
        duration: int,
        exclude_appointment_id: Optional[str],
    ) -> list[Conflict]:
        candidates = self.appointments.find_overlapping(
            therapist_id,
            scheduled_at - intervals.OVERLAP_SEARCH_WINDOW,
            scheduled_at + intervals.OVERLAP_SEARCH_WINDOW,
            exclude_id=exclude_appointment_id,
        )
        return [
            Conflict(
                ConflictType.OVERLAP,
                f'Conflicts with appointment at {candidate.scheduled_at:%H:%M}',
                conflicting_appointment=candidate,
            )
            for candidate in self._overlapping(candidates, scheduled_at, duration)
        ]

    def _patient_conflicts(
        self,
        patient_id: str,
        scheduled_at: datetime,
        duration: int,
        exclude_appointment_id: Optional[str],
        already_reported: set[str],
    ) -> list[Conflict]:
        candidates = self.appointments.find_patient_overlapping(
            patient_id,
            scheduled_at - intervals.OVERLAP_SEARCH_WINDOW,
            scheduled_at + intervals.OVERLAP_SEARCH_WINDOW,
            exclude_id=exclude_appointment_id,
        )
        return [
            Conflict(
                ConflictType.PATIENT_UNAVAILABLE,
                f'Patient already has an appointment at {candidate.scheduled_at:%H:%M}',
                conflicting_appointment=candidate,
            )
            for candidate in self._overlapping(candidates, scheduled_at, duration)
            if candidate.id not in already_reported
        ]

    @staticmethod
    def _overlapping(candidates: list[Appointment], scheduled_at: datetime, duration: int) -> list[Appointment]:
        proposed_end = intervals.appointment_end(scheduled_at, duration)
        return [
            candidate
            for candidate in candidates
            if intervals.overlaps(
                scheduled_at,
                proposed_end,
                candidate.scheduled_at,
                intervals.appointment_end(candidate.scheduled_at, candidate.duration),
            )
        ]

    # Mutations

    @contextmanager
    def _write(self, lock_therapist_id: Optional[str] = None):
        """Run a write, rolling back on any failure.

        With ``lock_therapist_id`` the therapist row stays locked until the
        write commits, so concurrent bookings for that therapist serialize.
        """
        try:
            if lock_therapist_id:
                self.appointments.lock_therapist(lock_therapist_id)
            yield
        except IntegrityError as exc:
            self.appointments.rollback()
            if _is_slot_collision(exc):
                raise ConflictError([CONCURRENT_BOOKING_MESSAGE]) from exc
            raise
        except Exception:
            self.appointments.rollback()
            raise

    def _require_available(self, availability: AvailabilityResult, prefix: str = 'Conflicts detected') -> None:
        if availability.available:
            return

        logger.warning('Slot rejected: %s', '; '.join(availability.messages))
        raise ConflictError(availability.messages, prefix=prefix)

    def _load(self, appointment_id: str) -> Appointment:
        appointment = self.appointments.find_by_id(appointment_id)
        if appointment is None:
            raise AppointmentNotFoundError(appointment_id)
        return appointment

    def create_appointment(self, data: AppointmentCreate) -> Appointment:
        with self._write(lock_therapist_id=data.therapist_id):
            availability = self.check_availability(
                data.therapist_id,
                data.scheduled_at,
                data.duration,
                patient_id=data.patient_id,
            )
            self._require_available(availability)

            status = AppointmentStatus(data.status) if data.status else AppointmentStatus.SCHEDULED
            appointment = self.appointments.create(
                patient_id=data.patient_id,
                therapist_id=data.therapist_id,
                scheduled_at=data.scheduled_at,
                duration=data.duration,
                notes=data.notes,
                status=status.value,
                price=data.price if data.price is not None else Decimal('0'),
            )

        logger.info(
            'Appointment %s created for therapist %s at %s',
            appointment.id,
            appointment.therapist_id,
            appointment.scheduled_at,
        )
        self.notifier.dispatch(NotificationKind.REMINDER, appointment)
        return appointment

    def update_appointment(self, appointment_id: str, updates: Mapping[str, Any]) -> Appointment:
        unknown_fields = set(updates) - UPDATABLE_FIELDS
        if unknown_fields:
            raise ValueError(f"Unsupported appointment fields: {', '.join(sorted(unknown_fields))}")

        appointment = self._load(appointment_id)
        changes = dict(updates)

        if 'status' in changes:
            changes['status'] = AppointmentStatus(changes['status']).value
            if changes['status'] == appointment.status:
                del changes['status']
            elif changes['status'] == AppointmentStatus.CANCELLED.value:
                raise InvalidTransitionError('Use the cancel operation to cancel an appointment.')

        if appointment.status == AppointmentStatus.CANCELLED.value:
            blocked = set(changes) - CANCELLED_MUTABLE_FIELDS
            if blocked:
                raise InvalidTransitionError(
                    f"Cancelled appointments cannot change: {', '.join(sorted(blocked))}"
                )

        proposed = {name: changes.get(name, getattr(appointment, name)) for name in SLOT_FIELDS}
        slot_changed = any(proposed[name] != getattr(appointment, name) for name in SLOT_FIELDS)
        becomes_blocking = (
            changes.get('status') in BLOCKING_STATUSES and appointment.status not in BLOCKING_STATUSES
        )

        if slot_changed or becomes_blocking:
            with self._write(lock_therapist_id=proposed['therapist_id']):
                availability = self.check_availability(
                    proposed['therapist_id'],
                    proposed['scheduled_at'],
                    proposed['duration'],
                    exclude_appointment_id=appointment.id,
                    patient_id=proposed['patient_id'],
                )
                self._require_available(availability)
                updated = self.appointments.update(appointment, **changes)
        else:
            with self._write():
                updated = self.appointments.update(appointment, **changes)

        logger.info('Appointment %s updated (%s)', updated.id, ', '.join(sorted(changes)) or 'no changes')
        return updated

    def cancel_appointment(self, appointment_id: str, reason: Optional[str] = None) -> Appointment:
        appointment = self._load(appointment_id)
        was_cancelled = appointment.status == AppointmentStatus.CANCELLED.value

        with self._write():
            cancelled = self.appointments.update(
                appointment,
                status=AppointmentStatus.CANCELLED.value,
                notes=append_cancellation_reason(appointment.notes, reason),
            )

        if was_cancelled:
            return cancelled

        logger.info('Appointment %s cancelled', cancelled.id)
        self.notifier.dispatch(NotificationKind.CANCELLATION, cancelled)
        return cancelled

    def reschedule_appointment(self, appointment_id: str, new_date: datetime) -> Appointment:
        appointment = self._load(appointment_id)
        if appointment.status == AppointmentStatus.CANCELLED.value:
            raise InvalidTransitionError('Cancelled appointments cannot be rescheduled.')

        with self._write(lock_therapist_id=appointment.therapist_id):
            availability = self.check_availability(
                appointment.therapist_id,
                new_date,
                appointment.duration,
                exclude_appointment_id=appointment.id,
                patient_id=appointment.patient_id,
            )
            self._require_available(availability, prefix=RESCHEDULE_CONFLICT_PREFIX)
            rescheduled = self.appointments.update(
                appointment,
                scheduled_at=new_date,
                status=AppointmentStatus.SCHEDULED.value,
            )

        logger.info('Appointment %s rescheduled to %s', rescheduled.id, rescheduled.scheduled_at)
        self.notifier.dispatch(NotificationKind.RESCHEDULE, rescheduled)
        return rescheduled

    # Reads

    def get_appointment(self, appointment_id: str) -> Appointment:
        appointment = self.appointments.find_by_id(appointment_id, with_relations=True)
        if appointment is None:
            raise AppointmentNotFoundError(appointment_id)
        return appointment

    def get_therapist_appointments(self, therapist_id: str, start_date: datetime, end_date: datetime) -> list[Appointment]:
        return self.appointments.find_many_for_therapist(therapist_id, start_date, end_date)

    def get_patient_appointments(self, patient_id: str, start_date: datetime, end_date: datetime) -> list[Appointment]:
        return self.appointments.find_many_for_patient(patient_id, start_date, end_date)

    def get_upcoming_appointments(
        self,
        therapist_id: str,
        days: int = config.UPCOMING_DAYS,
        now: Optional[datetime] = None,
    ) -> list[Appointment]:
        start_date = now or intervals.clinic_now(config.CLINIC_TIMEZONE)
        return self.appointments.find_upcoming(therapist_id, start_date, start_date + timedelta(days=days))
