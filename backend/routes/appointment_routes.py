from datetime import datetime, timedelta
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import ensure_capabilities, get_current_user
from backend.core import config
from backend.core.permissions import Capability, Role, parse_role
from backend.database import ensure_appointment_schema, ensure_working_hours_schema, get_db
from backend.models.appointment import Appointment, AppointmentStatus
from backend.models.user import User
from backend.scheduling.errors import (
    AppointmentNotFoundError,
    ConflictError,
    InvalidTransitionError,
    SchedulingError,
)
from backend.scheduling.intervals import appointment_end, clinic_now, to_clinic_time
from backend.scheduling.notifications import BackgroundNotifier, get_notifier
from backend.scheduling.service import AppointmentCreate, SchedulingService

router = APIRouter(tags=['appointments'])

MIN_DURATION_MINUTES = 15
MAX_DURATION_MINUTES = 480
MAX_NOTES_LENGTH = 2000
MAX_UPCOMING_DAYS = 60


def _validate_duration(value: int | None) -> int | None:
    if value is None:
        return None
    if value < MIN_DURATION_MINUTES:
        raise ValueError(f'Duration must be at least {MIN_DURATION_MINUTES} minutes.')
    if value > MAX_DURATION_MINUTES:
        raise ValueError(f'Duration must be at most {MAX_DURATION_MINUTES} minutes.')
    return value


def _validate_notes(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > MAX_NOTES_LENGTH:
        raise ValueError(f'Notes must be {MAX_NOTES_LENGTH} characters or fewer.')

    return normalized


def _validate_price(value: Decimal | None) -> Decimal | None:
    if value is not None and value < 0:
        raise ValueError('Price cannot be negative.')
    return value


def _validate_reference(value: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError('Identifier is required.')
    return normalized


class CreateAppointmentRequest(BaseModel):
    patient_id: str
    therapist_id: str
    scheduled_at: datetime
    duration: int
    notes: str | None = None
    status: AppointmentStatus | None = None
    price: Decimal | None = None

    @field_validator('patient_id', 'therapist_id')
    @classmethod
    def validate_reference(cls, value: str) -> str:
        return _validate_reference(value)

    @field_validator('duration')
    @classmethod
    def validate_duration(cls, value: int) -> int:
        return _validate_duration(value)

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _validate_notes(value)

    @field_validator('price')
    @classmethod
    def validate_price(cls, value: Decimal | None) -> Decimal | None:
        return _validate_price(value)

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: AppointmentStatus | None) -> AppointmentStatus | None:
        if value == AppointmentStatus.CANCELLED:
            raise ValueError('Appointments cannot be created as cancelled.')
        return value


class UpdateAppointmentRequest(BaseModel):
    patient_id: str | None = None
    therapist_id: str | None = None
    scheduled_at: datetime | None = None
    duration: int | None = None
    status: AppointmentStatus | None = None
    notes: str | None = None
    price: Decimal | None = None
    is_paid: bool | None = None

    @field_validator('patient_id', 'therapist_id')
    @classmethod
    def validate_reference(cls, value: str | None) -> str | None:
        return None if value is None else _validate_reference(value)

    @field_validator('duration')
    @classmethod
    def validate_duration(cls, value: int | None) -> int | None:
        return _validate_duration(value)

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _validate_notes(value)

    @field_validator('price')
    @classmethod
    def validate_price(cls, value: Decimal | None) -> Decimal | None:
        return _validate_price(value)


class CancelAppointmentRequest(BaseModel):
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _validate_notes(value)


class RescheduleAppointmentRequest(BaseModel):
    new_date: datetime


class AppointmentResponse(BaseModel):
    id: str
    patient_id: str
    therapist_id: str
    patient_name: str | None = None
    therapist_name: str | None = None
    scheduled_at: datetime
    end_at: datetime
    duration: int
    status: str
    price: Decimal
    notes: str | None = None
    is_paid: bool


class ConflictResponse(BaseModel):
    type: str
    message: str
    conflicting_appointment_id: str | None = None


class AvailabilityResponse(BaseModel):
    available: bool
    conflicts: list[ConflictResponse]


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
        ensure_working_hours_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Database unavailable. Verify DATABASE_URL and database credentials.',
        ) from exc


def database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail='Database unavailable. Verify DATABASE_URL and database credentials.',
    )


def scheduling_http_error(exc: SchedulingError) -> HTTPException:
    if isinstance(exc, AppointmentNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, InvalidTransitionError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def to_appointment_response(appointment: Appointment) -> AppointmentResponse:
    patient_user = appointment.patient.user if appointment.patient else None
    therapist_user = appointment.therapist.user if appointment.therapist else None

    return AppointmentResponse(
        id=appointment.id,
        patient_id=appointment.patient_id,
        therapist_id=appointment.therapist_id,
        patient_name=patient_user.name if patient_user else None,
        therapist_name=therapist_user.name if therapist_user else None,
        scheduled_at=appointment.scheduled_at,
        end_at=appointment_end(appointment.scheduled_at, appointment.duration),
        duration=appointment.duration,
        status=appointment.status,
        price=Decimal(appointment.price or 0),
        notes=appointment.notes,
        is_paid=bool(appointment.is_paid),
    )


def own_therapist_id(user: User) -> str | None:
    therapist = getattr(user, 'therapist', None)
    return therapist.id if therapist else None


def own_patient_id(user: User) -> str | None:
    patient = getattr(user, 'patient', None)
    return patient.id if patient else None


def scoped_filters(user: User, therapist_id: str | None, patient_id: str | None) -> tuple[str | None, str | None]:
    """Narrow list filters to what the user's role may see."""
    role = parse_role(user.role)

    if role == Role.THERAPIST:
        return own_therapist_id(user), patient_id
    if role == Role.PATIENT:
        return None, own_patient_id(user)
    if role == Role.INTERN:
        if not user.supervisor_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Interns need a supervising therapist to view appointments.',
            )
        return user.supervisor_id, patient_id

    return therapist_id, patient_id


def ensure_can_view(user: User, appointment: Appointment) -> None:
    role = parse_role(user.role)

    allowed = (
        role == Role.ADMIN
        or (role == Role.THERAPIST and appointment.therapist_id == own_therapist_id(user))
        or (role == Role.INTERN and appointment.therapist_id == user.supervisor_id)
        or (role == Role.PATIENT and appointment.patient_id == own_patient_id(user))
    )
    if not allowed:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='You cannot view this appointment.')


def ensure_can_manage(user: User, therapist_id: str) -> None:
    ensure_capabilities(user, Capability.MANAGE_APPOINTMENTS)

    if parse_role(user.role) == Role.THERAPIST and therapist_id != own_therapist_id(user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='You can only manage your own appointments.',
        )


@router.get('', response_model=list[AppointmentResponse])
def list_appointments(
    therapist_id: str | None = Query(default=None),
    patient_id: str | None = Query(default=None),
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
    appointment_status: AppointmentStatus | None = Query(default=None, alias='status'),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: BackgroundNotifier = Depends(get_notifier),
):
    ensure_capabilities(current_user, Capability.VIEW_APPOINTMENTS)
    therapist_id, patient_id = scoped_filters(current_user, therapist_id, patient_id)

    range_start = (
        to_clinic_time(start_date, config.CLINIC_TIMEZONE)
        if start_date
        else clinic_now(config.CLINIC_TIMEZONE)
    )
    range_end = (
        to_clinic_time(end_date, config.CLINIC_TIMEZONE)
        if end_date
        else range_start + timedelta(days=config.DEFAULT_LIST_RANGE_DAYS)
    )
    if range_end < range_start:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='end_date must not be before start_date.',
        )

    if not therapist_id and not patient_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='A therapist or patient filter is required.',
        )

    ensure_database_ready()

    try:
        service = SchedulingService.for_session(db, notifier)
        if therapist_id:
            appointments = service.get_therapist_appointments(therapist_id, range_start, range_end)
            if patient_id:
                appointments = [appointment for appointment in appointments if appointment.patient_id == patient_id]
        else:
            appointments = service.get_patient_appointments(patient_id, range_start, range_end)

        if appointment_status:
            appointments = [
                appointment for appointment in appointments if appointment.status == appointment_status.value
            ]

        return [to_appointment_response(appointment) for appointment in appointments]
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/availability', response_model=AvailabilityResponse)
def check_availability(
    therapist_id: str = Query(...),
    scheduled_at: datetime = Query(...),
    duration: int = Query(..., ge=MIN_DURATION_MINUTES, le=MAX_DURATION_MINUTES),
    patient_id: str | None = Query(default=None),
    exclude_appointment_id: str | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: BackgroundNotifier = Depends(get_notifier),
):
    ensure_capabilities(current_user, Capability.VIEW_APPOINTMENTS)
    ensure_database_ready()

    try:
        service = SchedulingService.for_session(db, notifier)
        result = service.check_availability(
            therapist_id,
            to_clinic_time(scheduled_at, config.CLINIC_TIMEZONE),
            duration,
            exclude_appointment_id=exclude_appointment_id,
            patient_id=patient_id,
        )

        return AvailabilityResponse(
            available=result.available,
            conflicts=[
                ConflictResponse(
                    type=conflict.type.value,
                    message=conflict.message,
                    conflicting_appointment_id=(
                        conflict.conflicting_appointment.id if conflict.conflicting_appointment else None
                    ),
                )
                for conflict in result.conflicts
            ],
        )
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/upcoming', response_model=list[AppointmentResponse])
def list_upcoming_appointments(
    therapist_id: str | None = Query(default=None),
    days: int = Query(default=config.UPCOMING_DAYS, ge=1, le=MAX_UPCOMING_DAYS),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: BackgroundNotifier = Depends(get_notifier),
):
    ensure_capabilities(current_user, Capability.VIEW_APPOINTMENTS)
    therapist_id, _ = scoped_filters(current_user, therapist_id, None)
    if not therapist_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='A therapist filter is required.',
        )

    ensure_database_ready()

    try:
        service = SchedulingService.for_session(db, notifier)
        return [to_appointment_response(appointment) for appointment in service.get_upcoming_appointments(therapist_id, days)]
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: BackgroundNotifier = Depends(get_notifier),
):
    ensure_capabilities(current_user, Capability.VIEW_APPOINTMENTS)
    ensure_database_ready()

    try:
        appointment = SchedulingService.for_session(db, notifier).get_appointment(appointment_id)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    ensure_can_view(current_user, appointment)
    return to_appointment_response(appointment)


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: BackgroundNotifier = Depends(get_notifier),
):
    ensure_can_manage(current_user, data.therapist_id)
    ensure_database_ready()

    try:
        appointment = SchedulingService.for_session(db, notifier).create_appointment(
            AppointmentCreate(
                patient_id=data.patient_id,
                therapist_id=data.therapist_id,
                scheduled_at=to_clinic_time(data.scheduled_at, config.CLINIC_TIMEZONE),
                duration=data.duration,
                notes=data.notes,
                status=data.status,
                price=data.price,
            )
        )
        return to_appointment_response(appointment)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.put('/{appointment_id}', response_model=AppointmentResponse)
def update_appointment(
    appointment_id: str,
    data: UpdateAppointmentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: BackgroundNotifier = Depends(get_notifier),
):
    ensure_capabilities(current_user, Capability.MANAGE_APPOINTMENTS)
    ensure_database_ready()

    updates = data.model_dump(exclude_unset=True)
    if 'scheduled_at' in updates and updates['scheduled_at'] is not None:
        updates['scheduled_at'] = to_clinic_time(updates['scheduled_at'], config.CLINIC_TIMEZONE)

    for required_field in ('patient_id', 'therapist_id', 'scheduled_at', 'duration', 'status', 'price', 'is_paid'):
        if required_field in updates and updates[required_field] is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f'{required_field} cannot be null.',
            )

    try:
        service = SchedulingService.for_session(db, notifier)
        existing = service.get_appointment(appointment_id)
        ensure_can_manage(current_user, existing.therapist_id)
        if 'therapist_id' in updates:
            ensure_can_manage(current_user, updates['therapist_id'])

        appointment = service.update_appointment(appointment_id, updates)
        return to_appointment_response(appointment)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.delete('/{appointment_id}', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: str,
    data: CancelAppointmentRequest | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: BackgroundNotifier = Depends(get_notifier),
):
    ensure_capabilities(current_user, Capability.MANAGE_APPOINTMENTS)
    ensure_database_ready()

    try:
        service = SchedulingService.for_session(db, notifier)
        existing = service.get_appointment(appointment_id)
        ensure_can_manage(current_user, existing.therapist_id)

        appointment = service.cancel_appointment(appointment_id, data.reason if data else None)
        return to_appointment_response(appointment)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.post('/{appointment_id}/reschedule', response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: str,
    data: RescheduleAppointmentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: BackgroundNotifier = Depends(get_notifier),
):
    ensure_capabilities(current_user, Capability.MANAGE_APPOINTMENTS)
    ensure_database_ready()

    try:
        service = SchedulingService.for_session(db, notifier)
        existing = service.get_appointment(appointment_id)
        ensure_can_manage(current_user, existing.therapist_id)

        appointment = service.reschedule_appointment(
            appointment_id,
            to_clinic_time(data.new_date, config.CLINIC_TIMEZONE),
        )
        return to_appointment_response(appointment)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc
