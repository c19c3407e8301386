from fastapi import APIRouter, Depends, HTTPException, Path, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import ensure_capabilities, get_current_user
from backend.core.permissions import Capability, Role, parse_role
from backend.database import ensure_working_hours_schema, get_db
from backend.models.therapist import Therapist
from backend.models.user import User
from backend.scheduling.intervals import parse_time_of_day
from backend.scheduling.repositories import WorkingHoursRepository

router = APIRouter(tags=['working-hours'])

DAY_NAMES = ('Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday')


class WorkingHoursRequest(BaseModel):
    start_time: str
    end_time: str

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_time_of_day(cls, value: str) -> str:
        normalized = value.strip()
        parse_time_of_day(normalized)
        return normalized

    @model_validator(mode='after')
    def validate_window(self) -> 'WorkingHoursRequest':
        if parse_time_of_day(self.start_time) >= parse_time_of_day(self.end_time):
            raise ValueError('start_time must be before end_time.')
        return self


class WorkingHoursResponse(BaseModel):
    therapist_id: str
    day_of_week: int
    day_name: str
    start_time: str
    end_time: str

    class Config:
        from_attributes = True


def to_working_hours_response(working_hours) -> WorkingHoursResponse:
    return WorkingHoursResponse(
        therapist_id=working_hours.therapist_id,
        day_of_week=working_hours.day_of_week,
        day_name=DAY_NAMES[working_hours.day_of_week],
        start_time=working_hours.start_time,
        end_time=working_hours.end_time,
    )


def ensure_database_ready() -> None:
    try:
        ensure_working_hours_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Database unavailable. Verify DATABASE_URL and database credentials.',
        ) from exc


def ensure_can_manage_schedule(user: User, therapist_id: str) -> None:
    ensure_capabilities(user, Capability.MANAGE_WORKING_HOURS)

    therapist = getattr(user, 'therapist', None)
    if parse_role(user.role) == Role.THERAPIST and (therapist is None or therapist.id != therapist_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='You can only change your own working hours.',
        )


def get_therapist_or_404(db: Session, therapist_id: str) -> Therapist:
    therapist = db.query(Therapist).filter(Therapist.id == therapist_id).first()
    if therapist is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Therapist not found.')
    return therapist


@router.get('/{therapist_id}', response_model=list[WorkingHoursResponse])
def list_working_hours(
    therapist_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_capabilities(current_user, Capability.VIEW_WORKING_HOURS)
    ensure_database_ready()

    try:
        get_therapist_or_404(db, therapist_id)
        return [
            to_working_hours_response(working_hours)
            for working_hours in WorkingHoursRepository(db).list_for_therapist(therapist_id)
        ]
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Database unavailable. Verify DATABASE_URL and database credentials.',
        ) from exc


@router.put('/{therapist_id}/{day_of_week}', response_model=WorkingHoursResponse)
def set_working_hours(
    data: WorkingHoursRequest,
    therapist_id: str,
    day_of_week: int = Path(..., ge=0, le=6),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_can_manage_schedule(current_user, therapist_id)
    ensure_database_ready()

    try:
        get_therapist_or_404(db, therapist_id)
        working_hours = WorkingHoursRepository(db).upsert(
            therapist_id,
            day_of_week,
            data.start_time,
            data.end_time,
        )
        return to_working_hours_response(working_hours)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Database unavailable. Verify DATABASE_URL and database credentials.',
        ) from exc


@router.delete('/{therapist_id}/{day_of_week}', status_code=status.HTTP_204_NO_CONTENT)
def remove_working_hours(
    therapist_id: str,
    day_of_week: int = Path(..., ge=0, le=6),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_can_manage_schedule(current_user, therapist_id)
    ensure_database_ready()

    try:
        repository = WorkingHoursRepository(db)
        working_hours = repository.find_one(therapist_id, day_of_week)
        if working_hours is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Working hours not found.',
            )

        repository.delete(working_hours)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Database unavailable. Verify DATABASE_URL and database credentials.',
        ) from exc
