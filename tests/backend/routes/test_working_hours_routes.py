import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from backend.models.working_hours import WorkingHours
from backend.routes.working_hours_routes import (
    WorkingHoursRequest,
    list_working_hours,
    remove_working_hours,
    set_working_hours,
)


@pytest.fixture(autouse=True)
def skip_schema_checks(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('backend.routes.working_hours_routes.ensure_database_ready', lambda: None)


def test_request_strips_times() -> None:
    request = WorkingHoursRequest(start_time=' 07:30 ', end_time='24:00')

    assert request.start_time == '07:30'
    assert request.end_time == '24:00'


@pytest.mark.parametrize(
    ('start_time', 'end_time'),
    [('7:30', '12:00'), ('08:00', '25:00'), ('12:00', '12:00'), ('18:00', '08:00')],
)
def test_request_rejects_invalid_windows(start_time: str, end_time: str) -> None:
    with pytest.raises(ValidationError):
        WorkingHoursRequest(start_time=start_time, end_time=end_time)


def test_list_working_hours_is_ordered_by_day(db, clinic) -> None:
    response = list_working_hours(clinic.therapist.id, current_user=clinic.intern, db=db)

    assert [entry.day_of_week for entry in response] == [1, 2, 3, 4, 5]
    assert response[0].day_name == 'Monday'
    assert response[0].start_time == '08:00'


def test_list_working_hours_for_unknown_therapist(db, clinic) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_working_hours('missing', current_user=clinic.admin, db=db)

    assert exception_info.value.status_code == 404


def test_patient_cannot_view_working_hours(db, clinic) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_working_hours(clinic.therapist.id, current_user=clinic.patient_user, db=db)

    assert exception_info.value.status_code == 403


def test_therapist_adds_saturday_hours(db, clinic) -> None:
    response = set_working_hours(
        WorkingHoursRequest(start_time='08:00', end_time='12:00'),
        clinic.therapist.id,
        day_of_week=6,
        current_user=clinic.therapist_user,
        db=db,
    )

    assert response.day_name == 'Saturday'
    assert db.query(WorkingHours).filter(WorkingHours.therapist_id == clinic.therapist.id).count() == 6


def test_set_working_hours_replaces_existing_day(db, clinic) -> None:
    response = set_working_hours(
        WorkingHoursRequest(start_time='10:00', end_time='16:00'),
        clinic.therapist.id,
        day_of_week=1,
        current_user=clinic.admin,
        db=db,
    )

    assert (response.start_time, response.end_time) == ('10:00', '16:00')
    monday_rows = (
        db.query(WorkingHours)
        .filter(WorkingHours.therapist_id == clinic.therapist.id, WorkingHours.day_of_week == 1)
        .all()
    )
    assert len(monday_rows) == 1


def test_therapist_cannot_change_colleague_hours(db, clinic) -> None:
    with pytest.raises(HTTPException) as exception_info:
        set_working_hours(
            WorkingHoursRequest(start_time='08:00', end_time='12:00'),
            clinic.other_therapist.id,
            day_of_week=6,
            current_user=clinic.therapist_user,
            db=db,
        )

    assert exception_info.value.status_code == 403


def test_intern_cannot_change_hours(db, clinic) -> None:
    with pytest.raises(HTTPException) as exception_info:
        remove_working_hours(clinic.therapist.id, day_of_week=1, current_user=clinic.intern, db=db)

    assert exception_info.value.status_code == 403


def test_remove_working_hours(db, clinic) -> None:
    remove_working_hours(clinic.therapist.id, day_of_week=1, current_user=clinic.therapist_user, db=db)

    remaining = db.query(WorkingHours).filter(WorkingHours.therapist_id == clinic.therapist.id).all()
    assert sorted(entry.day_of_week for entry in remaining) == [2, 3, 4, 5]

    with pytest.raises(HTTPException) as exception_info:
        remove_working_hours(clinic.therapist.id, day_of_week=1, current_user=clinic.therapist_user, db=db)
    assert exception_info.value.status_code == 404
