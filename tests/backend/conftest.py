import concurrent.futures
import os
import time
from datetime import datetime
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from backend.core import config  # noqa: E402
from backend.database import Base  # noqa: E402
from backend.models.appointment import Appointment, AppointmentStatus  # noqa: E402
from backend.models.patient import Patient  # noqa: E402
from backend.models.therapist import Therapist  # noqa: E402
from backend.models.user import User  # noqa: E402
from backend.models.working_hours import WorkingHours  # noqa: E402
from backend.scheduling.notifications import BackgroundNotifier  # noqa: E402
from backend.scheduling.service import SchedulingService  # noqa: E402


class InlineExecutor(concurrent.futures.Executor):
    """Runs submitted work immediately so tests can assert on delivery."""

    def submit(self, fn, /, *args, **kwargs):
        future = concurrent.futures.Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            future.set_exception(exc)
        return future


class RecordingSink:
    def __init__(self, error: Exception | None = None):
        self.sent = []
        self.error = error

    def send(self, kind, notification) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append((kind, notification))


@pytest.fixture
def session_factory():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def failing_sink():
    return RecordingSink(error=RuntimeError('gateway down'))


@pytest.fixture
def make_notifier():
    def factory(target_sink) -> BackgroundNotifier:
        return BackgroundNotifier(target_sink, executor=InlineExecutor())

    return factory


@pytest.fixture
def notifier(sink, make_notifier):
    return make_notifier(sink)


@pytest.fixture
def service(db, notifier):
    return SchedulingService.for_session(db, notifier)


def _add_therapist(db, email: str, name: str) -> tuple[User, Therapist]:
    user = User(email=email, name=name, role='THERAPIST')
    db.add(user)
    db.flush()
    therapist = Therapist(user_id=user.id, crefito='123456-F', specialty='Orthopedics')
    db.add(therapist)
    db.flush()
    return user, therapist


def _add_patient(db, email: str, name: str) -> tuple[User, Patient]:
    user = User(email=email, name=name, role='PATIENT')
    db.add(user)
    db.flush()
    patient = Patient(user_id=user.id)
    db.add(patient)
    db.flush()
    return user, patient


@pytest.fixture
def clinic(db):
    """Two therapists working Monday to Friday 08:00-18:00 and two patients."""
    admin = User(email='admin@clinic.test', name='Admin', role='ADMIN')
    db.add(admin)

    therapist_user, therapist = _add_therapist(db, 'ana@clinic.test', 'Ana Therapist')
    other_therapist_user, other_therapist = _add_therapist(db, 'bruno@clinic.test', 'Bruno Therapist')
    patient_user, patient = _add_patient(db, 'carla@clinic.test', 'Carla Patient')
    other_patient_user, other_patient = _add_patient(db, 'davi@clinic.test', 'Davi Patient')

    intern = User(email='intern@clinic.test', name='Intern', role='INTERN', supervisor_id=therapist.id)
    db.add(intern)

    for day in (1, 2, 3, 4, 5):
        for owner in (therapist, other_therapist):
            db.add(WorkingHours(therapist_id=owner.id, day_of_week=day, start_time='08:00', end_time='18:00'))

    db.commit()

    return SimpleNamespace(
        admin=admin,
        therapist_user=therapist_user,
        therapist=therapist,
        other_therapist_user=other_therapist_user,
        other_therapist=other_therapist,
        patient_user=patient_user,
        patient=patient,
        other_patient_user=other_patient_user,
        other_patient=other_patient,
        intern=intern,
    )


@pytest.fixture
def add_appointment(db, clinic):
    def factory(scheduled_at: datetime, duration: int = 60, status: AppointmentStatus = AppointmentStatus.SCHEDULED,
                therapist=None, patient=None, notes: str | None = None) -> Appointment:
        appointment = Appointment(
            patient_id=(patient or clinic.patient).id,
            therapist_id=(therapist or clinic.therapist).id,
            scheduled_at=scheduled_at,
            duration=duration,
            status=status.value,
            notes=notes,
            price=0,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return factory


@pytest.fixture
def server_in_utc(monkeypatch):
    """Server clock in UTC while the clinic runs three hours behind."""
    if not hasattr(time, 'tzset'):
        pytest.skip('time.tzset is not available on this platform')

    monkeypatch.setattr(config, 'CLINIC_TIMEZONE', 'America/Sao_Paulo')
    monkeypatch.setenv('TZ', 'UTC')
    time.tzset()
    try:
        yield 'America/Sao_Paulo'
    finally:
        monkeypatch.undo()
        time.tzset()
