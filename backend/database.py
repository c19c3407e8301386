import os
from dotenv import load_dotenv
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker


load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clinic.db")

engine = create_engine(DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_appointment_schema_checked = False
_working_hours_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_appointment_schema() -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(engine)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('price', 'ALTER TABLE appointments ADD COLUMN price NUMERIC(10, 2) DEFAULT 0'),
            ('is_paid', 'ALTER TABLE appointments ADD COLUMN is_paid BOOLEAN DEFAULT FALSE'),
            ('notes', 'ALTER TABLE appointments ADD COLUMN notes TEXT'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_therapist_scheduled '
                    'ON appointments(therapist_id, scheduled_at)'
                )
            )
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_patient_scheduled '
                    'ON appointments(patient_id, scheduled_at)'
                )
            )
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_therapist_active_slot '
                    'ON appointments(therapist_id, scheduled_at) '
                    "WHERE status IN ('SCHEDULED', 'CONFIRMED')"
                )
            )

        _appointment_schema_checked = True


def ensure_working_hours_schema() -> None:
    global _working_hours_schema_checked

    if _working_hours_schema_checked:
        return

    with _schema_lock:
        if _working_hours_schema_checked:
            return

        inspector = inspect(engine)

        if 'working_hours' not in inspector.get_table_names():
            _working_hours_schema_checked = True
            return

        with engine.begin() as connection:
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_working_hours_therapist_day '
                    'ON working_hours(therapist_id, day_of_week)'
                )
            )

        _working_hours_schema_checked = True
