import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from backend.core import config
from backend.core.logging_config import setup_logging
from backend.database import Base, engine, ensure_appointment_schema, ensure_working_hours_schema
from backend.models import appointment, patient, therapist, user, working_hours  # noqa: F401
from backend.routes import appointment_routes, auth_routes, working_hours_routes
from backend.scheduling.notifications import shutdown_notifier

setup_logging()
config.validate_runtime_config()

app = FastAPI(title='Clinic Scheduling API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_appointment_schema()
        ensure_working_hours_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.on_event('shutdown')
def stop_notifications() -> None:
    shutdown_notifier()


@app.get('/')
def root():
    return {'status': 'Clinic Scheduling API Running'}


@app.get('/health')
def health():
    try:
        with engine.connect() as connection:
            connection.execute(text('SELECT 1'))
    except SQLAlchemyError:
        logger.exception('Health check failed')
        return JSONResponse(
            status_code=503,
            content={'status': 'unhealthy', 'database': 'disconnected', 'environment': config.APP_ENV},
        )

    return {'status': 'healthy', 'database': 'connected', 'environment': config.APP_ENV}


app.include_router(auth_routes.router, prefix='/auth')
app.include_router(appointment_routes.router, prefix='/appointments')
app.include_router(working_hours_routes.router, prefix='/working-hours')
