import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from clinic_scheduler.core import config
from clinic_scheduler.database import Base, engine, ensure_appointment_schema, ensure_slot_settings_schema
from clinic_scheduler.models import appointment, slot_setting, user  # noqa: F401
from clinic_scheduler.routes import auth_routes, availability_routes, booking_routes, override_routes
from clinic_scheduler.scheduling.sync import availability_broadcaster, install_change_tracking

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)
logger = logging.getLogger(__name__)

config.validate_runtime_config()
install_change_tracking()

app = FastAPI(title='Clinic Scheduler API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)


@app.on_event('startup')
def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_appointment_schema()
        ensure_slot_settings_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and Postgres credentials.')
    availability_broadcaster.start()


@app.on_event('shutdown')
def stop_broadcaster() -> None:
    availability_broadcaster.stop()


@app.get('/')
def root():
    return {'status': 'Clinic Scheduler API Running'}


app.include_router(auth_routes.router, prefix='/auth')
app.include_router(availability_routes.router, prefix='/availability')
app.include_router(booking_routes.router, prefix='/appointments')
app.include_router(override_routes.router, prefix='/overrides')
