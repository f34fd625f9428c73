import os
from dotenv import load_dotenv
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from clinic_scheduler.core import config


load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL")


def build_engine(url: str):
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    return create_engine(url, echo=config.SQL_ECHO, connect_args=connect_args)


engine = build_engine(DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

SEAT_BACKFILL_SQL = """
UPDATE appointments SET seat_number = (
    SELECT COUNT(*) FROM appointments AS earlier
    WHERE earlier.appointment_date = appointments.appointment_date
      AND earlier.appointment_time = appointments.appointment_time
      AND earlier.id <= appointments.id
)
WHERE seat_number IS NULL
"""

CASE_BACKFILL_SQL = """
INSERT INTO patient_cases (case_id, created_at)
SELECT case_id, MIN(created_at) FROM appointments
WHERE case_id NOT IN (SELECT case_id FROM patient_cases)
GROUP BY case_id
"""

_schema_lock = Lock()
_appointment_schema_checked = False
_slot_settings_schema_checked = False


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

        with engine.begin() as connection:
            if 'seat_number' not in existing_columns:
                # Number existing rows per slot in booking order so the unique seat index can be built.
                connection.execute(text('ALTER TABLE appointments ADD COLUMN seat_number INTEGER'))
                connection.execute(text(SEAT_BACKFILL_SQL))
                connection.execute(
                    text(
                        'CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_slot_seat '
                        'ON appointments(appointment_date, appointment_time, seat_number)'
                    )
                )
            if 'patient_cases' in inspector.get_table_names():
                connection.execute(text(CASE_BACKFILL_SQL))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_date_time ON appointments(appointment_date, appointment_time)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_case_created ON appointments(case_id, created_at)')
            )

        _appointment_schema_checked = True


def ensure_slot_settings_schema() -> None:
    global _slot_settings_schema_checked

    if _slot_settings_schema_checked:
        return

    with _schema_lock:
        if _slot_settings_schema_checked:
            return

        inspector = inspect(engine)

        if 'time_slot_settings' not in inspector.get_table_names():
            _slot_settings_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('time_slot_settings')}

        with engine.begin() as connection:
            if 'updated_at' not in existing_columns:
                connection.execute(text('ALTER TABLE time_slot_settings ADD COLUMN updated_at TIMESTAMP'))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_time_slot_settings_date ON time_slot_settings(date, is_disabled)')
            )

        _slot_settings_schema_checked = True


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
