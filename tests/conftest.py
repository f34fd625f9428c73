import os
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from clinic_scheduler.database import Base  # noqa: E402
from clinic_scheduler.models.appointment import Appointment, PatientCase  # noqa: E402
from clinic_scheduler.models.slot_setting import TimeSlotSetting  # noqa: E402
from clinic_scheduler.models.user import User  # noqa: E402
from clinic_scheduler.scheduling.sync import install_change_tracking  # noqa: E402

IST = timezone(timedelta(hours=5, minutes=30))
TABLES = [User.__table__, PatientCase.__table__, Appointment.__table__, TimeSlotSetting.__table__]


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 1, 5, 8, 0, tzinfo=IST)


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f'sqlite:///{tmp_path / "scheduler.db"}',
        connect_args={'check_same_thread': False},
    )
    Base.metadata.create_all(bind=engine, tables=TABLES)
    install_change_tracking()
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(bind=engine, tables=list(reversed(TABLES)))
        engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def patient_user() -> User:
    return User(id=1, email='patient@example.com', role='patient')


@pytest.fixture
def staff_user() -> User:
    return User(id=2, email='reception@clinic.example', role='staff')
