"""Appointment model definitions."""

from datetime import datetime, timezone

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, String, UniqueConstraint
from clinic_scheduler.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Appointment(Base):
    """Represents one committed booking in a (date, time) slot."""
    __tablename__ = "appointments"
    __table_args__ = (
        # One row per seat; the database rejects a fifth writer even if its pre-check passed.
        UniqueConstraint("appointment_date", "appointment_time", "seat_number", name="uq_appointments_slot_seat"),
    )

    id = Column(Integer, primary_key=True)
    case_id = Column(String, ForeignKey("patient_cases.case_id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    phone = Column(String, nullable=False)
    gender = Column(String)
    age = Column(Integer)
    appointment_date = Column(Date, nullable=False)
    appointment_time = Column(String(5), nullable=False)
    seat_number = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default="scheduled")
    created_by = Column(String)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class PatientCase(Base):
    """Registry of issued case identifiers."""
    __tablename__ = "patient_cases"

    case_id = Column(String, primary_key=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
