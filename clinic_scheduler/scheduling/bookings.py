"""Reads and staff-side updates of stored appointments."""

import logging
from datetime import date

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_scheduler.models.appointment import Appointment
from clinic_scheduler.scheduling.case_ids import normalize_case_id
from clinic_scheduler.scheduling.errors import BookingNotFound, DataUnavailable
from clinic_scheduler.scheduling.records import BOOKING_STATUSES

logger = logging.getLogger(__name__)


def get_booking(db: Session, booking_id: int) -> Appointment:
    try:
        booking = db.query(Appointment).filter(Appointment.id == booking_id).first()
    except SQLAlchemyError as exc:
        raise DataUnavailable('Appointments could not be loaded.') from exc

    if booking is None:
        raise BookingNotFound(f'Appointment {booking_id} not found.')
    return booking


def list_bookings_for_date(db: Session, day: date) -> list[Appointment]:
    try:
        return db.query(Appointment).filter(
            Appointment.appointment_date == day,
        ).order_by(Appointment.appointment_time.asc(), Appointment.seat_number.asc()).all()
    except SQLAlchemyError as exc:
        raise DataUnavailable('Appointments could not be loaded.') from exc


def find_latest_booking_by_case(db: Session, case_id: str) -> Appointment | None:
    """Most recent appointment for a case ID, used by the returning patient flow."""
    normalized = normalize_case_id(case_id)
    if not normalized:
        return None

    try:
        return db.query(Appointment).filter(
            Appointment.case_id == normalized,
        ).order_by(Appointment.created_at.desc(), Appointment.id.desc()).first()
    except SQLAlchemyError as exc:
        raise DataUnavailable('Appointments could not be loaded.') from exc


def update_booking_status(db: Session, booking_id: int, status: str) -> Appointment:
    normalized = status.strip().lower()
    if normalized not in BOOKING_STATUSES:
        raise ValueError(f'Invalid status {status!r}.')

    booking = get_booking(db, booking_id)
    try:
        booking.status = normalized
        db.commit()
        db.refresh(booking)
    except SQLAlchemyError as exc:
        db.rollback()
        raise DataUnavailable('Appointment status could not be saved.') from exc

    logger.info('Appointment %s marked as %s', booking_id, normalized)
    return booking


def remove_booking(db: Session, booking_id: int) -> None:
    booking = get_booking(db, booking_id)
    try:
        db.delete(booking)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise DataUnavailable('Appointment could not be removed.') from exc

    logger.info('Appointment %s removed', booking_id)
