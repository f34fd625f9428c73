"""
Booking conflict guard.

Every write to ``appointments`` that places a booking in a slot goes through
here. The slot is re-checked immediately before the insert, and the insert
claims a numbered seat that the database keeps unique per slot, so a writer
that loses a race is turned away instead of overbooking.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_scheduler.core import config
from clinic_scheduler.models.appointment import Appointment, PatientCase
from clinic_scheduler.models.user import User
from clinic_scheduler.scheduling.availability import disabled_slot_times, is_day_disabled, is_slot_expired
from clinic_scheduler.scheduling.bookings import get_booking
from clinic_scheduler.scheduling.case_ids import issue_case_id, normalize_case_id
from clinic_scheduler.scheduling.clock import service_date, service_now
from clinic_scheduler.scheduling.errors import (
    BookingAccepted,
    BookingOutcome,
    BookingRejected,
    DataUnavailable,
    IdentifierCollision,
)
from clinic_scheduler.scheduling.overrides import fetch_overrides_for_date
from clinic_scheduler.scheduling.slots import get_slot_config, is_catalog_time

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PatientDetails:
    name: str
    phone: str
    gender: str | None = None
    age: int | None = None
    case_id: str | None = None  # set for returning patients


def is_within_booking_window(day: date, now: datetime) -> bool:
    today = service_date(now)
    return today <= day <= today + timedelta(days=config.BOOKING_WINDOW_DAYS)


def _taken_seats(db: Session, day: date, time: str) -> set[int]:
    try:
        rows = db.query(Appointment.seat_number).filter(
            Appointment.appointment_date == day,
            Appointment.appointment_time == time,
        ).all()
    except SQLAlchemyError as exc:
        logger.exception('Failed to count appointments for %s %s', day, time)
        raise DataUnavailable('Appointments could not be loaded.') from exc

    return {seat for (seat,) in rows}


def _free_seat(db: Session, day: date, time: str) -> tuple[int | None, BookingRejected | None]:
    """Re-read capacity and overrides for the slot; returns the seat to claim or a rejection."""
    capacity = get_slot_config().capacity
    taken = _taken_seats(db, day, time)
    if len(taken) >= capacity:
        return None, BookingRejected.slot_full()

    overrides = fetch_overrides_for_date(db, day)
    if is_day_disabled(overrides):
        return None, BookingRejected.slot_unavailable('Appointments are not available on this day.')
    if time in disabled_slot_times(overrides):
        return None, BookingRejected.slot_unavailable()

    free = sorted(set(range(1, capacity + 1)) - taken)
    if not free:
        return None, BookingRejected.slot_full()
    return free[0], None


def _validate_request(day: date, time: str, caller: User, now: datetime) -> BookingRejected | None:
    if not is_catalog_time(time):
        return BookingRejected.slot_unavailable('Please select a valid time slot.')
    if is_slot_expired(day, time, now):
        return BookingRejected.slot_unavailable('This time has already passed. Please select another time.')
    if not caller.is_staff and not is_within_booking_window(day, now):
        return BookingRejected.slot_unavailable(
            f'Appointments can only be booked up to {config.BOOKING_WINDOW_DAYS} days in advance.'
        )
    return None


def _case_exists(db: Session, case_id: str) -> bool:
    try:
        return db.get(PatientCase, case_id) is not None
    except SQLAlchemyError as exc:
        raise DataUnavailable('Patient records could not be loaded.') from exc


def attempt_book(
    db: Session,
    day: date,
    time: str,
    patient: PatientDetails,
    caller: User,
    now: datetime | None = None,
) -> BookingOutcome:
    """
    Book ``patient`` into (day, time) on behalf of ``caller``.

    Returns ``BookingRejected`` when the slot is full, disabled, outside the
    booking window or already past, or when a returning patient's case ID is
    unknown. Storage failures raise ``DataUnavailable``.
    """
    now = now or service_now()
    rejection = _validate_request(day, time, caller, now)
    if rejection:
        return rejection

    if patient.case_id:
        case_id = normalize_case_id(patient.case_id)
        if not _case_exists(db, case_id):
            return BookingRejected.unknown_case()
        is_new_case = False
    else:
        case_id = issue_case_id()
        is_new_case = True

    case_reissued = False
    lost_races = 0
    capacity = get_slot_config().capacity

    while True:
        seat, rejection = _free_seat(db, day, time)
        if rejection:
            if lost_races:
                logger.warning('Slot %s %s filled by concurrent bookings', day, time)
            return rejection

        try:
            if is_new_case:
                db.add(PatientCase(case_id=case_id))
                db.flush()
        except IntegrityError as exc:
            db.rollback()
            if case_reissued:
                raise IdentifierCollision('Could not issue a unique case ID.') from exc
            logger.warning('Case ID collision, issuing a new one')
            case_id = issue_case_id()
            case_reissued = True
            continue
        except SQLAlchemyError as exc:
            db.rollback()
            raise DataUnavailable('Appointment could not be saved.') from exc

        appointment = Appointment(
            case_id=case_id,
            name=patient.name,
            phone=patient.phone,
            gender=patient.gender,
            age=patient.age,
            appointment_date=day,
            appointment_time=time,
            seat_number=seat,
            status='scheduled',
            created_by=caller.email,
        )

        try:
            db.add(appointment)
            db.commit()
        except IntegrityError:
            # Another writer took this seat after our pre-check; the database is authoritative.
            db.rollback()
            lost_races += 1
            if lost_races > capacity:
                return BookingRejected.slot_full()
            continue
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception('Failed to save appointment for %s %s', day, time)
            raise DataUnavailable('Appointment could not be saved.') from exc

        db.refresh(appointment)
        logger.info('Booked %s %s seat %d for case %s', day, time, seat, case_id)
        return BookingAccepted(appointment)


def reschedule_booking(
    db: Session,
    booking_id: int,
    day: date,
    time: str,
    caller: User,
    now: datetime | None = None,
) -> BookingOutcome:
    """
    Move an existing booking to (day, time).

    Keeping the original slot is always allowed even if it has since
    expired, unless an override now disables it.
    """
    now = now or service_now()
    booking = get_booking(db, booking_id)

    if booking.appointment_date == day and booking.appointment_time == time:
        overrides = fetch_overrides_for_date(db, day)
        if is_day_disabled(overrides) or time in disabled_slot_times(overrides):
            return BookingRejected.slot_unavailable()
        return BookingAccepted(booking)

    rejection = _validate_request(day, time, caller, now)
    if rejection:
        return rejection

    previous = (booking.appointment_date, booking.appointment_time)
    lost_races = 0
    capacity = get_slot_config().capacity

    while True:
        seat, rejection = _free_seat(db, day, time)
        if rejection:
            return rejection

        try:
            booking.appointment_date = day
            booking.appointment_time = time
            booking.seat_number = seat
            db.commit()
        except IntegrityError:
            db.rollback()
            lost_races += 1
            if lost_races > capacity:
                return BookingRejected.slot_full()
            continue
        except SQLAlchemyError as exc:
            db.rollback()
            raise DataUnavailable('Appointment could not be saved.') from exc

        db.refresh(booking)
        logger.info('Moved appointment %s from %s %s to %s %s', booking_id, *previous, day, time)
        return BookingAccepted(booking)
