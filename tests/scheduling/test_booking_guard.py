from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta, timezone
from threading import Barrier

import pytest
from sqlalchemy.exc import OperationalError

from clinic_scheduler.models.appointment import Appointment, PatientCase
from clinic_scheduler.scheduling import booking_guard
from clinic_scheduler.scheduling.availability import load_availability
from clinic_scheduler.scheduling.booking_guard import PatientDetails, attempt_book, reschedule_booking
from clinic_scheduler.scheduling.errors import (
    BookingAccepted,
    BookingNotFound,
    BookingRejected,
    DataUnavailable,
    IdentifierCollision,
    RejectionReason,
)
from clinic_scheduler.scheduling.overrides import set_day_override, set_slot_override

IST = timezone(timedelta(hours=5, minutes=30))
DAY = date(2026, 1, 5)


def _patient(index: int = 1, case_id: str | None = None) -> PatientDetails:
    return PatientDetails(name=f'Patient {index}', phone=f'98765432{index:02d}', gender='female', age=30, case_id=case_id)


def _register_case(session_factory, case_id: str) -> None:
    # Issued by another process, so it is not in the session under test.
    other = session_factory()
    try:
        other.add(PatientCase(case_id=case_id))
        other.commit()
    finally:
        other.close()


def _count(db, day: date = DAY, time: str = '10:00') -> int:
    return db.query(Appointment).filter(
        Appointment.appointment_date == day,
        Appointment.appointment_time == time,
    ).count()


def test_attempt_book_stores_scheduled_booking_with_new_case_id(db, patient_user, now) -> None:
    outcome = attempt_book(db, DAY, '10:00', _patient(), patient_user, now)

    assert isinstance(outcome, BookingAccepted)
    appointment = outcome.appointment
    assert appointment.status == 'scheduled'
    assert appointment.seat_number == 1
    assert appointment.created_by == 'patient@example.com'
    assert len(appointment.case_id) == 10
    assert db.get(PatientCase, appointment.case_id) is not None


def test_fifth_booking_in_a_slot_is_rejected_as_full(db, patient_user, now) -> None:
    for index in range(4):
        assert isinstance(attempt_book(db, DAY, '10:00', _patient(index), patient_user, now), BookingAccepted)

    outcome = attempt_book(db, DAY, '10:00', _patient(5), patient_user, now)

    assert outcome == BookingRejected.slot_full()
    assert _count(db) == 4
    slot = load_availability(db, DAY, now).slot('10:00')
    assert slot.available is False
    assert slot.booking_count == 4


def test_concurrent_attempts_never_exceed_capacity(session_factory, patient_user, now) -> None:
    attempts = 7
    barrier = Barrier(attempts)

    def book(index: int):
        session = session_factory()
        try:
            barrier.wait()
            return attempt_book(session, DAY, '10:00', _patient(index), patient_user, now)
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=attempts) as executor:
        outcomes = list(executor.map(book, range(attempts)))

    accepted = [outcome for outcome in outcomes if isinstance(outcome, BookingAccepted)]
    rejected = [outcome for outcome in outcomes if isinstance(outcome, BookingRejected)]
    assert len(accepted) == 4
    assert len(rejected) == 3
    assert {outcome.reason for outcome in rejected} == {RejectionReason.SLOT_FULL}

    db = session_factory()
    try:
        assert _count(db) == 4
        seats = {seat for (seat,) in db.query(Appointment.seat_number).all()}
        assert seats == {1, 2, 3, 4}
    finally:
        db.close()


def test_lost_seat_race_retries_next_seat(db, patient_user, now, monkeypatch: pytest.MonkeyPatch) -> None:
    attempt_book(db, DAY, '10:00', _patient(1), patient_user, now)
    original = booking_guard._taken_seats
    calls = {'count': 0}

    def stale_taken_seats(session, day, time):
        calls['count'] += 1
        # First pre-check misses the existing booking, as if it committed a moment later.
        if calls['count'] == 1:
            return set()
        return original(session, day, time)

    monkeypatch.setattr(booking_guard, '_taken_seats', stale_taken_seats)

    outcome = attempt_book(db, DAY, '10:00', _patient(2), patient_user, now)

    assert isinstance(outcome, BookingAccepted)
    assert outcome.appointment.seat_number == 2
    assert calls['count'] == 2


def test_disabled_day_and_slot_reject_booking(db, patient_user, now) -> None:
    set_slot_override(db, DAY, '10:00', True)
    set_day_override(db, DAY + timedelta(days=1), True)

    slot_outcome = attempt_book(db, DAY, '10:00', _patient(), patient_user, now)
    day_outcome = attempt_book(db, DAY + timedelta(days=1), '11:00', _patient(), patient_user, now)

    assert slot_outcome.reason == RejectionReason.SLOT_UNAVAILABLE
    assert day_outcome.reason == RejectionReason.SLOT_UNAVAILABLE
    assert db.query(Appointment).count() == 0


@pytest.mark.parametrize(
    ('day', 'time'),
    [
        (DAY, '07:30'),
        (DAY, '10:15'),
        (DAY - timedelta(days=1), '10:00'),
        (DAY + timedelta(days=4), '10:00'),
    ],
)
def test_patients_cannot_book_invalid_past_or_far_slots(db, patient_user, now, day: date, time: str) -> None:
    outcome = attempt_book(db, day, time, _patient(), patient_user, now)

    assert isinstance(outcome, BookingRejected)
    assert outcome.reason == RejectionReason.SLOT_UNAVAILABLE


def test_staff_can_book_beyond_patient_window(db, staff_user, now) -> None:
    outcome = attempt_book(db, DAY + timedelta(days=10), '10:00', _patient(), staff_user, now)

    assert isinstance(outcome, BookingAccepted)


def test_expired_slot_today_is_rejected(db, patient_user) -> None:
    now = datetime(2026, 1, 5, 10, 0, tzinfo=IST)

    outcome = attempt_book(db, DAY, '10:00', _patient(), patient_user, now)

    assert outcome.reason == RejectionReason.SLOT_UNAVAILABLE


def test_returning_patient_reuses_case_id(db, patient_user, now) -> None:
    first = attempt_book(db, DAY, '10:00', _patient(), patient_user, now).appointment

    second = attempt_book(db, DAY, '11:00', _patient(case_id=first.case_id.lower()), patient_user, now)

    assert isinstance(second, BookingAccepted)
    assert second.appointment.case_id == first.case_id
    assert db.query(PatientCase).count() == 1


def test_unknown_returning_case_id_is_rejected(db, patient_user, now) -> None:
    outcome = attempt_book(db, DAY, '10:00', _patient(case_id='ZZZZZZZZZZ'), patient_user, now)

    assert outcome == BookingRejected.unknown_case()


def test_case_id_collision_is_reissued_once(db, session_factory, patient_user, now, monkeypatch: pytest.MonkeyPatch) -> None:
    _register_case(session_factory, 'TAKENCASE2')
    issued = iter(['TAKENCASE2', 'FRESHCASE3'])
    monkeypatch.setattr(booking_guard, 'issue_case_id', lambda: next(issued))

    outcome = attempt_book(db, DAY, '10:00', _patient(), patient_user, now)

    assert outcome.appointment.case_id == 'FRESHCASE3'


def test_repeated_case_id_collision_is_surfaced(db, session_factory, patient_user, now, monkeypatch: pytest.MonkeyPatch) -> None:
    _register_case(session_factory, 'TAKENCASE2')
    monkeypatch.setattr(booking_guard, 'issue_case_id', lambda: 'TAKENCASE2')

    with pytest.raises(IdentifierCollision):
        attempt_book(db, DAY, '10:00', _patient(), patient_user, now)

    assert db.query(Appointment).count() == 0


def test_storage_failure_is_not_reported_as_available(db, patient_user, now, monkeypatch: pytest.MonkeyPatch) -> None:
    def broken_query(*args, **kwargs):
        raise OperationalError('SELECT', {}, Exception('timeout'))

    monkeypatch.setattr(db, 'query', broken_query)

    with pytest.raises(DataUnavailable):
        attempt_book(db, DAY, '10:00', _patient(), patient_user, now)


def test_reschedule_moves_booking_and_frees_old_seat(db, staff_user, now) -> None:
    booking = attempt_book(db, DAY, '10:00', _patient(), staff_user, now).appointment

    outcome = reschedule_booking(db, booking.id, DAY, '11:30', staff_user, now)

    assert isinstance(outcome, BookingAccepted)
    assert outcome.appointment.appointment_time == '11:30'
    assert _count(db, time='10:00') == 0
    assert _count(db, time='11:30') == 1


def test_reschedule_into_full_slot_is_rejected(db, staff_user, now) -> None:
    for index in range(4):
        attempt_book(db, DAY, '12:00', _patient(index), staff_user, now)
    booking = attempt_book(db, DAY, '10:00', _patient(9), staff_user, now).appointment

    outcome = reschedule_booking(db, booking.id, DAY, '12:00', staff_user, now)

    assert outcome == BookingRejected.slot_full()
    db.refresh(booking)
    assert booking.appointment_time == '10:00'


def test_reschedule_keeps_expired_original_slot(db, staff_user, now) -> None:
    booking = attempt_book(db, DAY, '09:30', _patient(), staff_user, now).appointment
    later = datetime(2026, 1, 5, 12, 0, tzinfo=IST)

    outcome = reschedule_booking(db, booking.id, DAY, '09:30', staff_user, later)

    assert isinstance(outcome, BookingAccepted)
    assert outcome.appointment.id == booking.id


def test_reschedule_original_slot_on_disabled_day_is_rejected(db, staff_user, now) -> None:
    booking = attempt_book(db, DAY, '09:30', _patient(), staff_user, now).appointment
    set_day_override(db, DAY, True)

    outcome = reschedule_booking(db, booking.id, DAY, '09:30', staff_user, now)

    assert outcome.reason == RejectionReason.SLOT_UNAVAILABLE


def test_reschedule_unknown_booking_raises(db, staff_user, now) -> None:
    with pytest.raises(BookingNotFound):
        reschedule_booking(db, 404, DAY, '10:00', staff_user, now)
