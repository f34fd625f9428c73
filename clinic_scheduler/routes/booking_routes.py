import re
from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from clinic_scheduler.auth.dependencies import get_current_user, require_staff
from clinic_scheduler.database import get_db
from clinic_scheduler.models.user import User
from clinic_scheduler.routes.common import ensure_database_ready, rejection_to_http_exception, to_http_exception
from clinic_scheduler.scheduling.booking_guard import PatientDetails, attempt_book, reschedule_booking
from clinic_scheduler.scheduling.bookings import (
    find_latest_booking_by_case,
    list_bookings_for_date,
    remove_booking,
    update_booking_status,
)
from clinic_scheduler.scheduling.case_ids import normalize_case_id
from clinic_scheduler.scheduling.errors import BookingRejected, SchedulingError
from clinic_scheduler.scheduling.records import BOOKING_STATUSES, validate_slot_time

router = APIRouter(tags=['appointments'])

PHONE_PATTERN = re.compile(r'^\+?[0-9]{10,15}$')
GENDERS = ('male', 'female', 'other')
MAX_NAME_LENGTH = 120


class CreateAppointmentRequest(BaseModel):
    date: date
    time: str
    name: str
    phone: str
    gender: str | None = None
    age: int | None = None
    case_id: str | None = None

    @field_validator('time')
    @classmethod
    def validate_time(cls, value: str) -> str:
        return validate_slot_time(value)

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        normalized = ' '.join(value.split())
        if not normalized:
            raise ValueError('Name is required.')
        if len(normalized) > MAX_NAME_LENGTH:
            raise ValueError(f'Name must be {MAX_NAME_LENGTH} characters or fewer.')
        return normalized

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, value: str) -> str:
        normalized = re.sub(r'[\s-]', '', value)
        if not PHONE_PATTERN.match(normalized):
            raise ValueError('Please enter a valid phone number.')
        return normalized

    @field_validator('gender')
    @classmethod
    def validate_gender(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().lower()
        if normalized not in GENDERS:
            raise ValueError('Invalid gender.')
        return normalized

    @field_validator('age')
    @classmethod
    def validate_age(cls, value: int | None) -> int | None:
        if value is not None and not 0 <= value <= 150:
            raise ValueError('Age must be between 0 and 150.')
        return value

    @field_validator('case_id')
    @classmethod
    def validate_case_id(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return normalize_case_id(value) or None


class RescheduleAppointmentRequest(BaseModel):
    date: date
    time: str

    @field_validator('time')
    @classmethod
    def validate_time(cls, value: str) -> str:
        return validate_slot_time(value)


class UpdateStatusRequest(BaseModel):
    status: str

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in BOOKING_STATUSES:
            raise ValueError('Invalid appointment status.')
        return normalized


class AppointmentResponse(BaseModel):
    id: int
    case_id: str
    name: str
    phone: str
    gender: str | None = None
    age: int | None = None
    appointment_date: date
    appointment_time: str
    status: str
    created_at: datetime

    class Config:
        from_attributes = True


def _unwrap(outcome) -> AppointmentResponse:
    if isinstance(outcome, BookingRejected):
        raise rejection_to_http_exception(outcome)
    return AppointmentResponse.model_validate(outcome.appointment)


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    patient = PatientDetails(
        name=data.name,
        phone=data.phone,
        gender=data.gender,
        age=data.age,
        case_id=data.case_id,
    )
    try:
        outcome = attempt_book(db, data.date, data.time, patient, current_user)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return _unwrap(outcome)


@router.get('', response_model=list[AppointmentResponse])
def list_appointments(
    day: date = Query(..., alias='date'),
    _: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return list_bookings_for_date(db, day)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.get('/case/{case_id}', response_model=AppointmentResponse)
def get_appointment_by_case(
    case_id: str,
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not case_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Case ID is required.',
        )

    ensure_database_ready()

    try:
        appointment = find_latest_booking_by_case(db, case_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    if appointment is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='No patient record found for this case ID.',
        )
    return appointment


@router.patch('/{appointment_id}/status', response_model=AppointmentResponse)
def change_appointment_status(
    appointment_id: int,
    data: UpdateStatusRequest,
    _: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return update_booking_status(db, appointment_id, data.status)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.put('/{appointment_id}/slot', response_model=AppointmentResponse)
def move_appointment(
    appointment_id: int,
    data: RescheduleAppointmentRequest,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        outcome = reschedule_booking(db, appointment_id, data.date, data.time, current_user)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return _unwrap(outcome)


@router.delete('/{appointment_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_appointment(
    appointment_id: int,
    _: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        remove_booking(db, appointment_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
