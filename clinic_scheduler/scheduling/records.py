"""Typed records for rows read from the appointments and time_slot_settings tables."""

import re
from datetime import date, datetime
from typing import Iterable, Literal

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from clinic_scheduler.models.appointment import Appointment
from clinic_scheduler.models.slot_setting import TimeSlotSetting
from clinic_scheduler.scheduling.errors import MalformedRecord

SLOT_TIME_PATTERN = re.compile(r'^([01]\d|2[0-3]):[0-5]\d$')
BOOKING_STATUSES = ('scheduled', 'completed', 'missed', 'cancelled')

BookingStatus = Literal['scheduled', 'completed', 'missed', 'cancelled']


def validate_slot_time(value: str) -> str:
    normalized = value.strip()
    if not SLOT_TIME_PATTERN.match(normalized):
        raise ValueError('Time must use the HH:MM format.')
    return normalized


class BookingRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    case_id: str
    name: str
    phone: str
    gender: str | None = None
    age: int | None = None
    appointment_date: date
    appointment_time: str
    status: BookingStatus = 'scheduled'
    created_at: datetime | None = None

    @field_validator('appointment_time')
    @classmethod
    def validate_appointment_time(cls, value: str) -> str:
        return validate_slot_time(value)


class OverrideRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    date: date
    time: str | None = None
    is_disabled: bool

    @field_validator('time')
    @classmethod
    def validate_time(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return validate_slot_time(value)

    @property
    def is_day_level(self) -> bool:
        return self.time is None


def to_booking_records(rows: Iterable[Appointment]) -> list[BookingRecord]:
    try:
        return [BookingRecord.model_validate(row) for row in rows]
    except ValidationError as exc:
        raise MalformedRecord(f'Malformed appointment row: {exc}') from exc


def to_override_records(rows: Iterable[TimeSlotSetting]) -> list[OverrideRecord]:
    try:
        return [OverrideRecord.model_validate(row) for row in rows]
    except ValidationError as exc:
        raise MalformedRecord(f'Malformed time slot setting row: {exc}') from exc
