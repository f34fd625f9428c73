"""
Availability evaluation.

``evaluate`` is pure: given the bookings and overrides for a date and the
current instant it decides, per catalog slot, whether the slot can be booked.
``load_availability`` fetches those inputs from the database first.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_scheduler.models.appointment import Appointment
from clinic_scheduler.scheduling.bookings import get_booking
from clinic_scheduler.scheduling.clock import service_date, service_now, slot_instant, to_service_time
from clinic_scheduler.scheduling.errors import DataUnavailable
from clinic_scheduler.scheduling.overrides import fetch_overrides_for_date
from clinic_scheduler.scheduling.records import BookingRecord, OverrideRecord, to_booking_records
from clinic_scheduler.scheduling.slots import SlotConfig, generate_slots, get_slot_config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlotAvailability:
    time: str
    available: bool
    booking_count: int
    remaining: int
    is_original_slot: bool = False


@dataclass(frozen=True)
class AvailabilityView:
    date: date
    day_disabled: bool
    slots: tuple[SlotAvailability, ...]

    def slot(self, time: str) -> Optional[SlotAvailability]:
        for slot in self.slots:
            if slot.time == time:
                return slot
        return None

    @property
    def has_available_slot(self) -> bool:
        return any(slot.available for slot in self.slots)


def is_day_disabled(overrides: Iterable[OverrideRecord]) -> bool:
    return any(override.is_day_level and override.is_disabled for override in overrides)


def disabled_slot_times(overrides: Iterable[OverrideRecord]) -> set[str]:
    return {override.time for override in overrides if not override.is_day_level and override.is_disabled}


def is_slot_expired(day: date, slot_time: str, now: datetime) -> bool:
    return slot_instant(day, slot_time) <= to_service_time(now)


def evaluate(
    day: date,
    bookings: Iterable[BookingRecord],
    overrides: Iterable[OverrideRecord],
    now: datetime,
    *,
    slot_config: SlotConfig | None = None,
    exclude_booking_id: int | None = None,
    original_slot: tuple[date, str] | None = None,
) -> AvailabilityView:
    """
    Build the availability view for ``day``.

    A disabled day returns every slot unavailable with ``day_disabled`` set,
    whatever the bookings or slot overrides say. When ``original_slot`` (the
    date and time of a booking being edited) falls on ``day``, that slot
    ignores expiry and is flagged as the original slot; capacity and slot
    overrides still apply.
    """
    slot_config = slot_config or get_slot_config()
    overrides = [override for override in overrides if override.date == day]
    catalog = generate_slots(slot_config)

    counts = Counter(
        booking.appointment_time
        for booking in bookings
        if booking.appointment_date == day and booking.id != exclude_booking_id
    )

    if is_day_disabled(overrides):
        return AvailabilityView(
            date=day,
            day_disabled=True,
            slots=tuple(
                SlotAvailability(
                    time=slot.time,
                    available=False,
                    booking_count=counts[slot.time],
                    remaining=max(0, slot_config.capacity - counts[slot.time]),
                )
                for slot in catalog
            ),
        )

    disabled_times = disabled_slot_times(overrides)
    slots = []
    for slot in catalog:
        booking_count = counts[slot.time]
        is_original_slot = original_slot == (day, slot.time)
        is_expired = is_slot_expired(day, slot.time, now) and not is_original_slot
        available = (
            slot.time not in disabled_times
            and not is_expired
            and booking_count < slot_config.capacity
        )
        slots.append(
            SlotAvailability(
                time=slot.time,
                available=available,
                booking_count=booking_count,
                remaining=max(0, slot_config.capacity - booking_count),
                is_original_slot=is_original_slot,
            )
        )

    return AvailabilityView(date=day, day_disabled=False, slots=tuple(slots))


def fetch_bookings_for_date(db: Session, day: date) -> list[BookingRecord]:
    try:
        rows = db.query(Appointment).filter(Appointment.appointment_date == day).all()
    except SQLAlchemyError as exc:
        logger.exception('Failed to load appointments for %s', day)
        raise DataUnavailable('Appointments could not be loaded.') from exc

    return to_booking_records(rows)


def load_availability(
    db: Session,
    day: date,
    now: datetime | None = None,
    *,
    exclude_booking_id: int | None = None,
) -> AvailabilityView:
    """
    Evaluate ``day`` from stored data.

    With ``exclude_booking_id`` the view is the one shown while moving that
    booking: it is left out of the counts and its stored slot is the
    original slot. Raises ``BookingNotFound`` if the booking does not exist.
    """
    now = now or service_now()
    original_slot = None
    if exclude_booking_id is not None:
        booking = get_booking(db, exclude_booking_id)
        original_slot = (booking.appointment_date, booking.appointment_time)

    overrides = fetch_overrides_for_date(db, day)
    bookings = fetch_bookings_for_date(db, day)

    return evaluate(
        day,
        bookings,
        overrides,
        now,
        exclude_booking_id=exclude_booking_id,
        original_slot=original_slot,
    )


def find_next_available_slot(
    db: Session,
    now: datetime | None = None,
    search_days: int = 7,
) -> tuple[date, str] | None:
    """First bookable (date, time) from today onwards, or None within ``search_days``."""
    now = now or service_now()
    current_day = service_date(now)

    for offset in range(search_days):
        day = current_day + timedelta(days=offset)
        view = load_availability(db, day, now)
        if view.day_disabled:
            continue
        for slot in view.slots:
            if slot.available:
                return day, slot.time

    return None
