"""Service timezone helpers.

Expiry checks and "today" are always computed in the clinic's fixed offset,
never in the timezone of the process doing the evaluation.
"""

from datetime import date, datetime, time

from clinic_scheduler.core import config


def service_now() -> datetime:
    return datetime.now(config.SERVICE_TIMEZONE)


def to_service_time(moment: datetime) -> datetime:
    if moment.tzinfo is None or moment.utcoffset() is None:
        raise ValueError('Datetimes must be timezone-aware.')
    return moment.astimezone(config.SERVICE_TIMEZONE)


def service_date(moment: datetime) -> date:
    """Calendar day of ``moment`` as seen in the service timezone."""
    return to_service_time(moment).date()


def parse_slot_time(value: str) -> time:
    hours, minutes = value.split(':')
    return time(int(hours), int(minutes))


def slot_instant(day: date, slot_time: str) -> datetime:
    return datetime.combine(day, parse_slot_time(slot_time), tzinfo=config.SERVICE_TIMEZONE)
