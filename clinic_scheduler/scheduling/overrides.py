"""
Administrator overrides stored in ``time_slot_settings``.

A row with ``time`` NULL disables the whole day; a row with a time disables
that slot. Each target has at most one row, which is toggled in place.
Re-enabling a day removes the slot rows for that date.
"""

import logging
from collections import Counter
from datetime import date

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_scheduler.models.slot_setting import TimeSlotSetting
from clinic_scheduler.scheduling.errors import DataUnavailable, InvariantViolation, OverrideCleanupIncomplete
from clinic_scheduler.scheduling.records import OverrideRecord, to_override_records
from clinic_scheduler.scheduling.slots import is_catalog_time

logger = logging.getLogger(__name__)


def check_override_invariants(day: date, rows: list[TimeSlotSetting]) -> None:
    duplicates = [time for time, count in Counter(row.time for row in rows).items() if count > 1]
    if duplicates:
        targets = ', '.join('whole day' if time is None else time for time in duplicates)
        logger.error('Duplicate time slot settings for %s: %s', day, targets)
        raise InvariantViolation(f'More than one override record for {day} ({targets}).')


def _fetch_rows(db: Session, day: date) -> list[TimeSlotSetting]:
    try:
        rows = db.query(TimeSlotSetting).filter(TimeSlotSetting.date == day).all()
    except SQLAlchemyError as exc:
        logger.exception('Failed to load time slot settings for %s', day)
        raise DataUnavailable('Time slot settings could not be loaded.') from exc

    check_override_invariants(day, rows)
    return rows


def fetch_overrides_for_date(db: Session, day: date) -> list[OverrideRecord]:
    return to_override_records(_fetch_rows(db, day))


def list_overrides(db: Session, day: date) -> list[OverrideRecord]:
    return sorted(fetch_overrides_for_date(db, day), key=lambda record: (record.time is not None, record.time or ''))


def list_disabled_days(db: Session, start: date, end: date) -> list[date]:
    if start > end:
        start, end = end, start

    try:
        rows = db.query(TimeSlotSetting.date).filter(
            TimeSlotSetting.time.is_(None),
            TimeSlotSetting.is_disabled.is_(True),
            TimeSlotSetting.date >= start,
            TimeSlotSetting.date <= end,
        ).order_by(TimeSlotSetting.date.asc()).all()
    except SQLAlchemyError as exc:
        logger.exception('Failed to load disabled days between %s and %s', start, end)
        raise DataUnavailable('Time slot settings could not be loaded.') from exc

    return [row.date for row in rows]


def _find_target(db: Session, day: date, time: str | None) -> TimeSlotSetting | None:
    rows = [row for row in _fetch_rows(db, day) if row.time == time]
    return rows[0] if rows else None


def _upsert(db: Session, day: date, time: str | None, disabled: bool) -> tuple[TimeSlotSetting | None, bool]:
    """Apply the desired state; returns the row (if any) and whether it was disabled before."""
    for attempt in range(2):
        existing = _find_target(db, day, time)
        was_disabled = bool(existing and existing.is_disabled)

        if existing is None and not disabled:
            return None, False

        try:
            if existing is None:
                existing = TimeSlotSetting(date=day, time=time, is_disabled=True)
                db.add(existing)
            else:
                existing.is_disabled = disabled
            db.commit()
            db.refresh(existing)
            return existing, was_disabled
        except IntegrityError as exc:
            # Another admin created the same target first; apply our state to their row.
            db.rollback()
            if attempt:
                raise DataUnavailable('Time slot settings could not be saved.') from exc
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception('Failed to write time slot setting for %s %s', day, time or 'whole day')
            raise DataUnavailable('Time slot settings could not be saved.') from exc

    raise DataUnavailable('Time slot settings could not be saved.')


def set_slot_override(db: Session, day: date, time: str, disabled: bool) -> OverrideRecord | None:
    if not is_catalog_time(time):
        raise ValueError(f'{time} is not a bookable slot time.')

    row, _ = _upsert(db, day, time, disabled)
    logger.info('Slot %s %s %s', day, time, 'disabled' if disabled else 'enabled')
    return OverrideRecord.model_validate(row) if row is not None else None


def set_day_override(db: Session, day: date, disabled: bool) -> OverrideRecord | None:
    row, was_disabled = _upsert(db, day, None, disabled)
    logger.info('Day %s %s', day, 'disabled' if disabled else 'enabled')

    if was_disabled and not disabled:
        purge_slot_overrides(db, day)

    return OverrideRecord.model_validate(row) if row is not None else None


def purge_slot_overrides(db: Session, day: date) -> int:
    """Delete every slot-level override for ``day``; safe to call again after a failure."""
    try:
        rows = db.query(TimeSlotSetting).filter(
            TimeSlotSetting.date == day,
            TimeSlotSetting.time.is_not(None),
        ).all()
        for row in rows:
            db.delete(row)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning('Slot override cleanup for %s did not complete', day)
        raise OverrideCleanupIncomplete(
            day,
            f'Day {day} was enabled but its slot overrides could not be removed. Retry the cleanup.',
        ) from exc

    if rows:
        logger.info('Removed %d slot overrides for re-enabled day %s', len(rows), day)
    return len(rows)
