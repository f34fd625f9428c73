from datetime import date, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from clinic_scheduler.models.slot_setting import TimeSlotSetting
from clinic_scheduler.scheduling.availability import load_availability
from clinic_scheduler.scheduling.errors import InvariantViolation, OverrideCleanupIncomplete
from clinic_scheduler.scheduling.overrides import (
    list_disabled_days,
    list_overrides,
    purge_slot_overrides,
    set_day_override,
    set_slot_override,
)

DAY = date(2026, 1, 5)


def _rows(db, day: date = DAY) -> list[TimeSlotSetting]:
    return db.query(TimeSlotSetting).filter(TimeSlotSetting.date == day).all()


def test_set_slot_override_twice_keeps_a_single_disabled_record(db) -> None:
    set_slot_override(db, DAY, '10:00', True)
    record = set_slot_override(db, DAY, '10:00', True)

    rows = _rows(db)
    assert len(rows) == 1
    assert rows[0].is_disabled is True
    assert record.time == '10:00'
    assert record.is_disabled is True


def test_set_slot_override_toggles_existing_record_in_place(db) -> None:
    first = set_slot_override(db, DAY, '10:00', True)
    second = set_slot_override(db, DAY, '10:00', False)

    rows = _rows(db)
    assert len(rows) == 1
    assert second.id == first.id
    assert rows[0].is_disabled is False


def test_enabling_slot_without_record_stores_nothing(db) -> None:
    assert set_slot_override(db, DAY, '10:00', False) is None
    assert _rows(db) == []


def test_set_slot_override_rejects_times_outside_catalog(db) -> None:
    with pytest.raises(ValueError):
        set_slot_override(db, DAY, '08:00', True)


def test_set_day_override_is_idempotent(db) -> None:
    set_day_override(db, DAY, True)
    set_day_override(db, DAY, True)

    rows = _rows(db)
    assert len(rows) == 1
    assert rows[0].time is None
    assert list_disabled_days(db, DAY, DAY + timedelta(days=3)) == [DAY]


def test_re_enabling_day_removes_slot_overrides(db, now) -> None:
    set_day_override(db, DAY, True)
    set_slot_override(db, DAY, '09:00', True)
    set_slot_override(db, DAY, '14:30', True)
    set_slot_override(db, DAY + timedelta(days=1), '09:00', True)

    set_day_override(db, DAY, False)

    remaining = _rows(db)
    assert len(remaining) == 1
    assert remaining[0].time is None
    assert remaining[0].is_disabled is False
    assert len(_rows(db, DAY + timedelta(days=1))) == 1

    view = load_availability(db, DAY, now)
    assert view.day_disabled is False
    assert all(slot.available for slot in view.slots)


def test_enabling_a_day_that_was_never_disabled_keeps_slot_overrides(db) -> None:
    set_slot_override(db, DAY, '09:00', True)

    assert set_day_override(db, DAY, False) is None
    assert [row.time for row in _rows(db)] == ['09:00']


def test_cleanup_failure_leaves_day_enabled_and_reports_recoverable_error(db, monkeypatch: pytest.MonkeyPatch) -> None:
    set_day_override(db, DAY, True)
    set_slot_override(db, DAY, '09:00', True)

    original_commit = db.commit
    calls = {'count': 0}

    def flaky_commit():
        calls['count'] += 1
        # First commit is the day toggle; the second is the slot cleanup.
        if calls['count'] == 2:
            raise OperationalError('DELETE', {}, Exception('connection reset'))
        original_commit()

    monkeypatch.setattr(db, 'commit', flaky_commit)

    with pytest.raises(OverrideCleanupIncomplete) as exception_info:
        set_day_override(db, DAY, False)

    assert exception_info.value.day == DAY
    monkeypatch.setattr(db, 'commit', original_commit)

    day_row = [row for row in _rows(db) if row.time is None][0]
    assert day_row.is_disabled is False
    assert [row.time for row in _rows(db) if row.time is not None] == ['09:00']

    assert purge_slot_overrides(db, DAY) == 1
    assert [row.time for row in _rows(db)] == [None]


def test_list_overrides_puts_day_record_first(db) -> None:
    set_slot_override(db, DAY, '11:00', True)
    set_day_override(db, DAY, True)
    set_slot_override(db, DAY, '09:30', True)

    assert [record.time for record in list_overrides(db, DAY)] == [None, '09:30', '11:00']


def test_duplicate_day_records_are_fatal(db) -> None:
    db.add(TimeSlotSetting(date=DAY, time=None, is_disabled=True))
    db.add(TimeSlotSetting(date=DAY, time=None, is_disabled=True))
    db.commit()

    with pytest.raises(InvariantViolation):
        set_day_override(db, DAY, False)


def test_list_disabled_days_ignores_enabled_and_slot_records(db) -> None:
    set_day_override(db, DAY, True)
    set_day_override(db, DAY + timedelta(days=1), True)
    set_day_override(db, DAY + timedelta(days=1), False)
    set_slot_override(db, DAY + timedelta(days=2), '10:00', True)
    set_day_override(db, DAY + timedelta(days=10), True)

    assert list_disabled_days(db, DAY + timedelta(days=5), DAY) == [DAY]
