"""
Change notifications for live availability views.

Committed inserts, updates and deletes of appointments and time slot
settings are published on a ``ChangeFeed`` keyed by table name. The
``AvailabilityBroadcaster`` turns those notices into per-date wake-ups for
connected viewers, who then reload and re-evaluate availability themselves.
A notice says "this date changed", never what the new state is; duplicates
and reordering are expected.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from threading import Lock
from typing import Callable

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from clinic_scheduler.models.appointment import Appointment
from clinic_scheduler.models.slot_setting import TimeSlotSetting

logger = logging.getLogger(__name__)

APPOINTMENTS_TABLE = 'appointments'
SLOT_SETTINGS_TABLE = 'time_slot_settings'
_PENDING_KEY = 'pending_change_notices'


@dataclass(frozen=True)
class ChangeNotice:
    table: str
    date: date
    operation: str  # insert / update / delete


ChangeCallback = Callable[[ChangeNotice], None]


class ChangeFeed:
    """Publish/subscribe on logical table names."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[ChangeCallback]] = defaultdict(list)
        self._lock = Lock()

    def subscribe(self, table: str, callback: ChangeCallback) -> Callable[[], None]:
        with self._lock:
            self._subscribers[table].append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers[table]:
                    self._subscribers[table].remove(callback)

        return unsubscribe

    def publish(self, notice: ChangeNotice) -> None:
        with self._lock:
            callbacks = list(self._subscribers[notice.table])

        for callback in callbacks:
            try:
                callback(notice)
            except Exception:
                # The write is already committed; one broken subscriber must not hide it from the rest.
                logger.exception('Change subscriber failed for %s on %s', notice.table, notice.date)


change_feed = ChangeFeed()


def _dates_touched(obj, field: str) -> set[date]:
    history = inspect(obj).attrs[field].history
    return {value for value in (*history.added, *history.deleted, *history.unchanged) if value is not None}


def _notices_for(obj, operation: str) -> list[ChangeNotice]:
    if isinstance(obj, Appointment):
        return [ChangeNotice(APPOINTMENTS_TABLE, day, operation) for day in _dates_touched(obj, 'appointment_date')]
    if isinstance(obj, TimeSlotSetting):
        return [ChangeNotice(SLOT_SETTINGS_TABLE, day, operation) for day in _dates_touched(obj, 'date')]
    return []


def _collect_changes(session: Session, flush_context) -> None:
    pending = session.info.setdefault(_PENDING_KEY, [])
    for obj in session.new:
        pending.extend(_notices_for(obj, 'insert'))
    for obj in session.dirty:
        if session.is_modified(obj):
            pending.extend(_notices_for(obj, 'update'))
    for obj in session.deleted:
        pending.extend(_notices_for(obj, 'delete'))


def _publish_committed(session: Session) -> None:
    pending = session.info.pop(_PENDING_KEY, [])
    for notice in dict.fromkeys(pending):
        change_feed.publish(notice)


def _discard_pending(session: Session) -> None:
    session.info.pop(_PENDING_KEY, None)


def install_change_tracking() -> None:
    """Hook ORM sessions so commits publish change notices; safe to call repeatedly."""
    if event.contains(Session, 'after_flush', _collect_changes):
        return
    event.listen(Session, 'after_flush', _collect_changes)
    event.listen(Session, 'after_commit', _publish_committed)
    event.listen(Session, 'after_rollback', _discard_pending)


class AvailabilityBroadcaster:
    """Wakes live viewers of a date when its bookings or overrides change."""

    def __init__(self, feed: ChangeFeed) -> None:
        self._feed = feed
        self._viewers: dict[date, set[tuple[asyncio.AbstractEventLoop, asyncio.Queue]]] = defaultdict(set)
        self._lock = Lock()
        self._unsubscribers: list[Callable[[], None]] = []

    def start(self) -> None:
        if self._unsubscribers:
            return
        self._unsubscribers = [
            self._feed.subscribe(APPOINTMENTS_TABLE, self._on_change),
            self._feed.subscribe(SLOT_SETTINGS_TABLE, self._on_change),
        ]

    def stop(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def register(self, day: date) -> asyncio.Queue:
        """Must be called from the viewer's event loop."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        with self._lock:
            self._viewers[day].add((asyncio.get_running_loop(), queue))
        return queue

    def unregister(self, day: date, queue: asyncio.Queue) -> None:
        with self._lock:
            viewers = self._viewers.get(day)
            if not viewers:
                return
            viewers.difference_update({viewer for viewer in viewers if viewer[1] is queue})
            if not viewers:
                del self._viewers[day]

    def viewer_count(self, day: date) -> int:
        with self._lock:
            return len(self._viewers.get(day, ()))

    def _on_change(self, notice: ChangeNotice) -> None:
        with self._lock:
            viewers = list(self._viewers.get(notice.date, ()))

        for loop, queue in viewers:
            if loop.is_closed():
                continue
            loop.call_soon_threadsafe(_offer, queue, notice)


def _offer(queue: asyncio.Queue, notice: ChangeNotice) -> None:
    # A pending wake-up already covers this change; the viewer reloads everything anyway.
    if not queue.full():
        queue.put_nowait(notice)


availability_broadcaster = AvailabilityBroadcaster(change_feed)
