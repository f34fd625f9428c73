import asyncio
import datetime as dt
import logging
from datetime import date, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel
from sqlalchemy.orm import Session

from clinic_scheduler.core import config
from clinic_scheduler.database import SessionLocal, get_db
from clinic_scheduler.routes.common import ensure_database_ready, to_http_exception
from clinic_scheduler.scheduling.availability import AvailabilityView, find_next_available_slot, load_availability
from clinic_scheduler.scheduling.clock import service_date, service_now
from clinic_scheduler.scheduling.errors import SchedulingError
from clinic_scheduler.scheduling.overrides import list_disabled_days
from clinic_scheduler.scheduling.slots import get_slot_config
from clinic_scheduler.scheduling.sync import availability_broadcaster

router = APIRouter(tags=['availability'])
logger = logging.getLogger(__name__)


class SlotAvailabilityResponse(BaseModel):
    time: str
    available: bool
    booking_count: int
    remaining: int
    is_original_slot: bool = False


class AvailabilityResponse(BaseModel):
    date: date
    day_disabled: bool
    capacity: int
    slots: list[SlotAvailabilityResponse]

    @classmethod
    def from_view(cls, view: AvailabilityView) -> 'AvailabilityResponse':
        return cls(
            date=view.date,
            day_disabled=view.day_disabled,
            capacity=get_slot_config().capacity,
            slots=[
                SlotAvailabilityResponse(
                    time=slot.time,
                    available=slot.available,
                    booking_count=slot.booking_count,
                    remaining=slot.remaining,
                    is_original_slot=slot.is_original_slot,
                )
                for slot in view.slots
            ],
        )


class NextAvailableSlotResponse(BaseModel):
    # Module-qualified so the None default cannot shadow the type.
    date: dt.date | None = None
    time: str | None = None
    found: bool


class DisabledDaysResponse(BaseModel):
    start: date
    end: date
    disabled_days: list[date]


@router.get('/next', response_model=NextAvailableSlotResponse)
def get_next_available_slot(db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        result = find_next_available_slot(db, service_now(), config.NEXT_SLOT_SEARCH_DAYS)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    if result is None:
        return NextAvailableSlotResponse(found=False)

    day, time = result
    return NextAvailableSlotResponse(date=day, time=time, found=True)


@router.get('/disabled-days', response_model=DisabledDaysResponse)
def get_disabled_days(
    start: date | None = Query(default=None),
    end: date | None = Query(default=None),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    start = start or service_date(service_now())
    end = end or start + timedelta(days=31)
    if (end - start).days > 366:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Date range must be a year or shorter.',
        )

    try:
        disabled_days = list_disabled_days(db, start, end)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return DisabledDaysResponse(start=min(start, end), end=max(start, end), disabled_days=disabled_days)


@router.get('/{day}', response_model=AvailabilityResponse)
def get_availability(
    day: date,
    exclude_booking_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        view = load_availability(
            db,
            day,
            service_now(),
            exclude_booking_id=exclude_booking_id,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return AvailabilityResponse.from_view(view)


def _load_live_view(day: date) -> dict:
    db = SessionLocal()
    try:
        view = load_availability(db, day, service_now())
        return AvailabilityResponse.from_view(view).model_dump(mode='json')
    except SchedulingError:
        logger.exception('Live availability reload failed for %s', day)
        return {'date': day.isoformat(), 'error': 'data_unavailable'}
    finally:
        db.close()


async def _wait_for_change(websocket: WebSocket, wake_up: asyncio.Queue) -> bool:
    """Block until the date changes (True) or the viewer goes away (False)."""
    change = asyncio.ensure_future(wake_up.get())
    incoming = asyncio.ensure_future(websocket.receive())
    done, pending = await asyncio.wait({change, incoming}, return_when=asyncio.FIRST_COMPLETED)
    for task in pending:
        task.cancel()

    if incoming in done and incoming.result()['type'] == 'websocket.disconnect':
        return False
    return True


@router.websocket('/{day}/live')
async def stream_availability(websocket: WebSocket, day: date):
    await websocket.accept()
    wake_up = availability_broadcaster.register(day)
    try:
        while True:
            payload = await run_in_threadpool(_load_live_view, day)
            await websocket.send_json(payload)
            if not await _wait_for_change(websocket, wake_up):
                break
    except WebSocketDisconnect:
        pass
    finally:
        availability_broadcaster.unregister(day, wake_up)
