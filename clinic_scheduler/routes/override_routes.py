from datetime import date

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from clinic_scheduler.auth.dependencies import require_staff
from clinic_scheduler.database import get_db
from clinic_scheduler.models.user import User
from clinic_scheduler.routes.common import ensure_database_ready, to_http_exception
from clinic_scheduler.scheduling.availability import is_day_disabled
from clinic_scheduler.scheduling.errors import SchedulingError
from clinic_scheduler.scheduling.overrides import list_overrides, purge_slot_overrides, set_day_override, set_slot_override
from clinic_scheduler.scheduling.records import validate_slot_time
from clinic_scheduler.scheduling.slots import is_catalog_time

router = APIRouter(tags=['overrides'])


class DayOverrideRequest(BaseModel):
    date: date
    disabled: bool


class SlotOverrideRequest(BaseModel):
    date: date
    time: str
    disabled: bool

    @field_validator('time')
    @classmethod
    def validate_time(cls, value: str) -> str:
        normalized = validate_slot_time(value)
        if not is_catalog_time(normalized):
            raise ValueError('Time must be one of the clinic time slots.')
        return normalized


class OverrideResponse(BaseModel):
    id: int
    date: date
    time: str | None = None
    is_disabled: bool

    class Config:
        from_attributes = True


class OverrideStateResponse(BaseModel):
    date: date
    time: str | None = None
    disabled: bool
    record: OverrideResponse | None = None


class CleanupResponse(BaseModel):
    date: date
    removed: int


@router.put('/day', response_model=OverrideStateResponse)
def update_day_override(
    data: DayOverrideRequest,
    _: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        record = set_day_override(db, data.date, data.disabled)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return OverrideStateResponse(
        date=data.date,
        disabled=data.disabled,
        record=OverrideResponse.model_validate(record) if record else None,
    )


@router.put('/slot', response_model=OverrideStateResponse)
def update_slot_override(
    data: SlotOverrideRequest,
    _: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        record = set_slot_override(db, data.date, data.time, data.disabled)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return OverrideStateResponse(
        date=data.date,
        time=data.time,
        disabled=data.disabled,
        record=OverrideResponse.model_validate(record) if record else None,
    )


@router.get('/{day}', response_model=list[OverrideResponse])
def get_overrides(
    day: date,
    _: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return [OverrideResponse.model_validate(record) for record in list_overrides(db, day)]
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.post('/{day}/cleanup', response_model=CleanupResponse)
def retry_override_cleanup(
    day: date,
    _: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        if is_day_disabled(list_overrides(db, day)):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='This day is disabled. Enable it before cleaning up slot overrides.',
            )
        removed = purge_slot_overrides(db, day)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return CleanupResponse(date=day, removed=removed)
