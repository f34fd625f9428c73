import logging

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from clinic_scheduler.database import ensure_appointment_schema, ensure_slot_settings_schema
from clinic_scheduler.scheduling.errors import (
    BookingNotFound,
    BookingRejected,
    DataUnavailable,
    IdentifierCollision,
    InvariantViolation,
    MalformedRecord,
    OverrideCleanupIncomplete,
    SchedulingError,
)

logger = logging.getLogger(__name__)

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and Postgres credentials.'


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
        ensure_slot_settings_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def to_http_exception(exc: SchedulingError) -> HTTPException:
    if isinstance(exc, BookingNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Appointment not found.')
    if isinstance(exc, OverrideCleanupIncomplete):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    if isinstance(exc, IdentifierCollision):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Failed to book appointment. Please try again.',
        )
    if isinstance(exc, (InvariantViolation, MalformedRecord)):
        logger.error('Scheduling data needs operator attention: %s', exc)
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail='Scheduling data is inconsistent. Please contact the clinic.',
        )
    if isinstance(exc, DataUnavailable):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=DATABASE_UNAVAILABLE_DETAIL)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def rejection_to_http_exception(rejection: BookingRejected) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={'reason': rejection.reason.value, 'message': rejection.message},
    )
