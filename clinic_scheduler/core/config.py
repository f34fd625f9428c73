import os
from datetime import timedelta, timezone



def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
SQL_ECHO = _get_bool(os.getenv("SQL_ECHO"), default=False)

CORS_ORIGINS = _get_list(os.getenv("CORS_ORIGINS"), ["http://localhost:5173"])

# Business hours: slots every SLOT_INTERVAL_MINUTES in [start, end) plus a closing slot at end:00.
SLOT_START_HOUR = _get_int(os.getenv("SLOT_START_HOUR"), 9)
SLOT_END_HOUR = _get_int(os.getenv("SLOT_END_HOUR"), 23)
SLOT_INTERVAL_MINUTES = _get_int(os.getenv("SLOT_INTERVAL_MINUTES"), 30)
SLOT_CAPACITY = _get_int(os.getenv("SLOT_CAPACITY"), 4)

SERVICE_UTC_OFFSET_MINUTES = _get_int(os.getenv("SERVICE_UTC_OFFSET_MINUTES"), 330)
SERVICE_TIMEZONE = timezone(timedelta(minutes=SERVICE_UTC_OFFSET_MINUTES))

BOOKING_WINDOW_DAYS = _get_int(os.getenv("BOOKING_WINDOW_DAYS"), 3)
NEXT_SLOT_SEARCH_DAYS = _get_int(os.getenv("NEXT_SLOT_SEARCH_DAYS"), 7)
CASE_ID_LENGTH = _get_int(os.getenv("CASE_ID_LENGTH"), 10)

STAFF_ROLES = frozenset({"admin", "staff"})

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    # Imported here; the slot catalog reads this module at import time.
    from clinic_scheduler.scheduling.slots import get_slot_config

    get_slot_config.cache_clear()
    try:
        get_slot_config()
    except ValueError as exc:
        raise RuntimeError(f"Invalid slot settings: {exc}") from exc
    if not 8 <= CASE_ID_LENGTH <= 10:
        raise RuntimeError("CASE_ID_LENGTH must be between 8 and 10.")
    if BOOKING_WINDOW_DAYS < 0 or NEXT_SLOT_SEARCH_DAYS < 1:
        raise RuntimeError("Booking window settings must not be negative.")
