"""Failures and booking outcomes for the scheduling core.

Expected outcomes of a booking attempt (slot full, slot unavailable, unknown
case) are returned as ``BookingRejected`` values so callers must inspect them.
Storage and consistency failures are raised as exceptions.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Union

from clinic_scheduler.models.appointment import Appointment


class SchedulingError(Exception):
    """Base class for hard failures raised by the scheduling core."""


class DataUnavailable(SchedulingError):
    """Bookings or overrides could not be read or written."""


class InvariantViolation(SchedulingError):
    """Stored override records break the one-record-per-target rule."""


class OverrideCleanupIncomplete(SchedulingError):
    """A day was re-enabled but its slot overrides could not be removed."""

    def __init__(self, day, message: str):
        super().__init__(message)
        self.day = day


class IdentifierCollision(SchedulingError):
    """Storage rejected issued case identifiers even after a reissue."""


class MalformedRecord(SchedulingError):
    """A stored row could not be converted into a typed record."""


class BookingNotFound(SchedulingError):
    """No appointment exists with the requested id."""


class RejectionReason(str, Enum):
    SLOT_FULL = "slot_full"
    SLOT_UNAVAILABLE = "slot_unavailable"
    UNKNOWN_CASE = "unknown_case"


@dataclass(frozen=True)
class BookingAccepted:
    appointment: Appointment


@dataclass(frozen=True)
class BookingRejected:
    reason: RejectionReason
    message: str

    @classmethod
    def slot_full(cls) -> "BookingRejected":
        return cls(RejectionReason.SLOT_FULL, "This time slot is now full. Please select another time.")

    @classmethod
    def slot_unavailable(cls, message: str = "This time slot is not available. Please select another time.") -> "BookingRejected":
        return cls(RejectionReason.SLOT_UNAVAILABLE, message)

    @classmethod
    def unknown_case(cls) -> "BookingRejected":
        return cls(RejectionReason.UNKNOWN_CASE, "No patient record found for this case ID.")


BookingOutcome = Union[BookingAccepted, BookingRejected]
