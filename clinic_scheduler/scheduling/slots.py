"""
Slot catalog.

Nominal bookable times for a business day, derived from configuration only.
Nothing here touches storage; the catalog is recomputed on demand.
"""

from dataclasses import dataclass
from functools import lru_cache

from clinic_scheduler.core import config


@dataclass(frozen=True)
class SlotConfig:
    """
    Business-hours window for the slot catalog.

    Attributes:
        start_hour: First slot hour (inclusive)
        end_hour_exclusive: Slots are generated up to this hour, plus one closing slot at end_hour_exclusive:00
        interval_minutes: Grid step in minutes (must divide an hour)
        capacity: Maximum bookings per (date, slot)
    """
    start_hour: int = 9
    end_hour_exclusive: int = 23
    interval_minutes: int = 30
    capacity: int = 4

    def __post_init__(self):
        if not 0 <= self.start_hour < self.end_hour_exclusive <= 23:
            raise ValueError(
                f"start_hour must be before end_hour_exclusive within a day, got "
                f"{self.start_hour}..{self.end_hour_exclusive}"
            )
        if self.interval_minutes <= 0 or 60 % self.interval_minutes != 0:
            raise ValueError(f"interval_minutes must divide 60, got {self.interval_minutes}")
        if self.capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {self.capacity}")


@dataclass(frozen=True)
class TimeSlotDefinition:
    time: str  # "HH:MM"


def format_slot_time(hour: int, minute: int) -> str:
    return f"{hour:02d}:{minute:02d}"


def generate_slots(slot_config: SlotConfig) -> tuple[TimeSlotDefinition, ...]:
    """
    Ordered slots for one business day.

    9..11 with a 30 minute interval gives 09:00, 09:30, 10:00, 10:30, 11:00.
    """
    slots = [
        TimeSlotDefinition(format_slot_time(hour, minute))
        for hour in range(slot_config.start_hour, slot_config.end_hour_exclusive)
        for minute in range(0, 60, slot_config.interval_minutes)
    ]
    slots.append(TimeSlotDefinition(format_slot_time(slot_config.end_hour_exclusive, 0)))
    return tuple(slots)


@lru_cache
def get_slot_config() -> SlotConfig:
    return SlotConfig(
        start_hour=config.SLOT_START_HOUR,
        end_hour_exclusive=config.SLOT_END_HOUR,
        interval_minutes=config.SLOT_INTERVAL_MINUTES,
        capacity=config.SLOT_CAPACITY,
    )


@lru_cache
def catalog_times(slot_config: SlotConfig | None = None) -> tuple[str, ...]:
    return tuple(slot.time for slot in generate_slots(slot_config or get_slot_config()))


def is_catalog_time(value: str, slot_config: SlotConfig | None = None) -> bool:
    return value in catalog_times(slot_config)
