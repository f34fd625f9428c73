"""Time slot setting (administrator override) model definitions."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Date, DateTime, Integer, String, UniqueConstraint
from clinic_scheduler.database import Base


class TimeSlotSetting(Base):
    """Disables a whole day (time is NULL) or a single slot on a date."""
    __tablename__ = "time_slot_settings"
    __table_args__ = (
        UniqueConstraint("date", "time", name="uq_time_slot_settings_date_time"),
    )

    id = Column(Integer, primary_key=True)
    date = Column(Date, nullable=False, index=True)
    time = Column(String(5), nullable=True)
    is_disabled = Column(Boolean, nullable=False, default=True)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
