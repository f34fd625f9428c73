"""User model definitions."""

from sqlalchemy import Column, Integer, String
from clinic_scheduler.core import config
from clinic_scheduler.database import Base


class User(Base):
    """Represents an authenticated caller."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    role = Column(String)  # patient/staff/admin

    @property
    def is_staff(self) -> bool:
        return (self.role or "").strip().lower() in config.STAFF_ROLES
