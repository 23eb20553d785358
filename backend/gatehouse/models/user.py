"""
User model with secure password storage and a coarse role.
"""

from enum import Enum

from sqlalchemy import Column, Integer, String, Boolean

from gatehouse.db.base import Base, TimestampMixin


class UserRole(str, Enum):
    ATTENDEE = "attendee"
    ORGANIZER = "organizer"
    STAFF = "staff"


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    username = Column(String(100), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=True)
    phone = Column(String(32), nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.ATTENDEE.value)
    is_active = Column(Boolean, default=True, nullable=False)

    @property
    def can_scan(self) -> bool:
        return self.role in (UserRole.STAFF.value, UserRole.ORGANIZER.value)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
