"""
Door admission records.

- ScanRecord: one row per *valid* admission. `valid_key` ("order:ticket") is
  UNIQUE, which is what makes "at most one valid scan per ticket" hold under
  concurrent scanners.
- ScanAttempt: append-only audit of every scan, including forged and
  duplicate ones.
- BoundDevice: scanner devices registered to a venue.
"""

from sqlalchemy import Boolean, Column, Index, Integer, String

from gatehouse.db.base import Base, TimestampMixin, UTCDateTime, new_id, utcnow


class ScanResult:
    VALID = "valid"
    ALREADY_SCANNED = "already_scanned"
    INVALID = "invalid"
    WRONG_EVENT = "wrong_event"
    NOT_CONFIRMED = "not_confirmed"
    NOT_FOUND = "not_found"
    DEVICE_INVALID = "device_invalid"


class ScanRecord(Base):
    __tablename__ = "scan_records"

    id = Column(String(36), primary_key=True, default=new_id)
    valid_key = Column(String(128), nullable=False, unique=True)
    order_id = Column(String(36), nullable=False, index=True)
    ticket_id = Column(String(64), nullable=False)
    event_id = Column(String(36), nullable=False, index=True)
    quantity = Column(Integer, nullable=False, default=1)
    result = Column(String(20), nullable=False, default=ScanResult.VALID)
    device_id = Column(String(128), nullable=True)
    venue_id = Column(String(64), nullable=True)
    staff_id = Column(Integer, nullable=True)
    staff_name = Column(String(255), nullable=True)
    scanned_at = Column(UTCDateTime, nullable=False, default=utcnow)


class ScanAttempt(Base):
    __tablename__ = "scan_attempts"

    id = Column(String(36), primary_key=True, default=new_id)
    result = Column(String(20), nullable=False)
    order_id = Column(String(36), nullable=True)
    ticket_id = Column(String(64), nullable=True)
    event_id = Column(String(36), nullable=True)
    device_id = Column(String(128), nullable=True)
    venue_id = Column(String(64), nullable=True)
    staff_id = Column(Integer, nullable=True)
    reason = Column(String(255), nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_scan_attempts_event_created", "event_id", "created_at"),
    )


class BoundDevice(Base, TimestampMixin):
    __tablename__ = "bound_devices"

    id = Column(String(128), primary_key=True)
    venue_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    last_active_at = Column(UTCDateTime, nullable=True)
