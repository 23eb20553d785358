"""
Reservation model: a time-limited hold on tier inventory.

Lifecycle: active -> consumed (order created) | expired (sweeper) |
cancelled (owner). Terminal states are never written again; every
transition is a guarded UPDATE on `status = 'active'`.
"""

from enum import Enum

from sqlalchemy import Column, ForeignKey, Index, Integer, JSON, String

from gatehouse.db.base import Base, TimestampMixin, UTCDateTime, new_id


class ReservationStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    CONSUMED = "consumed"
    CANCELLED = "cancelled"


class Reservation(Base, TimestampMixin):
    __tablename__ = "reservations"

    id = Column(String(36), primary_key=True, default=new_id)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False, index=True)
    requester_id = Column(Integer, nullable=False, index=True)
    device_id = Column(String(128), nullable=True)
    # [{"tier_id", "tier_name", "entry_type", "quantity", "unit_price"}]
    items = Column(JSON, nullable=False)
    status = Column(String(20), nullable=False, default=ReservationStatus.ACTIVE.value)
    expires_at = Column(UTCDateTime, nullable=False)
    queue_ticket_id = Column(String(36), nullable=True)

    __table_args__ = (
        # Sweeper scan: active reservations ordered by expiry
        Index("ix_reservations_status_expires", "status", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<Reservation(id={self.id}, status={self.status}, expires_at={self.expires_at})>"
