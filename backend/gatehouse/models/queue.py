"""
Virtual queue ticket.

One row per (event, requester) attempt to enter the purchase flow. Only one
ticket per requester and event may be in an active status at a time; joins
return the existing one.
"""

from enum import Enum

from sqlalchemy import BigInteger, Column, Index, Integer, String

from gatehouse.db.base import Base, TimestampMixin, UTCDateTime, new_id, utcnow


class QueueLane(str, Enum):
    LOYAL = "loyal"
    AUTH = "auth"
    GUEST = "guest"


class QueueStatus(str, Enum):
    WAITING = "waiting"
    ADMITTED = "admitted"
    PAYMENT_RETRY = "payment_retry"
    CONSUMED = "consumed"
    EXPIRED = "expired"
    ABANDONED = "abandoned"


ACTIVE_QUEUE_STATUSES = (
    QueueStatus.WAITING.value,
    QueueStatus.ADMITTED.value,
    QueueStatus.PAYMENT_RETRY.value,
)


class QueueTicket(Base, TimestampMixin):
    __tablename__ = "queue_tickets"

    id = Column(String(36), primary_key=True, default=new_id)
    event_id = Column(String(36), nullable=False)
    requester_id = Column(String(160), nullable=False)
    user_id = Column(Integer, nullable=True)
    device_id = Column(String(128), nullable=True)
    lane = Column(String(10), nullable=False)
    # Lower score is served first within a lane
    score = Column(BigInteger, nullable=False)
    status = Column(String(20), nullable=False, default=QueueStatus.WAITING.value)
    joined_at = Column(UTCDateTime, nullable=False, default=utcnow)
    last_active_at = Column(UTCDateTime, nullable=False, default=utcnow)
    admitted_at = Column(UTCDateTime, nullable=True)
    expires_at = Column(UTCDateTime, nullable=True)
    retry_until = Column(UTCDateTime, nullable=True)
    ended_at = Column(UTCDateTime, nullable=True)
    admission_token = Column(String(255), nullable=True)

    __table_args__ = (
        Index("ix_queue_tickets_event_status", "event_id", "status"),
        Index("ix_queue_tickets_event_requester", "event_id", "requester_id"),
    )
