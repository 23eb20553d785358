"""
Event and ticket tier models.

Key design decisions:
- Tiers live in their own table so each tier's `remaining` counter is an
  independently addressable row. Only guarded UPDATEs touch it.
- `version` on the tier enables compare-and-set decrements.
- CHECK constraints are the last line of defence: `0 <= remaining <= capacity`.
- Money is stored in minor units (paise); percentages in basis points.
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
)

from gatehouse.db.base import Base, TimestampMixin, UTCDateTime, new_id


class DiscountType:
    PERCENT = "percent"
    FLAT = "flat"

    ALL = (PERCENT, FLAT)


class Event(Base, TimestampMixin):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String(255), nullable=False)
    description = Column(String(1000), nullable=True)
    date = Column(UTCDateTime, nullable=False)
    location = Column(String(255), nullable=True)
    organizer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    is_rsvp = Column(Boolean, nullable=False, default=False)
    queue_enabled = Column(Boolean, nullable=False, default=False)

    # Promoter discount defaults, overridable per tier
    promoter_discounts_enabled = Column(Boolean, nullable=False, default=False)
    promoter_discount_type = Column(String(10), nullable=False, default=DiscountType.PERCENT)
    promoter_discount_value = Column(Integer, nullable=False, default=0)

    # Fee configuration; NULL means "use the platform default"
    platform_fee_type = Column(String(10), nullable=False, default=DiscountType.PERCENT)
    platform_fee_value = Column(Integer, nullable=True)
    payment_fee_bps = Column(Integer, nullable=True)
    fee_tax_bps = Column(Integer, nullable=True)

    __table_args__ = (
        Index("ix_events_date", "date"),
    )

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, title={self.title})>"


class TicketTier(Base, TimestampMixin):
    __tablename__ = "ticket_tiers"

    id = Column(String(36), primary_key=True, default=new_id)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    entry_type = Column(String(50), nullable=False, default="general")
    price = Column(Integer, nullable=False, default=0)
    capacity = Column(Integer, nullable=False)
    remaining = Column(Integer, nullable=False)
    min_per_order = Column(Integer, nullable=False, default=1)
    max_per_order = Column(Integer, nullable=False, default=10)
    sales_end = Column(UTCDateTime, nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)

    promoter_enabled = Column(Boolean, nullable=False, default=False)
    promoter_discount_type = Column(String(10), nullable=True)
    promoter_discount_value = Column(Integer, nullable=True)

    # [{"price": 49900, "starts_at": iso, "ends_at": iso}, ...]
    scheduled_prices = Column(JSON, nullable=True)

    # Optimistic locking version counter
    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("remaining >= 0", name="check_tier_remaining_non_negative"),
        CheckConstraint("remaining <= capacity", name="check_tier_remaining_lte_capacity"),
        CheckConstraint("capacity >= 0", name="check_tier_capacity_non_negative"),
        CheckConstraint("price >= 0", name="check_tier_price_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<TicketTier(id={self.id}, name={self.name}, remaining={self.remaining}/{self.capacity})>"
