"""
Order model.

Key design decisions:
- `reservation_id` is UNIQUE: at most one order per reservation, even when two
  checkout calls race past the idempotency lookup.
- Totals are always produced by server-side re-pricing; the client never
  supplies an amount.
- `audit_ledger` is internal only (dispute resolution) and is not part of
  any response schema.
"""

from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, JSON, String

from gatehouse.core.state_machine import OrderStatus
from gatehouse.db.base import Base, TimestampMixin, UTCDateTime, new_id


class Order(Base, TimestampMixin):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=new_id)
    reservation_id = Column(String(36), ForeignKey("reservations.id"), nullable=False, unique=True)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False, index=True)
    buyer_id = Column(Integer, nullable=False, index=True)
    buyer_name = Column(String(255), nullable=True)
    buyer_email = Column(String(255), nullable=True)
    buyer_phone = Column(String(32), nullable=True)

    # [{"tier_id", "tier_name", "entry_type", "quantity", "unit_price", "line_total"}]
    tickets = Column(JSON, nullable=False)
    subtotal = Column(Integer, nullable=False, default=0)
    discounts = Column(JSON, nullable=False, default=list)
    discount_total = Column(Integer, nullable=False, default=0)
    fees = Column(JSON, nullable=False, default=list)
    fee_total = Column(Integer, nullable=False, default=0)
    total_amount = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="INR")
    is_rsvp = Column(Boolean, nullable=False, default=False)

    status = Column(String(20), nullable=False, default=OrderStatus.PENDING_PAYMENT.value)
    payment_intent_id = Column(String(64), nullable=True, index=True)
    payment_id = Column(String(128), nullable=True)
    confirmation_source = Column(String(20), nullable=True)
    confirmed_at = Column(UTCDateTime, nullable=True)
    failed_at = Column(UTCDateTime, nullable=True)
    checked_in_at = Column(UTCDateTime, nullable=True)

    promo_code_id = Column(String(36), nullable=True)
    promo_code = Column(String(64), nullable=True)
    promoter_code_id = Column(String(36), nullable=True)
    promoter_code = Column(String(64), nullable=True)
    audit_ledger = Column(JSON, nullable=False, default=list)

    __table_args__ = (
        # Stale pending-order sweep
        Index("ix_orders_status_created", "status", "created_at"),
        Index("ix_orders_buyer_status", "buyer_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Order(id={self.id}, status={self.status}, total={self.total_amount})>"
