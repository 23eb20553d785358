"""
Payment intents and webhook receipts.

A PaymentIntent mirrors the gateway-side order created for an Order.
PaymentWebhookEvent is the dedupe ledger for pushed notifications: unique on
(provider, payment_id) so a redelivered webhook is recognised and skipped.
"""

from sqlalchemy import Column, Index, Integer, JSON, String, UniqueConstraint

from gatehouse.db.base import Base, TimestampMixin, UTCDateTime, new_id, utcnow


class PaymentIntent(Base, TimestampMixin):
    __tablename__ = "payment_intents"

    id = Column(String(64), primary_key=True)  # gateway order reference
    order_id = Column(String(36), nullable=False, index=True)
    provider = Column(String(32), nullable=False)
    amount = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    receipt = Column(String(64), nullable=False)
    status = Column(String(20), nullable=False, default="created")
    notes = Column(JSON, nullable=True)


class PaymentWebhookEvent(Base):
    __tablename__ = "payment_webhook_events"

    id = Column(String(36), primary_key=True, default=new_id)
    provider = Column(String(32), nullable=False)
    event_type = Column(String(64), nullable=False)
    payment_id = Column(String(128), nullable=False)
    order_id = Column(String(36), nullable=True)
    payload_hash = Column(String(64), nullable=False)
    status = Column(String(32), nullable=False, default="processed")
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("provider", "payment_id", name="uq_webhook_provider_payment_id"),
        Index("ix_webhook_events_order", "order_id"),
    )
