"""
Promo codes, promoter codes and promo redemptions.

Usage counters (`redemption_count`, `use_count`) are only incremented when an
order is finalized. Redemptions are unique per (promo code, order) so a
replayed confirmation cannot count twice.
"""

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    JSON,
    String,
    UniqueConstraint,
)

from gatehouse.db.base import Base, TimestampMixin, UTCDateTime, new_id, utcnow


class PromoCode(Base, TimestampMixin):
    __tablename__ = "promo_codes"

    id = Column(String(36), primary_key=True, default=new_id)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False, index=True)
    code = Column(String(64), nullable=False)
    discount_type = Column(String(10), nullable=False)
    # Basis points for percent codes, minor units for flat codes
    discount_value = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    starts_at = Column(UTCDateTime, nullable=True)
    ends_at = Column(UTCDateTime, nullable=True)
    max_redemptions = Column(Integer, nullable=True)
    max_per_user = Column(Integer, nullable=True)
    # None applies to every tier
    tier_ids = Column(JSON, nullable=True)
    redemption_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("event_id", "code", name="uq_promo_codes_event_code"),
    )


class PromoterCode(Base, TimestampMixin):
    __tablename__ = "promoter_codes"

    id = Column(String(36), primary_key=True, default=new_id)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False, index=True)
    code = Column(String(64), nullable=False)
    promoter_name = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    expires_at = Column(UTCDateTime, nullable=True)
    max_uses = Column(Integer, nullable=True)
    use_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("event_id", "code", name="uq_promoter_codes_event_code"),
    )


class PromoRedemption(Base):
    __tablename__ = "promo_redemptions"

    id = Column(String(36), primary_key=True, default=new_id)
    promo_code_id = Column(String(36), ForeignKey("promo_codes.id"), nullable=False, index=True)
    order_id = Column(String(36), nullable=False)
    user_id = Column(Integer, nullable=False, index=True)
    discount_amount = Column(Integer, nullable=False, default=0)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("promo_code_id", "order_id", name="uq_promo_redemptions_code_order"),
    )
