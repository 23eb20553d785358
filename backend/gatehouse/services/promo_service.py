"""
Promo and promoter code resolution plus usage recording.

Resolution is read-only and soft: an unusable code yields an error message
for the price breakdown instead of failing the request. Usage counters are
only touched by `record_code_usage`, which the payment confirmation path
calls exactly once per order (whoever wins the transition to a paid state).
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.core.logging import get_logger
from gatehouse.models.order import Order
from gatehouse.models.promo import PromoCode, PromoRedemption, PromoterCode

logger = get_logger(__name__)


@dataclass(frozen=True)
class PromoRule:
    id: str
    code: str
    discount_type: str
    discount_value: int
    tier_ids: Optional[tuple[str, ...]] = None


@dataclass(frozen=True)
class PromoterRule:
    id: str
    code: str


def normalize_code(code: Optional[str]) -> Optional[str]:
    if code is None:
        return None
    code = code.strip().upper()
    return code or None


async def resolve_promo_code(
    db: AsyncSession,
    event_id: str,
    code: Optional[str],
    user_id: Optional[int],
    now: datetime,
) -> tuple[Optional[PromoRule], Optional[str]]:
    code = normalize_code(code)
    if code is None:
        return None, None

    result = await db.execute(
        select(PromoCode).where(PromoCode.event_id == event_id, PromoCode.code == code)
    )
    promo = result.scalar_one_or_none()

    if promo is None:
        return None, "Promo code not found"
    if not promo.is_active:
        return None, "Promo code is not active"
    if promo.starts_at is not None and now < promo.starts_at:
        return None, "Promo code is not active yet"
    if promo.ends_at is not None and now >= promo.ends_at:
        return None, "Promo code has expired"
    if promo.max_redemptions is not None and promo.redemption_count >= promo.max_redemptions:
        return None, "Promo code usage limit reached"
    if promo.max_per_user is not None and user_id is not None:
        used = (await db.execute(
            select(func.count())
            .select_from(PromoRedemption)
            .where(PromoRedemption.promo_code_id == promo.id, PromoRedemption.user_id == user_id)
        )).scalar()
        if used >= promo.max_per_user:
            return None, "You have already used this promo code"

    return PromoRule(
        id=promo.id,
        code=promo.code,
        discount_type=promo.discount_type,
        discount_value=promo.discount_value,
        tier_ids=tuple(promo.tier_ids) if promo.tier_ids else None,
    ), None


async def resolve_promoter_code(
    db: AsyncSession,
    event_id: str,
    code: Optional[str],
    now: datetime,
) -> tuple[Optional[PromoterRule], Optional[str]]:
    code = normalize_code(code)
    if code is None:
        return None, None

    result = await db.execute(
        select(PromoterCode).where(PromoterCode.event_id == event_id, PromoterCode.code == code)
    )
    promoter = result.scalar_one_or_none()

    if promoter is None or not promoter.is_active:
        return None, "Promoter code not found"
    if promoter.expires_at is not None and now >= promoter.expires_at:
        return None, "Promoter code has expired"
    if promoter.max_uses is not None and promoter.use_count >= promoter.max_uses:
        return None, "Promoter code usage limit reached"

    return PromoterRule(id=promoter.id, code=promoter.code), None


async def record_code_usage(db: AsyncSession, order: Order) -> None:
    """
    Count promo and promoter usage for a finalized order.

    Runs inside the caller's transaction. The redemption row is inserted in a
    savepoint; a duplicate means this order was already counted.
    """
    if order.promo_code_id:
        promo_amount = sum(d["amount"] for d in order.discounts or [] if d.get("kind") == "promo")
        try:
            async with db.begin_nested():
                db.add(PromoRedemption(
                    promo_code_id=order.promo_code_id,
                    order_id=order.id,
                    user_id=order.buyer_id,
                    discount_amount=promo_amount,
                ))
        except IntegrityError:
            logger.info("promo_redemption_exists", order_id=order.id, promo_code_id=order.promo_code_id)
        else:
            await db.execute(
                update(PromoCode)
                .where(PromoCode.id == order.promo_code_id)
                .values(redemption_count=PromoCode.redemption_count + 1)
            )
            logger.info("promo_redeemed", order_id=order.id, code=order.promo_code, amount=promo_amount)

    if order.promoter_code_id:
        await db.execute(
            update(PromoterCode)
            .where(
                PromoterCode.id == order.promoter_code_id,
                or_(PromoterCode.max_uses.is_(None), PromoterCode.use_count < PromoterCode.max_uses),
            )
            .values(use_count=PromoterCode.use_count + 1)
        )
        logger.info("promoter_code_used", order_id=order.id, code=order.promoter_code)
