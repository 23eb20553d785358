"""
Price quote endpoint.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.db.session import get_db
from gatehouse.schemas.pricing import PriceQuoteRequest, PriceBreakdownResponse
from gatehouse.services import event_service
from gatehouse.services.pricing_engine import price_order
from gatehouse.core.security import get_optional_user_id

router = APIRouter(prefix="/pricing", tags=["Pricing"])


@router.post("/quote", response_model=PriceBreakdownResponse)
async def quote(
    data: PriceQuoteRequest,
    user_id: int | None = Depends(get_optional_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Price a basket without holding inventory.

    An unusable promo or promoter code does not fail the quote; the reason
    comes back in `promo_error` and the code is simply not applied.
    """
    event = await event_service.get_event(db, data.event_id)
    breakdown = await price_order(
        db,
        event,
        data.items,
        promo_code=data.promo_code,
        promoter_code=data.promoter_code,
        user_id=user_id,
    )
    return breakdown.public_dict()
