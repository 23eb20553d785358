"""
Order lookup and admission credentials.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.db.session import get_db
from gatehouse.schemas.order import OrderCredentialsResponse, OrderResponse
from gatehouse.services.checkout_service import get_order
from gatehouse.services.credentials import build_credentials
from gatehouse.core.errors import OrderNotFoundError
from gatehouse.core.security import get_current_user_id

router = APIRouter(prefix="/orders", tags=["Orders"])


async def _owned_order(db: AsyncSession, order_id: str, user_id: int):
    order = await get_order(db, order_id)
    # Someone else's order looks the same as a missing one
    if order is None or order.buyer_id != user_id:
        raise OrderNotFoundError()
    return order


@router.get("/{order_id}", response_model=OrderResponse)
async def read_order(
    order_id: str,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await _owned_order(db, order_id, user_id)


@router.get("/{order_id}/credentials", response_model=OrderCredentialsResponse)
async def read_credentials(
    order_id: str,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Signed QR payloads, one per ticket line. Empty until the order is confirmed."""
    order = await _owned_order(db, order_id, user_id)
    return OrderCredentialsResponse(order_id=order.id, credentials=build_credentials(order))
