"""
Checkout endpoint: turns a reservation into an order.
"""

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.db.session import get_db
from gatehouse.schemas.order import CheckoutRequest, CheckoutResponse, OrderResponse, PaymentIntentResponse
from gatehouse.services import checkout_service
from gatehouse.services.gateway_factory import get_payment_gateway
from gatehouse.services.interfaces.payment_gateway import PaymentGateway
from gatehouse.core.security import get_current_user_id

router = APIRouter(prefix="/checkout", tags=["Checkout"])


def intent_response(intent, gateway: PaymentGateway) -> PaymentIntentResponse | None:
    if intent is None:
        return None
    return PaymentIntentResponse.model_validate(intent).model_copy(update={"key_id": gateway.key_id})


@router.post("", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
async def checkout(
    data: CheckoutRequest,
    response: Response,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """
    Create the order for a reservation, or return the one that already exists.

    Safe to retry with the same reservation id: a repeat call answers 200 with
    the original order instead of creating a second one. Paid orders come back
    in `pending_payment` with a gateway payment intent; RSVP and zero-total
    orders are confirmed immediately.
    """
    result = await checkout_service.checkout(
        db,
        gateway,
        reservation_id=data.reservation_id,
        requester_id=user_id,
        buyer=data.buyer.model_dump(),
        promo_code=data.promo_code,
        promoter_code=data.promoter_code,
    )
    if not result.created:
        response.status_code = status.HTTP_200_OK
    return CheckoutResponse(
        order=OrderResponse.model_validate(result.order),
        requires_payment=result.requires_payment,
        payment_intent=intent_response(result.payment_intent, gateway),
        pricing=result.pricing,
    )
