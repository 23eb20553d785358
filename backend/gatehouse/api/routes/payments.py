"""
Payment confirmation endpoints: client confirmation and gateway webhook.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.db.session import get_db
from gatehouse.schemas.order import OrderResponse, PaymentConfirmRequest, PaymentConfirmResponse, WebhookAck
from gatehouse.services import payment_service
from gatehouse.services.gateway_factory import get_payment_gateway
from gatehouse.services.interfaces.payment_gateway import PaymentGateway
from gatehouse.core.security import get_current_user_id
from gatehouse.core.errors import OrderNotFoundError
from gatehouse.services.checkout_service import get_order

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/confirm", response_model=PaymentConfirmResponse)
async def confirm_payment(
    data: PaymentConfirmRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """
    Client relays the gateway's signed payment result.

    Idempotent: confirming an already confirmed order returns it unchanged
    with `already_confirmed=true`.
    """
    order = await get_order(db, data.order_id)
    if order is None or order.buyer_id != user_id:
        raise OrderNotFoundError()

    result = await payment_service.confirm_client_payment(
        db,
        gateway,
        order_id=data.order_id,
        payment_id=data.payment_id,
        gateway_order_id=data.gateway_order_id,
        signature=data.signature,
    )
    return PaymentConfirmResponse(
        order=OrderResponse.model_validate(result.order),
        already_confirmed=not result.changed,
    )


@router.post("/webhook", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """
    Gateway push notification.

    The signature is checked against the raw body before anything is parsed.
    Unknown or irrelevant events are acknowledged with `ignored` so the
    gateway stops redelivering them.
    """
    body = await request.body()
    outcome, order_id = await payment_service.handle_webhook(db, gateway, body, x_razorpay_signature)
    return WebhookAck(status=outcome, order_id=order_id)
