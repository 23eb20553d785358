"""
Pydantic schemas for checkout, orders and payment confirmation.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from gatehouse.schemas.pricing import DiscountLine, FeeLine, PriceBreakdownResponse, PricedLine


class BuyerInfo(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=32)


class CheckoutRequest(BaseModel):
    reservation_id: str
    buyer: BuyerInfo = BuyerInfo()
    promo_code: Optional[str] = Field(None, max_length=64)
    promoter_code: Optional[str] = Field(None, max_length=64)


class OrderResponse(BaseModel):
    id: str
    reservation_id: str
    event_id: str
    buyer_id: int
    buyer_name: Optional[str]
    buyer_email: Optional[str]
    tickets: list[PricedLine]
    subtotal: int
    discounts: list[DiscountLine]
    discount_total: int
    fees: list[FeeLine]
    fee_total: int
    total_amount: int
    currency: str
    status: str
    payment_intent_id: Optional[str]
    confirmation_source: Optional[str]
    confirmed_at: Optional[datetime]
    created_at: datetime

    model_config = {"from_attributes": True}


class PaymentIntentResponse(BaseModel):
    id: str
    provider: str
    amount: int
    currency: str
    receipt: str
    key_id: Optional[str] = None

    model_config = {"from_attributes": True}


class CheckoutResponse(BaseModel):
    order: OrderResponse
    requires_payment: bool
    payment_intent: Optional[PaymentIntentResponse] = None
    pricing: Optional[PriceBreakdownResponse] = None


class PaymentConfirmRequest(BaseModel):
    order_id: str
    payment_id: str = Field(..., min_length=1, max_length=128)
    gateway_order_id: str = Field(..., min_length=1, max_length=64)
    signature: str = Field(..., min_length=1, max_length=256)


class PaymentConfirmResponse(BaseModel):
    order: OrderResponse
    already_confirmed: bool = False


class WebhookAck(BaseModel):
    status: str
    order_id: Optional[str] = None


class CredentialResponse(BaseModel):
    ticket_id: str
    tier_name: str
    entry_type: str
    quantity: int
    payload: dict
    qr_data: str


class OrderCredentialsResponse(BaseModel):
    order_id: str
    credentials: list[CredentialResponse]
