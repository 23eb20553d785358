"""
Pydantic schemas for price quotes.

The pricing engine's audit ledger is deliberately absent here: it is stored
on the order and never serialized to clients.
"""

from typing import Optional

from pydantic import BaseModel, Field

from gatehouse.schemas.reservation import ReservationItemIn


class PriceQuoteRequest(BaseModel):
    event_id: str
    items: list[ReservationItemIn] = Field(..., min_length=1)
    promo_code: Optional[str] = Field(None, max_length=64)
    promoter_code: Optional[str] = Field(None, max_length=64)


class PricedLine(BaseModel):
    tier_id: str
    tier_name: str
    entry_type: str
    quantity: int
    unit_price: int
    line_total: int


class DiscountLine(BaseModel):
    kind: str
    code: Optional[str] = None
    amount: int


class FeeLine(BaseModel):
    kind: str
    amount: int


class PriceBreakdownResponse(BaseModel):
    items: list[PricedLine]
    subtotal: int
    discounts: list[DiscountLine]
    discount_total: int
    fees: list[FeeLine]
    fee_total: int
    grand_total: int
    currency: str
    is_free: bool
    promo_error: Optional[str] = None
