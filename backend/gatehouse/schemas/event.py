"""
Pydantic schemas for events, tiers and promo codes.
All amounts are integers in minor currency units; percentages in basis points.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator

DiscountTypeField = Literal["percent", "flat"]


class ScheduledPrice(BaseModel):
    price: int = Field(..., ge=0)
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None


class TierCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    entry_type: str = Field("general", max_length=50)
    price: int = Field(0, ge=0)
    capacity: int = Field(..., ge=0, le=100000)
    min_per_order: Optional[int] = Field(None, ge=1)
    max_per_order: Optional[int] = Field(None, ge=1)
    sales_end: Optional[datetime] = None
    promoter_enabled: bool = False
    promoter_discount_type: Optional[DiscountTypeField] = None
    promoter_discount_value: Optional[int] = Field(None, ge=0)
    scheduled_prices: Optional[list[ScheduledPrice]] = None

    @model_validator(mode="after")
    def check_limits(self):
        if (
            self.min_per_order is not None
            and self.max_per_order is not None
            and self.min_per_order > self.max_per_order
        ):
            raise ValueError("min_per_order cannot exceed max_per_order")
        return self


class EventCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    date: datetime
    location: Optional[str] = Field(None, max_length=255)
    currency: str = Field("INR", min_length=3, max_length=3)
    is_rsvp: bool = False
    queue_enabled: bool = False
    promoter_discounts_enabled: bool = False
    promoter_discount_type: DiscountTypeField = "percent"
    promoter_discount_value: int = Field(0, ge=0)
    platform_fee_type: DiscountTypeField = "percent"
    platform_fee_value: Optional[int] = Field(None, ge=0)
    payment_fee_bps: Optional[int] = Field(None, ge=0, le=10000)
    fee_tax_bps: Optional[int] = Field(None, ge=0, le=10000)
    tiers: list[TierCreate] = Field(..., min_length=1)


class TierResponse(BaseModel):
    id: str
    name: str
    entry_type: str
    price: int
    capacity: int
    remaining: int
    min_per_order: int
    max_per_order: int
    sales_end: Optional[datetime]
    promoter_enabled: bool

    model_config = {"from_attributes": True}


class EventResponse(BaseModel):
    id: str
    title: str
    description: Optional[str]
    date: datetime
    location: Optional[str]
    organizer_id: int
    currency: str
    is_rsvp: bool
    queue_enabled: bool
    promoter_discounts_enabled: bool
    tiers: list[TierResponse] = []
    created_at: datetime

    model_config = {"from_attributes": True}


class EventListResponse(BaseModel):
    events: list[EventResponse]
    total: int
    page: int
    page_size: int
    cached: bool = False


class PromoCodeCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)
    discount_type: DiscountTypeField
    discount_value: int = Field(..., gt=0)
    is_active: bool = True
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    max_redemptions: Optional[int] = Field(None, ge=1)
    max_per_user: Optional[int] = Field(None, ge=1)
    tier_ids: Optional[list[str]] = None

    @model_validator(mode="after")
    def check_percent(self):
        if self.discount_type == "percent" and self.discount_value > 10000:
            raise ValueError("percent discounts are basis points and cannot exceed 10000")
        return self


class PromoCodeResponse(BaseModel):
    id: str
    event_id: str
    code: str
    discount_type: str
    discount_value: int
    is_active: bool
    starts_at: Optional[datetime]
    ends_at: Optional[datetime]
    max_redemptions: Optional[int]
    max_per_user: Optional[int]
    tier_ids: Optional[list[str]]
    redemption_count: int

    model_config = {"from_attributes": True}


class PromoterCodeCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)
    promoter_name: Optional[str] = Field(None, max_length=255)
    expires_at: Optional[datetime] = None
    max_uses: Optional[int] = Field(None, ge=1)


class PromoterCodeResponse(BaseModel):
    id: str
    event_id: str
    code: str
    promoter_name: Optional[str]
    is_active: bool
    expires_at: Optional[datetime]
    max_uses: Optional[int]
    use_count: int

    model_config = {"from_attributes": True}
