"""
Pydantic schemas for inventory reservations.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ReservationItemIn(BaseModel):
    tier_id: str
    quantity: int = Field(..., ge=1, le=1000)


class ReservationCreate(BaseModel):
    event_id: str
    items: list[ReservationItemIn] = Field(..., min_length=1)
    device_id: Optional[str] = Field(None, max_length=128)
    admission_token: Optional[str] = Field(None, max_length=255)


class ReservationItem(BaseModel):
    tier_id: str
    tier_name: str
    entry_type: str
    quantity: int
    unit_price: int


class ReservationResponse(BaseModel):
    reservation_id: str = Field(validation_alias="id")
    event_id: str
    status: str
    items: list[ReservationItem]
    expires_at: datetime
    created_at: datetime

    model_config = {"from_attributes": True, "populate_by_name": True}
