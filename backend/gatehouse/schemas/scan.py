"""
Pydantic schemas for door scans.
"""

from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, Field


class ScanRequest(BaseModel):
    # Raw scanned string (JSON) or the decoded payload object
    qr_payload: Union[str, dict]
    event_id: Optional[str] = None
    device_id: Optional[str] = Field(None, max_length=128)
    venue_id: Optional[str] = Field(None, max_length=64)


class PriorScan(BaseModel):
    scanned_at: datetime
    staff_id: Optional[int] = None
    staff_name: Optional[str] = None
    device_id: Optional[str] = None


class ScanResponse(BaseModel):
    result: str
    message: str
    order_id: Optional[str] = None
    ticket_id: Optional[str] = None
    tier_name: Optional[str] = None
    entry_type: Optional[str] = None
    quantity: Optional[int] = None
    buyer_name: Optional[str] = None
    scanned_at: Optional[datetime] = None
    previous_scan: Optional[PriorScan] = None


class ScanLogEntry(BaseModel):
    order_id: str
    ticket_id: str
    tier_name: Optional[str] = None
    entry_type: str
    quantity: int
    buyer_name: Optional[str] = None
    device_id: Optional[str] = None
    venue_id: Optional[str] = None
    staff_name: Optional[str] = None
    scanned_at: datetime


class DoorStatsResponse(BaseModel):
    event_id: str
    scans: list[ScanLogEntry]
    total_scans: int
    total_people: int
    by_entry_type: dict[str, int]
    duplicate_attempts: int
