"""
Pydantic schemas for the virtual queue.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class QueueJoinRequest(BaseModel):
    event_id: str
    device_id: Optional[str] = Field(None, max_length=128)


class QueueTicketResponse(BaseModel):
    ticket_id: str
    event_id: str
    lane: str
    status: str
    position: Optional[int] = None
    lane_position: Optional[int] = None
    admission_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    retry_until: Optional[datetime] = None
