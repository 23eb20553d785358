"""
Virtual waiting room endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.db.session import get_db
from gatehouse.schemas.queue import QueueJoinRequest, QueueTicketResponse
from gatehouse.services import queue_service
from gatehouse.core.security import get_optional_user_id

router = APIRouter(prefix="/queue", tags=["Queue"])


@router.post("/join", response_model=QueueTicketResponse, status_code=status.HTTP_201_CREATED)
async def join(
    data: QueueJoinRequest,
    user_id: Optional[int] = Depends(get_optional_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Enter the queue for an event. Signed-in users may join without a device id;
    guests must send one. Joining twice returns the existing ticket.
    """
    ticket = await queue_service.join_queue(db, data.event_id, user_id, data.device_id)
    return await queue_service.describe_ticket(db, ticket)


@router.get("/{ticket_id}", response_model=QueueTicketResponse)
async def poll(ticket_id: str, db: AsyncSession = Depends(get_db)):
    """Heartbeat and status. Carries the admission token once admitted."""
    ticket = await queue_service.get_queue_status(db, ticket_id)
    return await queue_service.describe_ticket(db, ticket)


@router.post("/{ticket_id}/payment-retry", response_model=QueueTicketResponse)
async def payment_retry(
    ticket_id: str,
    device_id: Optional[str] = Query(None, max_length=128),
    user_id: Optional[int] = Depends(get_optional_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Re-open a spent admission briefly so a failed payment can be retried."""
    ticket = await queue_service.flag_payment_retry(db, ticket_id, user_id, device_id)
    return await queue_service.describe_ticket(db, ticket)
