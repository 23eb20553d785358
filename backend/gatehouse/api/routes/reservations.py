"""
Reservation endpoints: concurrency-safe inventory holds.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.db.session import get_db
from gatehouse.schemas.reservation import ReservationCreate, ReservationResponse
from gatehouse.services import reservation_service
from gatehouse.services.cache_service import invalidate_event_cache
from gatehouse.core.metrics import reservation_latency
from gatehouse.core.security import get_current_user_id

router = APIRouter(prefix="/reservations", tags=["Reservations"])


@router.post("/", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    data: ReservationCreate,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Hold tickets across one or more tiers of an event.

    All lines succeed or none do. The hold lasts RESERVATION_TTL_MINUTES;
    after that the sweeper returns the units to the tier. Conflicting
    concurrent holds are retried a few times before INVENTORY_CONTENTION.
    """
    with reservation_latency.time():
        reservation = await reservation_service.reserve(
            db,
            event_id=data.event_id,
            requester_id=user_id,
            items=data.items,
            device_id=data.device_id,
            admission_token=data.admission_token,
        )
    await invalidate_event_cache()
    return reservation


@router.get("/{reservation_id}", response_model=ReservationResponse)
async def get_reservation(
    reservation_id: str,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await reservation_service.get_reservation(db, reservation_id, user_id)


@router.delete("/{reservation_id}", response_model=ReservationResponse)
async def cancel_reservation(
    reservation_id: str,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Release a hold early and return its units to the tiers."""
    reservation = await reservation_service.cancel_reservation(db, reservation_id, user_id)
    await invalidate_event_cache()
    return reservation
