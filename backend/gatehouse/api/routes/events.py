"""
Catalog endpoints and organizer code management.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.db.session import get_db
from gatehouse.schemas.event import (
    EventCreate,
    EventListResponse,
    EventResponse,
    PromoCodeCreate,
    PromoCodeResponse,
    PromoterCodeCreate,
    PromoterCodeResponse,
    TierResponse,
)
from gatehouse.services import event_service
from gatehouse.services.cache_service import get_cached_events, set_cached_events, invalidate_event_cache
from gatehouse.core.security import get_current_user_id
from gatehouse.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/events", tags=["Events"])


def _event_response(event, tiers) -> EventResponse:
    data = EventResponse.model_validate(event).model_dump(exclude={"tiers"})
    return EventResponse(**data, tiers=[TierResponse.model_validate(tier) for tier in tiers])


@router.post("/", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
async def create_event_endpoint(
    event_data: EventCreate,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Create an event and its ticket tiers. The caller becomes the organizer."""
    event, tiers = await event_service.create_event(db, event_data, user_id)
    await invalidate_event_cache()
    return _event_response(event, tiers)


@router.get("/", response_model=EventListResponse)
async def list_events_endpoint(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    upcoming_only: bool = Query(True),
    db: AsyncSession = Depends(get_db),
):
    """
    Paginated catalog. Pages may be served from the cache, so their
    remaining counts can trail the live counters by up to the cache TTL.
    """
    cached = await get_cached_events(page, page_size, upcoming_only)
    if cached is not None:
        return EventListResponse(**{**cached, "cached": True})

    events, total = await event_service.list_events(db, page, page_size, upcoming_only)
    tiers_by_event = await event_service.get_tiers_for_events(db, [e.id for e in events])
    listing = EventListResponse(
        events=[_event_response(e, tiers_by_event.get(e.id, [])) for e in events],
        total=total,
        page=page,
        page_size=page_size,
        cached=False,
    )
    await set_cached_events(page, page_size, upcoming_only, listing.model_dump(mode="json"))
    logger.debug("catalog_page_built", page=page, events=len(events), total=total)
    return listing


@router.get("/{event_id}", response_model=EventResponse)
async def get_event_endpoint(
    event_id: str,
    db: AsyncSession = Depends(get_db),
):
    """Get a single event with live tier availability. Not cached."""
    event = await event_service.get_event(db, event_id)
    tiers = await event_service.get_tiers(db, event_id)
    return _event_response(event, tiers)


@router.post(
    "/{event_id}/promo-codes",
    response_model=PromoCodeResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_promo_code_endpoint(
    event_id: str,
    data: PromoCodeCreate,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Organizer-only."""
    return await event_service.create_promo_code(db, event_id, data, user_id)


@router.post(
    "/{event_id}/promoter-codes",
    response_model=PromoterCodeResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_promoter_code_endpoint(
    event_id: str,
    data: PromoterCodeCreate,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Organizer-only."""
    return await event_service.create_promoter_code(db, event_id, data, user_id)
