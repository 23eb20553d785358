"""
Event catalog: event + tier creation, fresh reads, listings, promo setup.

Reads here always hit the database. The reservation and pricing paths call
`get_event` / `get_tiers` directly so they see the live tier counters.
"""

from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.core.config import get_settings
from gatehouse.core.errors import ConflictError, EventNotFoundError, ForbiddenError, InvalidRequestError
from gatehouse.core.logging import get_logger
from gatehouse.models.event import Event, TicketTier
from gatehouse.models.promo import PromoCode, PromoterCode
from gatehouse.schemas.event import EventCreate, PromoCodeCreate, PromoterCodeCreate

logger = get_logger(__name__)
settings = get_settings()


async def create_event(db: AsyncSession, event_data: EventCreate, organizer_id: int) -> tuple[Event, list[TicketTier]]:
    """Create an event with its tiers at full availability."""
    if event_data.date <= datetime.now(timezone.utc):
        raise InvalidRequestError("Event date must be in the future")

    event = Event(
        title=event_data.title,
        description=event_data.description,
        date=event_data.date,
        location=event_data.location,
        organizer_id=organizer_id,
        currency=event_data.currency.upper(),
        is_rsvp=event_data.is_rsvp,
        queue_enabled=event_data.queue_enabled,
        promoter_discounts_enabled=event_data.promoter_discounts_enabled,
        promoter_discount_type=event_data.promoter_discount_type,
        promoter_discount_value=event_data.promoter_discount_value,
        platform_fee_type=event_data.platform_fee_type,
        platform_fee_value=event_data.platform_fee_value,
        payment_fee_bps=event_data.payment_fee_bps,
        fee_tax_bps=event_data.fee_tax_bps,
    )
    db.add(event)
    await db.flush()

    tiers = []
    for position, tier_data in enumerate(event_data.tiers):
        tier = TicketTier(
            event_id=event.id,
            name=tier_data.name,
            entry_type=tier_data.entry_type,
            price=0 if event_data.is_rsvp else tier_data.price,
            capacity=tier_data.capacity,
            remaining=tier_data.capacity,
            min_per_order=tier_data.min_per_order or settings.DEFAULT_MIN_PER_ORDER,
            max_per_order=tier_data.max_per_order or settings.DEFAULT_MAX_PER_ORDER,
            sales_end=tier_data.sales_end,
            sort_order=position,
            promoter_enabled=tier_data.promoter_enabled,
            promoter_discount_type=tier_data.promoter_discount_type,
            promoter_discount_value=tier_data.promoter_discount_value,
            scheduled_prices=(
                [p.model_dump(mode="json") for p in tier_data.scheduled_prices]
                if tier_data.scheduled_prices else None
            ),
        )
        db.add(tier)
        tiers.append(tier)

    await db.commit()

    logger.info(
        "event_created",
        event_id=event.id,
        title=event.title,
        tiers=len(tiers),
        capacity=sum(t.capacity for t in tiers),
    )
    return event, tiers


async def get_event(db: AsyncSession, event_id: str) -> Event:
    result = await db.execute(select(Event).where(Event.id == event_id))
    event = result.scalar_one_or_none()

    if not event:
        raise EventNotFoundError(f"Event {event_id} not found")
    return event


async def get_tiers(db: AsyncSession, event_id: str) -> list[TicketTier]:
    result = await db.execute(
        select(TicketTier)
        .where(TicketTier.event_id == event_id)
        .order_by(TicketTier.sort_order.asc())
    )
    return list(result.scalars().all())


async def get_tiers_for_events(db: AsyncSession, event_ids: Iterable[str]) -> dict[str, list[TicketTier]]:
    ids = list(event_ids)
    grouped: dict[str, list[TicketTier]] = {event_id: [] for event_id in ids}
    if not ids:
        return grouped
    result = await db.execute(
        select(TicketTier)
        .where(TicketTier.event_id.in_(ids))
        .order_by(TicketTier.sort_order.asc())
    )
    for tier in result.scalars().all():
        grouped[tier.event_id].append(tier)
    return grouped


async def list_events(db: AsyncSession, page: int = 1, page_size: int = 20, upcoming_only: bool = True):
    """One page of events, soonest first, plus the total across all pages."""
    filters = [Event.date >= datetime.now(timezone.utc)] if upcoming_only else []

    total = (await db.execute(select(func.count(Event.id)).where(*filters))).scalar_one()
    page_rows = await db.execute(
        select(Event).where(*filters).order_by(Event.date, Event.id).limit(page_size).offset((page - 1) * page_size)
    )
    return list(page_rows.scalars()), total


async def _require_organizer(db: AsyncSession, event_id: str, user_id: int) -> Event:
    event = await get_event(db, event_id)
    if event.organizer_id != user_id:
        raise ForbiddenError("Only the event organizer can manage codes")
    return event


async def create_promo_code(
    db: AsyncSession,
    event_id: str,
    data: PromoCodeCreate,
    user_id: int,
) -> PromoCode:
    await _require_organizer(db, event_id, user_id)

    if data.tier_ids:
        known = {tier.id for tier in await get_tiers(db, event_id)}
        unknown = [tier_id for tier_id in data.tier_ids if tier_id not in known]
        if unknown:
            raise InvalidRequestError(f"Unknown tier ids: {', '.join(unknown)}")

    promo = PromoCode(
        event_id=event_id,
        code=data.code.strip().upper(),
        discount_type=data.discount_type,
        discount_value=data.discount_value,
        is_active=data.is_active,
        starts_at=data.starts_at,
        ends_at=data.ends_at,
        max_redemptions=data.max_redemptions,
        max_per_user=data.max_per_user,
        tier_ids=data.tier_ids,
    )
    db.add(promo)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Promo code {promo.code} already exists for this event")

    logger.info("promo_code_created", event_id=event_id, code=promo.code, type=promo.discount_type)
    return promo


async def create_promoter_code(
    db: AsyncSession,
    event_id: str,
    data: PromoterCodeCreate,
    user_id: int,
) -> PromoterCode:
    await _require_organizer(db, event_id, user_id)

    promoter = PromoterCode(
        event_id=event_id,
        code=data.code.strip().upper(),
        promoter_name=data.promoter_name,
        expires_at=data.expires_at,
        max_uses=data.max_uses,
    )
    db.add(promoter)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Promoter code {promoter.code} already exists for this event")

    logger.info("promoter_code_created", event_id=event_id, code=promoter.code)
    return promoter
