"""
Reservation manager: time-boxed holds on tier inventory.

CONCURRENCY STRATEGY: Optimistic Locking with Retry
====================================================

Problem:
  Two buyers try to take the last unit of a tier at the same moment. Both
  read remaining=1, both decrement, both succeed. Result: oversell.

Solution:
  Each tier row carries a `version` counter. For every item in the request:

  1. Read the tier's current `remaining` and `version`
  2. UPDATE ticket_tiers SET remaining = remaining - :q, version = version + 1
     WHERE id = :tier_id AND version = :v AND remaining >= :q
  3. rowcount == 0 means somebody else moved the row: roll back every
     decrement made so far in this call and start the whole attempt again

  After INVENTORY_MAX_RETRIES conflicting attempts we give up with
  INVENTORY_CONTENTION rather than spin. All decrements of one call and the
  reservation insert share a single transaction, so a multi-tier request is
  all-or-nothing. The CHECK constraint `remaining >= 0` is the final net.

Restoring inventory (expiry, cancellation, failed payment) is a single
capped increment, `remaining = min(remaining + q, capacity)`, applied only by
whoever wins the guarded status transition of the owning document. Expiry and
cancellation therefore restore a hold exactly once.
"""

from datetime import datetime, timedelta
from typing import Optional, Sequence

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.core.config import get_settings
from gatehouse.core.errors import (
    AdmissionRequiredError,
    ConflictError,
    InsufficientInventoryError,
    InvalidQuantityError,
    InventoryContentionError,
    ReservationForbiddenError,
    ReservationNotFoundError,
    SalesClosedError,
    TierNotFoundError,
)
from gatehouse.core.logging import get_logger
from gatehouse.core.metrics import record_inventory_retry, record_reservation_attempt
from gatehouse.db.base import utcnow
from gatehouse.models.event import TicketTier
from gatehouse.models.reservation import Reservation, ReservationStatus
from gatehouse.services import event_service, queue_service
from gatehouse.services.pricing_engine import effective_unit_price, merge_lines

logger = get_logger(__name__)
settings = get_settings()


async def reserve(
    db: AsyncSession,
    event_id: str,
    requester_id: int,
    items: Sequence,
    device_id: Optional[str] = None,
    admission_token: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Reservation:
    """Hold inventory for every requested line, or for none of them."""
    now = now or utcnow()
    lines = merge_lines(items)
    max_attempts = settings.INVENTORY_MAX_RETRIES

    for attempt in range(1, max_attempts + 1):
        event = await event_service.get_event(db, event_id)
        tiers = {tier.id: tier for tier in await event_service.get_tiers(db, event_id)}

        snapshot = []
        for line in lines:
            tier = tiers.get(line.tier_id)
            if tier is None:
                raise TierNotFoundError(f"Tier {line.tier_id} not found for this event")
            if tier.sales_end is not None and now >= tier.sales_end:
                raise SalesClosedError(f"Sales for {tier.name} have ended")
            if line.quantity < tier.min_per_order or line.quantity > tier.max_per_order:
                raise InvalidQuantityError(
                    f"{tier.name}: quantity must be between {tier.min_per_order} and {tier.max_per_order}"
                )
            if tier.remaining < line.quantity:
                record_reservation_attempt("insufficient")
                logger.warning(
                    "reservation_failed_insufficient",
                    event_id=event_id,
                    tier_id=tier.id,
                    requested=line.quantity,
                    remaining=tier.remaining,
                )
                raise InsufficientInventoryError(
                    f"Only {tier.remaining} tickets left for {tier.name}",
                    tier_id=tier.id,
                )
            unit_price, _ = effective_unit_price(tier, now)
            snapshot.append({
                "tier_id": tier.id,
                "tier_name": tier.name,
                "entry_type": tier.entry_type,
                "quantity": line.quantity,
                "unit_price": 0 if event.is_rsvp else unit_price,
                "version": tier.version,
            })

        queue_ticket_id = None
        if event.queue_enabled:
            queue_ticket_id = await queue_service.verify_admission(
                db, event_id, admission_token, requester_id, now=now
            )

        conflict_tier = None
        for item in snapshot:
            result = await db.execute(
                update(TicketTier)
                .where(
                    TicketTier.id == item["tier_id"],
                    TicketTier.version == item["version"],
                    TicketTier.remaining >= item["quantity"],
                )
                .values(
                    remaining=TicketTier.remaining - item["quantity"],
                    version=TicketTier.version + 1,
                )
            )
            if result.rowcount == 0:
                conflict_tier = item["tier_id"]
                break

        if conflict_tier is not None:
            logger.info(
                "inventory_version_conflict",
                event_id=event_id,
                tier_id=conflict_tier,
                attempt=attempt,
            )
            record_inventory_retry()
            await db.rollback()
            continue

        if queue_ticket_id is not None:
            consumed = await queue_service.consume_admission(db, queue_ticket_id, now=now)
            if not consumed:
                await db.rollback()
                raise AdmissionRequiredError("Queue admission was already used or has expired")

        reservation = Reservation(
            event_id=event_id,
            requester_id=requester_id,
            device_id=device_id,
            items=[{k: v for k, v in item.items() if k != "version"} for item in snapshot],
            status=ReservationStatus.ACTIVE.value,
            expires_at=now + timedelta(minutes=settings.RESERVATION_TTL_MINUTES),
            queue_ticket_id=queue_ticket_id,
        )
        db.add(reservation)
        await db.commit()

        record_reservation_attempt("success")
        logger.info(
            "reservation_created",
            reservation_id=reservation.id,
            event_id=event_id,
            requester_id=requester_id,
            units=sum(item["quantity"] for item in snapshot),
            attempt=attempt,
        )
        return reservation

    record_reservation_attempt("contention")
    logger.warning("reservation_contention", event_id=event_id, attempts=max_attempts)
    raise InventoryContentionError()


async def get_reservation(
    db: AsyncSession,
    reservation_id: str,
    requester_id: Optional[int] = None,
) -> Reservation:
    result = await db.execute(select(Reservation).where(Reservation.id == reservation_id))
    reservation = result.scalar_one_or_none()
    if reservation is None:
        raise ReservationNotFoundError()
    if requester_id is not None and reservation.requester_id != requester_id:
        raise ReservationForbiddenError()
    return reservation


async def restore_tiers(db: AsyncSession, items: Sequence[dict]) -> None:
    """Give held units back, never exceeding capacity. Caller owns the transaction."""
    for item in items:
        quantity = int(item["quantity"])
        await db.execute(
            update(TicketTier)
            .where(TicketTier.id == item["tier_id"])
            .values(
                remaining=case(
                    (TicketTier.remaining + quantity > TicketTier.capacity, TicketTier.capacity),
                    else_=TicketTier.remaining + quantity,
                ),
                version=TicketTier.version + 1,
            )
        )


async def release_reservation(
    db: AsyncSession,
    reservation_id: str,
    items: Sequence[dict],
    to_status: ReservationStatus,
    now: Optional[datetime] = None,
) -> bool:
    """
    Move an active reservation to `to_status` and restore its inventory.

    Returns False (and changes nothing) if the reservation already left the
    active state. Commits on success.
    """
    now = now or utcnow()
    conditions = [
        Reservation.id == reservation_id,
        Reservation.status == ReservationStatus.ACTIVE.value,
    ]
    if to_status == ReservationStatus.EXPIRED:
        conditions.append(Reservation.expires_at <= now)

    result = await db.execute(
        update(Reservation)
        .where(*conditions)
        .values(status=to_status.value, updated_at=now)
    )
    if result.rowcount == 0:
        await db.rollback()
        return False

    await restore_tiers(db, items)
    await db.commit()
    return True


async def cancel_reservation(db: AsyncSession, reservation_id: str, requester_id: int) -> Reservation:
    """Owner gives up a hold before it expires; inventory comes back at once."""
    reservation = await get_reservation(db, reservation_id, requester_id)

    if reservation.status == ReservationStatus.CANCELLED.value:
        return reservation
    if reservation.status != ReservationStatus.ACTIVE.value:
        raise ConflictError(f"Reservation is {reservation.status} and can no longer be cancelled")

    released = await release_reservation(
        db, reservation.id, reservation.items, ReservationStatus.CANCELLED
    )
    if not released:
        await db.refresh(reservation)
        raise ConflictError(f"Reservation is {reservation.status} and can no longer be cancelled")

    logger.info(
        "reservation_cancelled",
        reservation_id=reservation.id,
        event_id=reservation.event_id,
        units_restored=sum(item["quantity"] for item in reservation.items),
    )
    return reservation
