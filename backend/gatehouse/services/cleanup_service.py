"""
Cleanup sweeper: reclaims inventory from abandoned holds and orders.

Passes, each bounded by SWEEP_BATCH_SIZE:
  1. active reservations past `expires_at`      -> expired, units restored
  2. pending_payment orders past the grace time -> failed, units restored
  3. idle or overdue queue tickets              -> expired / abandoned

Every document is handled in its own transaction with a guarded UPDATE on
the expected prior status. Overlapping sweeps, or a sweep racing a checkout
or a payment confirmation, can only ever have one winner per document, and
only the winner restores inventory. A failure on one document is logged and
rolled back without stopping the rest of the batch.
"""

import asyncio
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gatehouse.core.config import get_settings
from gatehouse.core.logging import get_logger
from gatehouse.core.metrics import record_sweep
from gatehouse.core.state_machine import OrderStateMachine, OrderStatus
from gatehouse.db.base import utcnow
from gatehouse.models.order import Order
from gatehouse.models.reservation import Reservation, ReservationStatus
from gatehouse.services import queue_service, reservation_service

logger = get_logger(__name__)
settings = get_settings()


@dataclass
class SweepReport:
    reservations_expired: int = 0
    orders_failed: int = 0
    queue_tickets_recycled: int = 0
    errors: int = 0


async def expire_stale_reservations(
    db: AsyncSession,
    now: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> tuple[int, int]:
    """Returns (expired, errors)."""
    now = now or utcnow()
    result = await db.execute(
        select(Reservation.id, Reservation.event_id, Reservation.items)
        .where(
            Reservation.status == ReservationStatus.ACTIVE.value,
            Reservation.expires_at <= now,
        )
        .order_by(Reservation.expires_at.asc())
        .limit(limit or settings.SWEEP_BATCH_SIZE)
    )
    candidates = result.all()
    await db.commit()

    expired = errors = 0
    for reservation_id, event_id, items in candidates:
        try:
            released = await reservation_service.release_reservation(
                db, reservation_id, items, ReservationStatus.EXPIRED, now=now
            )
        except Exception:
            await db.rollback()
            errors += 1
            logger.exception("sweep_reservation_error", reservation_id=reservation_id)
            continue
        if released:
            expired += 1
            logger.info(
                "sweep_reservation_expired",
                reservation_id=reservation_id,
                event_id=event_id,
                units_restored=sum(item["quantity"] for item in items),
            )
    return expired, errors


async def fail_stale_orders(
    db: AsyncSession,
    now: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> tuple[int, int]:
    """Returns (failed, errors)."""
    now = now or utcnow()
    cutoff = now - timedelta(minutes=settings.PENDING_ORDER_GRACE_MINUTES)
    OrderStateMachine.validate_transition(OrderStatus.PENDING_PAYMENT, OrderStatus.FAILED)

    result = await db.execute(
        select(Order.id, Order.event_id, Order.tickets)
        .where(
            Order.status == OrderStatus.PENDING_PAYMENT.value,
            Order.created_at <= cutoff,
        )
        .order_by(Order.created_at.asc())
        .limit(limit or settings.SWEEP_BATCH_SIZE)
    )
    candidates = result.all()
    await db.commit()

    failed = errors = 0
    for order_id, event_id, tickets in candidates:
        try:
            changed = await db.execute(
                update(Order)
                .where(Order.id == order_id, Order.status == OrderStatus.PENDING_PAYMENT.value)
                .values(status=OrderStatus.FAILED.value, failed_at=now, updated_at=now)
            )
            if changed.rowcount == 0:
                await db.rollback()
                continue
            await reservation_service.restore_tiers(db, tickets)
            await db.commit()
        except Exception:
            await db.rollback()
            errors += 1
            logger.exception("sweep_order_error", order_id=order_id)
            continue
        failed += 1
        logger.info(
            "sweep_order_failed",
            order_id=order_id,
            event_id=event_id,
            units_restored=sum(line["quantity"] for line in tickets),
        )
    return failed, errors


async def run_sweep(db: AsyncSession, now: Optional[datetime] = None) -> SweepReport:
    now = now or utcnow()
    report = SweepReport()

    report.reservations_expired, errors = await expire_stale_reservations(db, now=now)
    report.errors += errors
    report.orders_failed, errors = await fail_stale_orders(db, now=now)
    report.errors += errors
    try:
        report.queue_tickets_recycled = await queue_service.apply_timeouts(db, now=now)
    except Exception:
        await db.rollback()
        report.errors += 1
        logger.exception("sweep_queue_error")

    record_sweep("reservation", report.reservations_expired)
    record_sweep("order", report.orders_failed)
    record_sweep("queue_ticket", report.queue_tickets_recycled)
    logger.info("sweep_completed", **asdict(report))
    return report


async def sweeper_loop(
    session_factory: async_sessionmaker[AsyncSession],
    interval_seconds: Optional[int] = None,
) -> None:
    """Run `run_sweep` forever on a fixed schedule. Cancel the task to stop."""
    interval = interval_seconds or settings.SWEEP_INTERVAL_SECONDS
    logger.info("sweeper_started", interval_seconds=interval)
    while True:
        try:
            async with session_factory() as db:
                await run_sweep(db)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("sweep_failed")
        await asyncio.sleep(interval)
