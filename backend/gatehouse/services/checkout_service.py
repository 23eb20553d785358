"""
Checkout orchestrator: reservation -> order -> payment intent.

IDEMPOTENCY
===========
A client that times out on checkout will call it again with the same
reservation id. Three layers make that safe:

  1. Lookup-before-create: an existing order for the reservation is returned
     as-is (and given a payment intent if it still lacks one). This check runs
     before the reservation status check, because a successful first attempt
     has already consumed the reservation.
  2. The reservation moves active -> consumed with a guarded UPDATE. Of two
     racing calls only one sees rowcount == 1.
  3. `orders.reservation_id` is UNIQUE. A loser that somehow got past (2)
     fails the insert, rolls back and returns the winner's order.

UPSTREAM FAILURE
================
The order is committed in `pending_payment` before the gateway is called.
If intent creation fails the order stays there, the client gets
PAYMENT_GATEWAY_UNAVAILABLE, and a retry re-enters through (1). Nothing is
left half-written: the intent reference is attached with a guarded
`payment_intent_id IS NULL` update.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.core.errors import PaymentGatewayError, ReservationExpiredError
from gatehouse.core.logging import get_logger
from gatehouse.core.metrics import record_checkout
from gatehouse.core.state_machine import OrderStatus
from gatehouse.db.base import utcnow
from gatehouse.models.order import Order
from gatehouse.models.payment import PaymentIntent
from gatehouse.models.reservation import Reservation, ReservationStatus
from gatehouse.services import event_service, promo_service, reservation_service
from gatehouse.services.interfaces.payment_gateway import PaymentGateway
from gatehouse.services.pricing_engine import PriceBreakdown, price_order

logger = get_logger(__name__)


@dataclass
class CheckoutResult:
    order: Order
    requires_payment: bool
    payment_intent: Optional[PaymentIntent]
    pricing: dict
    created: bool


def pricing_from_order(order: Order) -> dict:
    """Public price breakdown as frozen on the order."""
    return {
        "items": order.tickets,
        "subtotal": order.subtotal,
        "discounts": order.discounts or [],
        "discount_total": order.discount_total,
        "fees": order.fees or [],
        "fee_total": order.fee_total,
        "grand_total": order.total_amount,
        "currency": order.currency,
        "is_free": order.total_amount == 0,
        "promo_error": None,
    }


async def find_order_for_reservation(db: AsyncSession, reservation_id: str) -> Optional[Order]:
    result = await db.execute(select(Order).where(Order.reservation_id == reservation_id))
    return result.scalar_one_or_none()


async def get_order(db: AsyncSession, order_id: str) -> Optional[Order]:
    result = await db.execute(select(Order).where(Order.id == order_id))
    return result.scalar_one_or_none()


async def _load_intent(db: AsyncSession, intent_id: str) -> Optional[PaymentIntent]:
    result = await db.execute(select(PaymentIntent).where(PaymentIntent.id == intent_id))
    return result.scalar_one_or_none()


async def ensure_payment_intent(db: AsyncSession, gateway: PaymentGateway, order: Order) -> PaymentIntent:
    """Return the order's intent, creating it at the gateway if missing."""
    if order.payment_intent_id:
        intent = await _load_intent(db, order.payment_intent_id)
        if intent is not None:
            return intent

    order_id = order.id
    try:
        gateway_intent = await gateway.create_intent(
            amount=order.total_amount,
            currency=order.currency,
            receipt=order_id,
            notes={"order_id": order_id, "event_id": order.event_id},
        )
    except PaymentGatewayError:
        record_checkout("gateway_error")
        logger.warning("payment_intent_failed", order_id=order_id, amount=order.total_amount)
        raise

    intent = PaymentIntent(
        id=gateway_intent.id,
        order_id=order_id,
        provider=gateway_intent.provider,
        amount=gateway_intent.amount,
        currency=gateway_intent.currency,
        receipt=gateway_intent.receipt,
        status=gateway_intent.status,
        notes=gateway_intent.notes,
    )
    db.add(intent)
    result = await db.execute(
        update(Order)
        .where(Order.id == order_id, Order.payment_intent_id.is_(None))
        .values(payment_intent_id=intent.id)
    )
    if result.rowcount == 0:
        # A concurrent retry attached its intent first; use that one
        await db.rollback()
        order = await get_order(db, order_id)
        existing = await _load_intent(db, order.payment_intent_id)
        logger.info("payment_intent_race_lost", order_id=order_id, intent_id=existing.id)
        return existing

    await db.commit()
    logger.info("payment_intent_attached", order_id=order_id, intent_id=intent.id, amount=intent.amount)
    return intent


async def _resume(db: AsyncSession, gateway: PaymentGateway, order: Order) -> CheckoutResult:
    requires_payment = order.status == OrderStatus.PENDING_PAYMENT.value
    intent = None
    if requires_payment:
        intent = await ensure_payment_intent(db, gateway, order)
        order = await get_order(db, order.id)
    elif order.payment_intent_id:
        intent = await _load_intent(db, order.payment_intent_id)
    record_checkout("existing")
    return CheckoutResult(
        order=order,
        requires_payment=requires_payment,
        payment_intent=intent,
        pricing=pricing_from_order(order),
        created=False,
    )


def _initial_status(event, pricing: PriceBreakdown) -> OrderStatus:
    if event.is_rsvp:
        return OrderStatus.RSVP_CONFIRMED
    if pricing.grand_total == 0:
        return OrderStatus.CONFIRMED
    return OrderStatus.PENDING_PAYMENT


async def checkout(
    db: AsyncSession,
    gateway: PaymentGateway,
    reservation_id: str,
    requester_id: int,
    buyer: Optional[dict] = None,
    promo_code: Optional[str] = None,
    promoter_code: Optional[str] = None,
    now: Optional[datetime] = None,
) -> CheckoutResult:
    now = now or utcnow()
    buyer = buyer or {}

    reservation = await reservation_service.get_reservation(db, reservation_id, requester_id)

    existing = await find_order_for_reservation(db, reservation_id)
    if existing is not None:
        logger.info("checkout_existing_order", reservation_id=reservation_id, order_id=existing.id)
        return await _resume(db, gateway, existing)

    if reservation.status != ReservationStatus.ACTIVE.value or reservation.expires_at <= now:
        raise ReservationExpiredError()

    # Fresh event read: fee, RSVP and promoter settings may have changed
    event = await event_service.get_event(db, reservation.event_id)
    pricing = await price_order(
        db,
        event,
        reservation.items,
        promo_code=promo_code,
        promoter_code=promoter_code,
        user_id=requester_id,
        now=now,
    )
    status = _initial_status(event, pricing)
    settled = status != OrderStatus.PENDING_PAYMENT

    consumed = await db.execute(
        update(Reservation)
        .where(
            Reservation.id == reservation_id,
            Reservation.status == ReservationStatus.ACTIVE.value,
            Reservation.expires_at > now,
        )
        .values(status=ReservationStatus.CONSUMED.value, updated_at=now)
    )
    if consumed.rowcount == 0:
        await db.rollback()
        existing = await find_order_for_reservation(db, reservation_id)
        if existing is not None:
            return await _resume(db, gateway, existing)
        raise ReservationExpiredError()

    order = Order(
        reservation_id=reservation_id,
        event_id=event.id,
        buyer_id=requester_id,
        buyer_name=buyer.get("name"),
        buyer_email=buyer.get("email"),
        buyer_phone=buyer.get("phone"),
        tickets=pricing.items,
        subtotal=pricing.subtotal,
        discounts=pricing.discounts,
        discount_total=pricing.discount_total,
        fees=pricing.fees,
        fee_total=pricing.fee_total,
        total_amount=pricing.grand_total,
        currency=pricing.currency,
        is_rsvp=event.is_rsvp,
        status=status.value,
        confirmation_source=("rsvp" if event.is_rsvp else "free") if settled else None,
        confirmed_at=now if settled else None,
        promo_code_id=pricing.promo.id if pricing.promo else None,
        promo_code=pricing.promo.code if pricing.promo else None,
        promoter_code_id=pricing.promoter.id if pricing.promoter else None,
        promoter_code=pricing.promoter.code if pricing.promoter else None,
        audit_ledger=pricing.audit_ledger,
    )
    db.add(order)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        existing = await find_order_for_reservation(db, reservation_id)
        if existing is None:
            raise
        logger.info("checkout_race_lost", reservation_id=reservation_id, order_id=existing.id)
        return await _resume(db, gateway, existing)

    if settled:
        await promo_service.record_code_usage(db, order)
    await db.commit()

    logger.info(
        "order_created",
        order_id=order.id,
        reservation_id=reservation_id,
        event_id=event.id,
        status=order.status,
        total=order.total_amount,
    )

    intent = None
    if not settled:
        intent = await ensure_payment_intent(db, gateway, order)
        order = await get_order(db, order.id)
        record_checkout("created")
    else:
        record_checkout("rsvp" if event.is_rsvp else "free")

    return CheckoutResult(
        order=order,
        requires_payment=not settled,
        payment_intent=intent,
        pricing=pricing.public_dict(),
        created=True,
    )
