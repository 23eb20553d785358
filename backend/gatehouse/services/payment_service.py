"""
Payment confirmation.

Two adapters feed one state transition:

  - pull: the client posts the gateway's (order id, payment id, signature)
    triple after checkout  -> `confirm_client_payment`
  - push: the gateway posts a signed webhook                -> `handle_webhook`

Both end in `confirm_order_payment`, which is idempotent. An order that is
already confirmed, RSVP-confirmed or checked in is a successful no-op, so
the two paths can arrive in any order, any number of times.

Late payment
============
If the sweeper already failed a stale `pending_payment` order (and gave its
inventory back), a payment that lands afterwards takes the safety valve:
re-acquire the same units with guarded decrements. If they are still there
the order is confirmed; otherwise it becomes `refund_required` for an
operator to refund. Money is never silently dropped.
"""

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.core.errors import (
    InvalidRequestError,
    InvalidSignatureError,
    OrderNotFoundError,
    PaymentIntentMismatchError,
    WebhookSignatureError,
)
from gatehouse.core.logging import get_logger
from gatehouse.core.metrics import record_payment_confirmation, record_webhook
from gatehouse.core.state_machine import OrderStateMachine, OrderStatus, SETTLED_STATUSES
from gatehouse.db.base import utcnow
from gatehouse.models.event import TicketTier
from gatehouse.models.order import Order
from gatehouse.models.payment import PaymentIntent, PaymentWebhookEvent
from gatehouse.services import promo_service
from gatehouse.services.interfaces.payment_gateway import PaymentGateway

logger = get_logger(__name__)

CAPTURE_EVENTS = {"payment.captured", "order.paid"}


@dataclass(frozen=True)
class PaymentProof:
    payment_id: str
    source: str  # "client" or "webhook"
    gateway_order_id: Optional[str] = None


@dataclass
class ConfirmationResult:
    order: Order
    outcome: str  # confirmed, already_confirmed, refund_required

    @property
    def changed(self) -> bool:
        return self.outcome != "already_confirmed"


class _InventoryGone(Exception):
    pass


async def _load_order(db: AsyncSession, order_id: str) -> Order:
    result = await db.execute(select(Order).where(Order.id == order_id))
    order = result.scalar_one_or_none()
    if order is None:
        raise OrderNotFoundError()
    return order


async def _reacquire_inventory(db: AsyncSession, tickets: list[dict]) -> bool:
    """Take the order's units again, all or nothing, inside a savepoint."""
    try:
        async with db.begin_nested():
            for line in tickets:
                result = await db.execute(
                    update(TicketTier)
                    .where(TicketTier.id == line["tier_id"], TicketTier.remaining >= line["quantity"])
                    .values(
                        remaining=TicketTier.remaining - line["quantity"],
                        version=TicketTier.version + 1,
                    )
                )
                if result.rowcount == 0:
                    raise _InventoryGone()
    except _InventoryGone:
        return False
    return True


async def _transition(
    db: AsyncSession,
    order_id: str,
    from_status: OrderStatus,
    to_status: OrderStatus,
    proof: PaymentProof,
    now: datetime,
) -> bool:
    OrderStateMachine.validate_transition(from_status, to_status)
    values = {
        "status": to_status.value,
        "payment_id": proof.payment_id,
        "confirmation_source": proof.source,
        "updated_at": now,
    }
    if to_status == OrderStatus.CONFIRMED:
        values["confirmed_at"] = now
    result = await db.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == from_status.value)
        .values(**values)
    )
    return bool(result.rowcount)


async def confirm_order_payment(
    db: AsyncSession,
    order_id: str,
    proof: PaymentProof,
    now: Optional[datetime] = None,
) -> ConfirmationResult:
    """Idempotently move an order to its paid state. Commits."""
    now = now or utcnow()

    # A concurrent writer can move the order between our read and our
    # guarded update; re-read and re-decide a bounded number of times.
    for _ in range(3):
        order = await _load_order(db, order_id)
        current = OrderStatus(order.status)

        if current in SETTLED_STATUSES:
            await db.commit()
            record_payment_confirmation(proof.source, "noop")
            logger.info("order_payment_already_confirmed", order_id=order_id, status=current.value, source=proof.source)
            return ConfirmationResult(order=order, outcome="already_confirmed")

        if current == OrderStatus.REFUND_REQUIRED:
            await db.commit()
            logger.warning("order_payment_after_refund_flag", order_id=order_id, payment_id=proof.payment_id)
            return ConfirmationResult(order=order, outcome="refund_required")

        if current == OrderStatus.PENDING_PAYMENT:
            if not await _transition(db, order_id, current, OrderStatus.CONFIRMED, proof, now):
                await db.rollback()
                continue
            outcome = "confirmed"

        else:  # failed by the sweeper; payment arrived late
            if await _reacquire_inventory(db, order.tickets):
                if not await _transition(db, order_id, current, OrderStatus.CONFIRMED, proof, now):
                    await db.rollback()
                    continue
                outcome = "confirmed"
                logger.info("late_payment_inventory_reacquired", order_id=order_id)
            else:
                if not await _transition(db, order_id, current, OrderStatus.REFUND_REQUIRED, proof, now):
                    await db.rollback()
                    continue
                outcome = "refund_required"
                logger.warning(
                    "late_payment_refund_required",
                    order_id=order_id,
                    payment_id=proof.payment_id,
                    amount=order.total_amount,
                )

        if outcome == "confirmed":
            await promo_service.record_code_usage(db, order)
        if order.payment_intent_id:
            await db.execute(
                update(PaymentIntent)
                .where(PaymentIntent.id == order.payment_intent_id)
                .values(status="paid", updated_at=now)
            )
        await db.commit()

        record_payment_confirmation(proof.source, outcome)
        logger.info(
            "order_payment_confirmed" if outcome == "confirmed" else "order_payment_unfulfillable",
            order_id=order_id,
            payment_id=proof.payment_id,
            source=proof.source,
            outcome=outcome,
        )
        order = await _load_order(db, order_id)
        return ConfirmationResult(order=order, outcome=outcome)

    raise InvalidRequestError("Order state kept changing during confirmation, please retry")


async def confirm_client_payment(
    db: AsyncSession,
    gateway: PaymentGateway,
    order_id: str,
    payment_id: str,
    gateway_order_id: str,
    signature: str,
) -> ConfirmationResult:
    """Pull path: the client relays the gateway's signed payment result."""
    order = await _load_order(db, order_id)

    if not gateway.verify_payment_signature(gateway_order_id, payment_id, signature):
        logger.warning(
            "payment_signature_invalid",
            order_id=order_id,
            payment_id=payment_id,
            security_event=True,
        )
        raise InvalidSignatureError()

    if order.payment_intent_id != gateway_order_id:
        logger.warning(
            "payment_intent_mismatch",
            order_id=order_id,
            gateway_order_id=gateway_order_id,
            security_event=True,
        )
        raise PaymentIntentMismatchError()

    proof = PaymentProof(payment_id=payment_id, source="client", gateway_order_id=gateway_order_id)
    return await confirm_order_payment(db, order_id, proof)


async def _order_id_for_intent(db: AsyncSession, gateway_order_id: Optional[str]) -> Optional[str]:
    if not gateway_order_id:
        return None
    result = await db.execute(select(PaymentIntent.order_id).where(PaymentIntent.id == gateway_order_id))
    return result.scalar_one_or_none()


def _payment_entity(payload: dict) -> dict:
    node = payload
    for key in ("payload", "payment", "entity"):
        node = node.get(key) if isinstance(node, dict) else None
    return node if isinstance(node, dict) else {}


def _text(value) -> Optional[str]:
    if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value):
        return str(value)
    return None


def _minor_units(value) -> Optional[int]:
    """Gateway amounts are integer minor units; anything else never matches an order."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


async def handle_webhook(
    db: AsyncSession,
    gateway: PaymentGateway,
    body: bytes,
    signature: Optional[str],
) -> tuple[str, Optional[str]]:
    """
    Push path. Returns (status, order_id) where status is one of
    processed, already_processed, ignored.
    """
    if not gateway.verify_webhook_signature(body, signature):
        record_webhook("rejected")
        logger.warning("webhook_signature_invalid", security_event=True)
        raise WebhookSignatureError()

    try:
        payload = json.loads(body)
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        record_webhook("ignored")
        logger.warning("webhook_payload_unparseable")
        return "ignored", None

    event_type = _text(payload.get("event"))
    if event_type not in CAPTURE_EVENTS:
        record_webhook("ignored")
        logger.info("webhook_ignored", event_type=event_type)
        return "ignored", None

    entity = _payment_entity(payload)
    payment_id = _text(entity.get("id"))
    gateway_order_id = _text(entity.get("order_id"))
    notes = entity.get("notes") if isinstance(entity.get("notes"), dict) else {}
    if not payment_id:
        record_webhook("ignored")
        logger.warning("webhook_missing_payment_id", event_type=event_type)
        return "ignored", None

    existing = await db.execute(
        select(PaymentWebhookEvent.id).where(
            PaymentWebhookEvent.provider == gateway.provider,
            PaymentWebhookEvent.payment_id == payment_id,
        )
    )
    if existing.scalar_one_or_none() is not None:
        record_webhook("already_processed")
        logger.info("webhook_duplicate", payment_id=payment_id)
        return "already_processed", None

    order_id = _text(notes.get("order_id") or notes.get("orderId"))
    if not order_id:
        order_id = await _order_id_for_intent(db, gateway_order_id)
    if not order_id:
        record_webhook("ignored")
        logger.warning("webhook_order_unresolved", payment_id=payment_id, gateway_order_id=gateway_order_id)
        return "ignored", None

    order = (await db.execute(select(Order).where(Order.id == order_id))).scalar_one_or_none()
    if order is None:
        record_webhook("ignored")
        logger.warning("webhook_unknown_order", order_id=order_id, payment_id=payment_id)
        return "ignored", None

    amount = entity.get("amount")
    if amount is not None and _minor_units(amount) != order.total_amount:
        record_webhook("ignored")
        logger.warning(
            "webhook_amount_mismatch",
            order_id=order_id,
            expected=order.total_amount,
            received=amount,
            security_event=True,
        )
        return "ignored", order_id

    proof = PaymentProof(payment_id=payment_id, source="webhook", gateway_order_id=gateway_order_id)
    await confirm_order_payment(db, order_id, proof)

    db.add(PaymentWebhookEvent(
        provider=gateway.provider,
        event_type=event_type,
        payment_id=payment_id,
        order_id=order_id,
        payload_hash=hashlib.sha256(body).hexdigest(),
    ))
    try:
        await db.commit()
    except IntegrityError:
        # Concurrent redelivery recorded it first; confirmation was idempotent
        await db.rollback()
        record_webhook("already_processed")
        return "already_processed", order_id

    record_webhook("processed")
    logger.info("webhook_processed", order_id=order_id, payment_id=payment_id, event_type=event_type)
    return "processed", order_id
