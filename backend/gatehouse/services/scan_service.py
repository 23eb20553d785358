"""
Admission scanner: validates a credential at the door exactly once.

CONCURRENCY STRATEGY: Unique key on the valid scan
==================================================

Two staff members scan the same ticket at the same moment. Both read "no
prior scan" and both would let the holder in.

`scan_records.valid_key` is UNIQUE and set to "order_id:ticket_id". The
insert runs in a savepoint; the scanner that loses the race gets an
IntegrityError and reports `already_scanned` with the winner's record.
The read of a prior scan before the insert is only there to give the
operator a friendly answer without relying on the constraint.

Every attempt, valid or not, lands in `scan_attempts` and in the log.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from fastapi import status
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.core.logging import get_logger
from gatehouse.core.metrics import record_scan
from gatehouse.core.state_machine import ADMITTABLE_STATUSES, OrderStateMachine, OrderStatus
from gatehouse.db.base import utcnow
from gatehouse.models.order import Order
from gatehouse.models.scan import BoundDevice, ScanAttempt, ScanRecord, ScanResult
from gatehouse.services.credentials import AdmissionPayload, parse_payload, verify_payload

logger = get_logger(__name__)

RESULT_MESSAGES = {
    ScanResult.VALID: "Entry allowed",
    ScanResult.ALREADY_SCANNED: "Ticket has already been scanned",
    ScanResult.INVALID: "Invalid ticket",
    ScanResult.WRONG_EVENT: "Ticket is for a different event",
    ScanResult.NOT_CONFIRMED: "Order is not confirmed",
    ScanResult.NOT_FOUND: "Order not found",
    ScanResult.DEVICE_INVALID: "Scanner device is not registered for this venue",
}

RESULT_STATUS_CODES = {
    ScanResult.VALID: status.HTTP_200_OK,
    ScanResult.ALREADY_SCANNED: status.HTTP_409_CONFLICT,
    ScanResult.INVALID: status.HTTP_400_BAD_REQUEST,
    ScanResult.WRONG_EVENT: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ScanResult.NOT_CONFIRMED: status.HTTP_412_PRECONDITION_FAILED,
    ScanResult.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ScanResult.DEVICE_INVALID: status.HTTP_403_FORBIDDEN,
}


@dataclass
class ScanOutcome:
    result: str
    payload: Optional[AdmissionPayload] = None
    order: Optional[Order] = None
    record: Optional[ScanRecord] = None
    previous: Optional[ScanRecord] = None
    reason: Optional[str] = None

    @property
    def message(self) -> str:
        return RESULT_MESSAGES[self.result]

    @property
    def status_code(self) -> int:
        return RESULT_STATUS_CODES[self.result]


def valid_key(order_id: str, ticket_id: str) -> str:
    return f"{order_id}:{ticket_id}"


async def _device_is_bound(db: AsyncSession, device_id: str, venue_id: str, now: datetime) -> bool:
    result = await db.execute(select(BoundDevice).where(BoundDevice.id == device_id))
    device = result.scalar_one_or_none()
    if device is None or not device.is_active or device.venue_id != venue_id:
        return False
    device.last_active_at = now
    return True


async def _prior_valid_scan(db: AsyncSession, order_id: str, ticket_id: str) -> Optional[ScanRecord]:
    result = await db.execute(
        select(ScanRecord).where(ScanRecord.valid_key == valid_key(order_id, ticket_id))
    )
    return result.scalar_one_or_none()


async def _evaluate(
    db: AsyncSession,
    raw_payload,
    event_id: Optional[str],
    device_id: Optional[str],
    venue_id: Optional[str],
    staff_id: Optional[int],
    staff_name: Optional[str],
    now: datetime,
) -> ScanOutcome:
    payload = parse_payload(raw_payload)
    if payload is None:
        return ScanOutcome(ScanResult.INVALID, reason="malformed_payload")
    if not verify_payload(payload, now=now):
        logger.warning(
            "scan_signature_invalid",
            order_id=payload.order_id,
            ticket_id=payload.ticket_id,
            device_id=device_id,
            security_event=True,
        )
        return ScanOutcome(ScanResult.INVALID, payload=payload, reason="signature_mismatch")

    if event_id and payload.event_id != event_id:
        return ScanOutcome(ScanResult.WRONG_EVENT, payload=payload)

    if device_id and venue_id and not await _device_is_bound(db, device_id, venue_id, now):
        return ScanOutcome(ScanResult.DEVICE_INVALID, payload=payload)

    order = (await db.execute(select(Order).where(Order.id == payload.order_id))).scalar_one_or_none()
    if order is None:
        return ScanOutcome(ScanResult.NOT_FOUND, payload=payload)
    if OrderStatus(order.status) not in ADMITTABLE_STATUSES:
        return ScanOutcome(ScanResult.NOT_CONFIRMED, payload=payload, order=order, reason=order.status)

    previous = await _prior_valid_scan(db, payload.order_id, payload.ticket_id)
    if previous is not None:
        return ScanOutcome(ScanResult.ALREADY_SCANNED, payload=payload, order=order, previous=previous)

    record = ScanRecord(
        valid_key=valid_key(payload.order_id, payload.ticket_id),
        order_id=payload.order_id,
        ticket_id=payload.ticket_id,
        event_id=payload.event_id,
        quantity=payload.quantity,
        result=ScanResult.VALID,
        device_id=device_id,
        venue_id=venue_id,
        staff_id=staff_id,
        staff_name=staff_name,
        scanned_at=now,
    )
    try:
        async with db.begin_nested():
            db.add(record)
    except IntegrityError:
        previous = await _prior_valid_scan(db, payload.order_id, payload.ticket_id)
        return ScanOutcome(
            ScanResult.ALREADY_SCANNED,
            payload=payload,
            order=order,
            previous=previous,
            reason="concurrent_scan",
        )

    if order.status != OrderStatus.CHECKED_IN.value:
        current = OrderStatus(order.status)
        OrderStateMachine.validate_transition(current, OrderStatus.CHECKED_IN)
        await db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == current.value)
            .values(status=OrderStatus.CHECKED_IN.value, checked_in_at=now, updated_at=now)
        )

    return ScanOutcome(ScanResult.VALID, payload=payload, order=order, record=record)


async def scan(
    db: AsyncSession,
    qr_payload: Union[str, dict],
    event_id: Optional[str] = None,
    device_id: Optional[str] = None,
    venue_id: Optional[str] = None,
    staff_id: Optional[int] = None,
    staff_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ScanOutcome:
    """Validate one credential and record the attempt. Commits."""
    now = now or utcnow()
    outcome = await _evaluate(db, qr_payload, event_id, device_id, venue_id, staff_id, staff_name, now)

    payload = outcome.payload
    db.add(ScanAttempt(
        result=outcome.result,
        order_id=payload.order_id if payload else None,
        ticket_id=payload.ticket_id if payload else None,
        event_id=event_id or (payload.event_id if payload else None),
        device_id=device_id,
        venue_id=venue_id,
        staff_id=staff_id,
        reason=outcome.reason,
        created_at=now,
    ))
    await db.commit()

    record_scan(outcome.result)
    log = logger.info if outcome.result == ScanResult.VALID else logger.warning
    log(
        "ticket_scanned",
        result=outcome.result,
        order_id=payload.order_id if payload else None,
        ticket_id=payload.ticket_id if payload else None,
        event_id=event_id,
        device_id=device_id,
        venue_id=venue_id,
        staff_id=staff_id,
        reason=outcome.reason,
    )
    return outcome


@dataclass
class DoorStats:
    event_id: str
    scans: list[dict]
    total_scans: int
    total_people: int
    by_entry_type: dict[str, int]
    duplicate_attempts: int


async def door_stats(db: AsyncSession, event_id: str, limit: int = 100) -> DoorStats:
    """
    Admission totals for one event.

    Head counts cover every valid scan; `scans` lists the newest `limit` of
    them. Entry type comes from the order's ticket line, "general" if unset.
    """
    rows = (await db.execute(
        select(ScanRecord, Order)
        .outerjoin(Order, Order.id == ScanRecord.order_id)
        .where(ScanRecord.event_id == event_id)
        .order_by(ScanRecord.scanned_at.desc())
    )).all()

    scans = []
    by_entry_type: dict[str, int] = {}
    for record, order in rows:
        line = None
        if order is not None:
            line = next((t for t in order.tickets if t["tier_id"] == record.ticket_id), None)
        entry_type = (line or {}).get("entry_type") or "general"
        by_entry_type[entry_type] = by_entry_type.get(entry_type, 0) + record.quantity
        if len(scans) < limit:
            scans.append({
                "order_id": record.order_id,
                "ticket_id": record.ticket_id,
                "tier_name": (line or {}).get("tier_name"),
                "entry_type": entry_type,
                "quantity": record.quantity,
                "buyer_name": order.buyer_name if order is not None else None,
                "device_id": record.device_id,
                "venue_id": record.venue_id,
                "staff_name": record.staff_name,
                "scanned_at": record.scanned_at,
            })

    duplicates = await db.execute(
        select(func.count())
        .select_from(ScanAttempt)
        .where(ScanAttempt.event_id == event_id, ScanAttempt.result == ScanResult.ALREADY_SCANNED)
    )
    return DoorStats(
        event_id=event_id,
        scans=scans,
        total_scans=len(rows),
        total_people=sum(by_entry_type.values()),
        by_entry_type=by_entry_type,
        duplicate_attempts=duplicates.scalar(),
    )
