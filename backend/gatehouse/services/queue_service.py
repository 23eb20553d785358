"""
Virtual queue admission controller.

Throttles how many buyers can be inside the purchase flow of a queue-enabled
event at once. It never touches inventory; it only hands out signed,
single-use admission tokens that `reservation_service.reserve` consumes.

Lanes and cohorts
=================
Requesters are ranked into lanes: loyal (already holds a confirmed ticket
with us), auth (signed in), guest (anonymous device). Whenever capacity frees
up, `admit_waiting` fills the free slots 60/30/10 across the lanes, oldest
first inside a lane, and hands unused quota to the next lane in rank order.

Liveness
========
Clients poll `get_queue_status`, which doubles as the heartbeat. Tickets that
stop polling or outstay their windows are recycled by `apply_timeouts`,
which both the poll path and the cleanup sweeper call. Every transition is a
guarded UPDATE on the expected prior status, so concurrent pollers and the
sweeper cannot double-admit or double-expire a ticket.
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.core.config import get_settings
from gatehouse.core.errors import (
    AdmissionRequiredError,
    ForbiddenError,
    InvalidRequestError,
    QueueCooldownError,
    QueueTicketNotFoundError,
)
from gatehouse.core.logging import get_logger
from gatehouse.core.metrics import record_queue_admission
from gatehouse.core.signing import hmac_hex, signatures_match
from gatehouse.core.state_machine import OrderStatus
from gatehouse.db.base import utcnow
from gatehouse.models.order import Order
from gatehouse.models.queue import ACTIVE_QUEUE_STATUSES, QueueLane, QueueStatus, QueueTicket
from gatehouse.services import event_service

logger = get_logger(__name__)
settings = get_settings()

LANE_ORDER = (QueueLane.LOYAL, QueueLane.AUTH, QueueLane.GUEST)
LANE_RATIOS = {
    QueueLane.LOYAL: 0.6,
    QueueLane.AUTH: 0.3,
    QueueLane.GUEST: 0.1,
}


def requester_key(user_id: Optional[int], device_id: Optional[str]) -> str:
    if user_id is not None:
        return f"user:{user_id}"
    if not device_id:
        raise InvalidRequestError("Anonymous queue entry requires a device id")
    return f"guest:{device_id}"


def _token_signature(event_id: str, requester_id: str, ticket_id: str) -> str:
    return hmac_hex(settings.QUEUE_SECRET_KEY, f"{event_id}:{requester_id}:{ticket_id}")


def issue_admission_token(event_id: str, requester_id: str, ticket_id: str) -> str:
    return f"{event_id}:{requester_id}:{ticket_id}:{_token_signature(event_id, requester_id, ticket_id)}"


def parse_admission_token(token: str) -> Optional[tuple[str, str, str]]:
    """Return (event_id, requester_id, ticket_id) if the token is authentic."""
    try:
        event_id, rest = token.split(":", 1)
        requester_id, ticket_id, signature = rest.rsplit(":", 2)
    except ValueError:
        return None
    expected = _token_signature(event_id, requester_id, ticket_id)
    if not signatures_match(expected, signature):
        return None
    return event_id, requester_id, ticket_id


async def determine_lane(db: AsyncSession, user_id: Optional[int]) -> QueueLane:
    if user_id is None:
        return QueueLane.GUEST
    confirmed = (await db.execute(
        select(func.count())
        .select_from(Order)
        .where(
            Order.buyer_id == user_id,
            Order.status.in_([OrderStatus.CONFIRMED.value, OrderStatus.CHECKED_IN.value]),
        )
    )).scalar()
    return QueueLane.LOYAL if confirmed else QueueLane.AUTH


async def apply_timeouts(
    db: AsyncSession,
    event_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> int:
    """Recycle stale tickets. Returns how many tickets changed status. Commits."""
    now = now or utcnow()
    scope = [QueueTicket.event_id == event_id] if event_id else []

    rules = [
        # Waiting but stopped polling
        (
            QueueStatus.WAITING, QueueStatus.EXPIRED,
            [QueueTicket.last_active_at < now - timedelta(seconds=settings.QUEUE_INACTIVITY_TIMEOUT_SECONDS)],
        ),
        # Waited longer than anyone should
        (
            QueueStatus.WAITING, QueueStatus.EXPIRED,
            [QueueTicket.joined_at < now - timedelta(minutes=settings.QUEUE_MAX_WAIT_MINUTES)],
        ),
        # Admitted but walked away
        (
            QueueStatus.ADMITTED, QueueStatus.ABANDONED,
            [QueueTicket.last_active_at < now - timedelta(seconds=settings.QUEUE_ADMISSION_GRACE_SECONDS)],
        ),
        # Admission window over
        (
            QueueStatus.ADMITTED, QueueStatus.EXPIRED,
            [QueueTicket.expires_at < now],
        ),
        (
            QueueStatus.PAYMENT_RETRY, QueueStatus.EXPIRED,
            [QueueTicket.retry_until < now],
        ),
    ]

    changed = 0
    for from_status, to_status, conditions in rules:
        result = await db.execute(
            update(QueueTicket)
            .where(*scope, QueueTicket.status == from_status.value, *conditions)
            .values(status=to_status.value, ended_at=now, updated_at=now)
        )
        changed += result.rowcount or 0

    await db.commit()
    if changed:
        logger.info("queue_tickets_recycled", event_id=event_id, count=changed)
    return changed


async def admit_waiting(db: AsyncSession, event_id: str, now: Optional[datetime] = None) -> list[str]:
    """Admit the next cohort into free capacity. Returns admitted ticket ids. Commits."""
    now = now or utcnow()

    in_flow = (await db.execute(
        select(func.count())
        .select_from(QueueTicket)
        .where(
            QueueTicket.event_id == event_id,
            QueueTicket.status.in_([QueueStatus.ADMITTED.value, QueueStatus.PAYMENT_RETRY.value]),
        )
    )).scalar()
    free = settings.QUEUE_CONCURRENCY_BUDGET - in_flow
    if free <= 0:
        await db.commit()
        return []

    waiting: dict[QueueLane, list[tuple[str, str]]] = {}
    for lane in LANE_ORDER:
        rows = await db.execute(
            select(QueueTicket.id, QueueTicket.requester_id)
            .where(
                QueueTicket.event_id == event_id,
                QueueTicket.status == QueueStatus.WAITING.value,
                QueueTicket.lane == lane.value,
            )
            .order_by(QueueTicket.score.asc(), QueueTicket.id.asc())
            .limit(free)
        )
        waiting[lane] = [(row.id, row.requester_id) for row in rows]

    selected: list[tuple[QueueLane, str, str]] = []
    for lane in LANE_ORDER:
        quota = int(free * LANE_RATIOS[lane])
        take = waiting[lane][:quota]
        selected.extend((lane, ticket_id, requester) for ticket_id, requester in take)
        waiting[lane] = waiting[lane][quota:]

    leftover = free - len(selected)
    for lane in LANE_ORDER:
        if leftover <= 0:
            break
        take = waiting[lane][:leftover]
        selected.extend((lane, ticket_id, requester) for ticket_id, requester in take)
        leftover -= len(take)

    admitted = []
    expires_at = now + timedelta(minutes=settings.QUEUE_ADMISSION_TTL_MINUTES)
    for lane, ticket_id, requester in selected:
        result = await db.execute(
            update(QueueTicket)
            .where(QueueTicket.id == ticket_id, QueueTicket.status == QueueStatus.WAITING.value)
            .values(
                status=QueueStatus.ADMITTED.value,
                admitted_at=now,
                last_active_at=now,
                expires_at=expires_at,
                admission_token=issue_admission_token(event_id, requester, ticket_id),
                updated_at=now,
            )
        )
        if result.rowcount:
            admitted.append(ticket_id)
            record_queue_admission(lane.value)

    await db.commit()
    if admitted:
        logger.info("queue_cohort_admitted", event_id=event_id, admitted=len(admitted), free_slots=free)
    return admitted


async def _load_ticket(db: AsyncSession, ticket_id: str) -> QueueTicket:
    result = await db.execute(select(QueueTicket).where(QueueTicket.id == ticket_id))
    ticket = result.scalar_one_or_none()
    if ticket is None:
        raise QueueTicketNotFoundError()
    return ticket


async def _positions(db: AsyncSession, ticket: QueueTicket) -> tuple[Optional[int], Optional[int]]:
    if ticket.status != QueueStatus.WAITING.value:
        return None, None

    ahead_in_lane = (await db.execute(
        select(func.count())
        .select_from(QueueTicket)
        .where(
            QueueTicket.event_id == ticket.event_id,
            QueueTicket.status == QueueStatus.WAITING.value,
            QueueTicket.lane == ticket.lane,
            QueueTicket.score < ticket.score,
        )
    )).scalar()

    higher_lanes = [lane.value for lane in LANE_ORDER[:LANE_ORDER.index(QueueLane(ticket.lane))]]
    ahead_in_higher = 0
    if higher_lanes:
        ahead_in_higher = (await db.execute(
            select(func.count())
            .select_from(QueueTicket)
            .where(
                QueueTicket.event_id == ticket.event_id,
                QueueTicket.status == QueueStatus.WAITING.value,
                QueueTicket.lane.in_(higher_lanes),
            )
        )).scalar()

    lane_position = ahead_in_lane + 1
    return ahead_in_higher + lane_position, lane_position


async def describe_ticket(db: AsyncSession, ticket: QueueTicket) -> dict:
    position, lane_position = await _positions(db, ticket)
    show_token = ticket.status in (QueueStatus.ADMITTED.value, QueueStatus.PAYMENT_RETRY.value)
    return {
        "ticket_id": ticket.id,
        "event_id": ticket.event_id,
        "lane": ticket.lane,
        "status": ticket.status,
        "position": position,
        "lane_position": lane_position,
        "admission_token": ticket.admission_token if show_token else None,
        "expires_at": ticket.expires_at,
        "retry_until": ticket.retry_until,
    }


async def join_queue(
    db: AsyncSession,
    event_id: str,
    user_id: Optional[int],
    device_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> QueueTicket:
    now = now or utcnow()
    event = await event_service.get_event(db, event_id)
    if not event.queue_enabled:
        raise InvalidRequestError("This event does not use a queue")

    requester_id = requester_key(user_id, device_id)
    await apply_timeouts(db, event_id, now=now)

    # One active ticket per requester
    result = await db.execute(
        select(QueueTicket)
        .where(
            QueueTicket.event_id == event_id,
            QueueTicket.requester_id == requester_id,
            QueueTicket.status.in_(ACTIVE_QUEUE_STATUSES),
        )
        .order_by(QueueTicket.joined_at.desc())
        .limit(1)
    )
    existing = result.scalar_one_or_none()
    if existing is not None:
        await db.execute(
            update(QueueTicket)
            .where(QueueTicket.id == existing.id)
            .values(last_active_at=now)
        )
        await db.commit()
        logger.info("queue_rejoin_existing", event_id=event_id, ticket_id=existing.id)
        return existing

    cooldown_start = now - timedelta(seconds=settings.QUEUE_JOIN_COOLDOWN_SECONDS)
    recent = (await db.execute(
        select(func.count())
        .select_from(QueueTicket)
        .where(
            QueueTicket.event_id == event_id,
            QueueTicket.requester_id == requester_id,
            QueueTicket.status.in_([QueueStatus.EXPIRED.value, QueueStatus.ABANDONED.value]),
            QueueTicket.ended_at > cooldown_start,
        )
    )).scalar()
    if recent:
        raise QueueCooldownError()

    lane = await determine_lane(db, user_id)
    ticket = QueueTicket(
        event_id=event_id,
        requester_id=requester_id,
        user_id=user_id,
        device_id=device_id,
        lane=lane.value,
        score=int(now.timestamp() * 1000),
        status=QueueStatus.WAITING.value,
        joined_at=now,
        last_active_at=now,
    )
    db.add(ticket)
    await db.commit()
    logger.info("queue_joined", event_id=event_id, ticket_id=ticket.id, lane=lane.value)

    await admit_waiting(db, event_id, now=now)
    await db.refresh(ticket)
    return ticket


async def get_queue_status(db: AsyncSession, ticket_id: str, now: Optional[datetime] = None) -> QueueTicket:
    """Client poll. Records a heartbeat, recycles, admits, then reports."""
    now = now or utcnow()
    ticket = await _load_ticket(db, ticket_id)
    event_id = ticket.event_id

    await db.execute(
        update(QueueTicket)
        .where(
            QueueTicket.id == ticket_id,
            QueueTicket.status.in_([QueueStatus.WAITING.value, QueueStatus.ADMITTED.value]),
        )
        .values(last_active_at=now)
    )
    await db.commit()

    await apply_timeouts(db, event_id, now=now)
    await admit_waiting(db, event_id, now=now)
    await db.refresh(ticket)
    return ticket


async def verify_admission(
    db: AsyncSession,
    event_id: str,
    token: Optional[str],
    user_id: Optional[int],
    now: Optional[datetime] = None,
) -> str:
    """Check an admission token without spending it. Returns the ticket id."""
    now = now or utcnow()
    if not token:
        raise AdmissionRequiredError()

    parsed = parse_admission_token(token)
    if parsed is None:
        logger.warning("queue_token_invalid", event_id=event_id, security_event=True)
        raise AdmissionRequiredError("Invalid queue admission token")

    token_event_id, _, ticket_id = parsed
    if token_event_id != event_id:
        raise AdmissionRequiredError("Queue admission is for a different event")

    result = await db.execute(select(QueueTicket).where(QueueTicket.id == ticket_id))
    ticket = result.scalar_one_or_none()
    if ticket is None or ticket.admission_token != token:
        raise AdmissionRequiredError("Invalid queue admission token")
    if ticket.user_id is not None and user_id is not None and ticket.user_id != user_id:
        raise AdmissionRequiredError("Queue admission belongs to another user")

    if ticket.status == QueueStatus.ADMITTED.value:
        if ticket.expires_at is None or ticket.expires_at < now:
            raise AdmissionRequiredError("Queue admission has expired")
    elif ticket.status == QueueStatus.PAYMENT_RETRY.value:
        if ticket.retry_until is None or ticket.retry_until < now:
            raise AdmissionRequiredError("Queue admission has expired")
    else:
        raise AdmissionRequiredError("Queue admission was already used or has expired")

    return ticket.id


async def consume_admission(db: AsyncSession, ticket_id: str, now: Optional[datetime] = None) -> bool:
    """Spend an admission. Caller owns the transaction."""
    now = now or utcnow()
    result = await db.execute(
        update(QueueTicket)
        .where(
            QueueTicket.id == ticket_id,
            QueueTicket.status.in_([QueueStatus.ADMITTED.value, QueueStatus.PAYMENT_RETRY.value]),
        )
        .values(status=QueueStatus.CONSUMED.value, ended_at=now, updated_at=now)
    )
    return bool(result.rowcount)


async def flag_payment_retry(
    db: AsyncSession,
    ticket_id: str,
    user_id: Optional[int],
    device_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> QueueTicket:
    """Re-open a spent admission for a short window after a failed payment."""
    now = now or utcnow()
    ticket = await _load_ticket(db, ticket_id)
    if ticket.requester_id != requester_key(user_id, device_id):
        raise ForbiddenError("Queue ticket belongs to another requester")

    result = await db.execute(
        update(QueueTicket)
        .where(
            QueueTicket.id == ticket_id,
            QueueTicket.status.in_([QueueStatus.CONSUMED.value, QueueStatus.ADMITTED.value]),
        )
        .values(
            status=QueueStatus.PAYMENT_RETRY.value,
            retry_until=now + timedelta(seconds=settings.QUEUE_RETRY_WINDOW_SECONDS),
            ended_at=None,
            last_active_at=now,
            updated_at=now,
        )
    )
    if not result.rowcount:
        await db.rollback()
        await db.refresh(ticket)
        raise InvalidRequestError(f"Queue ticket is {ticket.status} and cannot be retried")

    await db.commit()
    await db.refresh(ticket)
    logger.info("queue_payment_retry", ticket_id=ticket_id, retry_until=ticket.retry_until.isoformat())
    return ticket
