"""
Door scan endpoints. Each scan result maps to its own HTTP status.
"""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.db.session import get_db
from gatehouse.models.user import User
from gatehouse.schemas.scan import DoorStatsResponse, PriorScan, ScanRequest, ScanResponse
from gatehouse.services import scan_service
from gatehouse.core.security import require_staff

router = APIRouter(prefix="/scans", tags=["Scans"])


def _scan_response(outcome: scan_service.ScanOutcome) -> ScanResponse:
    payload = outcome.payload
    order = outcome.order
    line = None
    if order is not None and payload is not None:
        line = next((t for t in order.tickets if t["tier_id"] == payload.ticket_id), None)

    previous = None
    if outcome.previous is not None:
        previous = PriorScan(
            scanned_at=outcome.previous.scanned_at,
            staff_id=outcome.previous.staff_id,
            staff_name=outcome.previous.staff_name,
            device_id=outcome.previous.device_id,
        )

    return ScanResponse(
        result=outcome.result,
        message=outcome.message,
        order_id=payload.order_id if payload else None,
        ticket_id=payload.ticket_id if payload else None,
        tier_name=line["tier_name"] if line else None,
        entry_type=line.get("entry_type") if line else None,
        quantity=payload.quantity if payload else None,
        buyer_name=order.buyer_name if order is not None else None,
        scanned_at=outcome.record.scanned_at if outcome.record is not None else None,
        previous_scan=previous,
    )


@router.post("", response_model=ScanResponse)
async def scan_ticket(
    data: ScanRequest,
    staff: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """
    Validate an admission credential at the door.

    valid 200, already_scanned 409, invalid 400, wrong_event 422,
    not_confirmed 412, not_found 404, device_invalid 403.
    A ticket is admitted at most once even with several scanners racing.
    """
    outcome = await scan_service.scan(
        db,
        data.qr_payload,
        event_id=data.event_id,
        device_id=data.device_id,
        venue_id=data.venue_id,
        staff_id=staff.id,
        staff_name=staff.full_name or staff.username,
    )
    body = _scan_response(outcome)
    return JSONResponse(status_code=outcome.status_code, content=body.model_dump(mode="json"))


@router.get("", response_model=DoorStatsResponse)
async def door_stats(
    event_id: str = Query(..., min_length=1),
    limit: int = Query(100, ge=1, le=500),
    staff: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Admitted scans for an event with head counts and duplicate attempts."""
    stats = await scan_service.door_stats(db, event_id, limit=limit)
    return DoorStatsResponse(
        event_id=stats.event_id,
        scans=stats.scans,
        total_scans=stats.total_scans,
        total_people=stats.total_people,
        by_entry_type=stats.by_entry_type,
        duplicate_attempts=stats.duplicate_attempts,
    )
