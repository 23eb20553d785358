"""
Admission credentials (the QR payload printed on a ticket).

One credential per ticket line of an admittable order. The payload is a flat
JSON object:

    {"order_id", "event_id", "ticket_id", "buyer_id", "quantity",
     "entry_type", "issued_at", "sig"}

`issued_at` is epoch milliseconds. `sig` is a truncated hex HMAC-SHA256 over
`order_id:event_id:ticket_id:buyer_id:quantity:issued_at` with the server's
QR secret. Everything else in the payload is display data and is not trusted.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from gatehouse.core.config import get_settings
from gatehouse.core.signing import hmac_hex, signatures_match
from gatehouse.core.state_machine import ADMITTABLE_STATUSES, OrderStatus
from gatehouse.db.base import utcnow

settings = get_settings()

REQUIRED_FIELDS = ("order_id", "event_id", "ticket_id", "buyer_id", "quantity", "issued_at", "sig")


@dataclass(frozen=True)
class AdmissionPayload:
    order_id: str
    event_id: str
    ticket_id: str
    buyer_id: int
    quantity: int
    issued_at: int
    sig: str
    entry_type: Optional[str] = None

    def canonical(self) -> str:
        return f"{self.order_id}:{self.event_id}:{self.ticket_id}:{self.buyer_id}:{self.quantity}:{self.issued_at}"

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "event_id": self.event_id,
            "ticket_id": self.ticket_id,
            "buyer_id": self.buyer_id,
            "quantity": self.quantity,
            "entry_type": self.entry_type,
            "issued_at": self.issued_at,
            "sig": self.sig,
        }


def sign(canonical: str) -> str:
    return hmac_hex(settings.QR_SECRET_KEY, canonical)[: settings.QR_SIGNATURE_LENGTH]


def issue_payload(
    order_id: str,
    event_id: str,
    ticket_id: str,
    buyer_id: int,
    quantity: int,
    entry_type: Optional[str] = None,
    now: Optional[datetime] = None,
) -> AdmissionPayload:
    issued_at = int((now or utcnow()).timestamp() * 1000)
    unsigned = AdmissionPayload(
        order_id=order_id,
        event_id=event_id,
        ticket_id=ticket_id,
        buyer_id=buyer_id,
        quantity=quantity,
        issued_at=issued_at,
        sig="",
        entry_type=entry_type,
    )
    return AdmissionPayload(**{**unsigned.to_dict(), "sig": sign(unsigned.canonical())})


def build_credentials(order, now: Optional[datetime] = None) -> list[dict]:
    """One signed credential per ticket line. Empty unless the order is admittable."""
    if OrderStatus(order.status) not in ADMITTABLE_STATUSES:
        return []

    credentials = []
    for line in order.tickets:
        payload = issue_payload(
            order_id=order.id,
            event_id=order.event_id,
            ticket_id=line["tier_id"],
            buyer_id=order.buyer_id,
            quantity=line["quantity"],
            entry_type=line.get("entry_type"),
            now=now,
        )
        credentials.append({
            "ticket_id": line["tier_id"],
            "tier_name": line.get("tier_name"),
            "entry_type": line.get("entry_type"),
            "quantity": line["quantity"],
            "payload": payload.to_dict(),
            "qr_data": json.dumps(payload.to_dict(), separators=(",", ":"), sort_keys=True),
        })
    return credentials


def parse_payload(raw: Union[str, dict, None]) -> Optional[AdmissionPayload]:
    """Decode a scanned payload. Returns None for anything malformed."""
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return None
    if not isinstance(raw, dict):
        return None
    if any(raw.get(field) in (None, "") for field in REQUIRED_FIELDS):
        return None
    try:
        return AdmissionPayload(
            order_id=str(raw["order_id"]),
            event_id=str(raw["event_id"]),
            ticket_id=str(raw["ticket_id"]),
            buyer_id=int(raw["buyer_id"]),
            quantity=int(raw["quantity"]),
            issued_at=int(raw["issued_at"]),
            sig=str(raw["sig"]),
            entry_type=raw.get("entry_type"),
        )
    except (TypeError, ValueError):
        return None


def verify_payload(payload: AdmissionPayload, now: Optional[datetime] = None) -> bool:
    expected = sign(payload.canonical())
    if not signatures_match(expected, payload.sig):
        return False
    now = now or utcnow()
    issued = datetime.fromtimestamp(payload.issued_at / 1000, tz=timezone.utc)
    return now - issued <= timedelta(days=settings.QR_MAX_AGE_DAYS)
