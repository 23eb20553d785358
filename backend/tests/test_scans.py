"""
Tests for admission credentials and door scanning.
"""

import asyncio
import json
from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from gatehouse.db.base import utcnow
from gatehouse.models.scan import BoundDevice, ScanAttempt, ScanRecord
from gatehouse.services import scan_service
from gatehouse.services.credentials import issue_payload, parse_payload, verify_payload


async def rsvp_order(client: AsyncClient, headers: dict, event) -> str:
    reserved = await client.post(
        "/api/v1/reservations/",
        json={"event_id": event.id, "items": [{"tier_id": event.tiers["Guest list"].id, "quantity": 2}]},
        headers=headers,
    )
    response = await client.post(
        "/api/v1/checkout",
        json={"reservation_id": reserved.json()["reservation_id"], "buyer": {"name": "Test Buyer"}},
        headers=headers,
    )
    assert response.json()["order"]["status"] == "rsvp_confirmed"
    return response.json()["order"]["id"]


async def paid_order(client: AsyncClient, headers: dict, event, gateway, confirm: bool = True) -> str:
    reserved = await client.post(
        "/api/v1/reservations/",
        json={
            "event_id": event.id,
            "items": [
                {"tier_id": event.tiers["GA"].id, "quantity": 2},
                {"tier_id": event.tiers["VIP"].id, "quantity": 1},
            ],
        },
        headers=headers,
    )
    checkout = (await client.post(
        "/api/v1/checkout",
        json={"reservation_id": reserved.json()["reservation_id"]},
        headers=headers,
    )).json()
    order_id = checkout["order"]["id"]
    if confirm:
        intent_id = checkout["payment_intent"]["id"]
        await client.post(
            "/api/v1/payments/confirm",
            json={
                "order_id": order_id,
                "payment_id": "pay_scan",
                "gateway_order_id": intent_id,
                "signature": gateway.sign_payment(intent_id, "pay_scan"),
            },
            headers=headers,
        )
    return order_id


async def credentials(client: AsyncClient, headers: dict, order_id: str) -> list[dict]:
    response = await client.get(f"/api/v1/orders/{order_id}/credentials", headers=headers)
    assert response.status_code == 200
    return response.json()["credentials"]


async def count(session_factory, model) -> int:
    async with session_factory() as db:
        return (await db.execute(select(func.count()).select_from(model))).scalar()


def test_issued_payload_verifies():
    payload = issue_payload("order-1", "event-1", "tier-1", 7, 2, entry_type="vip")
    assert verify_payload(payload)
    assert parse_payload(json.dumps(payload.to_dict())) == payload


def test_tampered_payload_fails_verification():
    data = issue_payload("order-1", "event-1", "tier-1", 7, 2).to_dict()
    data["quantity"] = 20
    assert not verify_payload(parse_payload(data))


def test_old_payload_fails_verification():
    payload = issue_payload("order-1", "event-1", "tier-1", 7, 2, now=utcnow() - timedelta(days=31))
    assert not verify_payload(payload)


def test_parse_rejects_garbage():
    assert parse_payload("not json") is None
    assert parse_payload("[1, 2]") is None
    assert parse_payload({"order_id": "x"}) is None
    assert parse_payload(None) is None


@pytest.mark.asyncio
async def test_credentials_per_ticket_line(client: AsyncClient, auth_headers, paid_event, gateway):
    order_id = await paid_order(client, auth_headers, paid_event, gateway)
    creds = await credentials(client, auth_headers, order_id)
    assert [c["tier_name"] for c in creds] == ["GA", "VIP"]
    assert [c["quantity"] for c in creds] == [2, 1]
    assert creds[1]["entry_type"] == "vip"
    assert json.loads(creds[0]["qr_data"]) == creds[0]["payload"]


@pytest.mark.asyncio
async def test_no_credentials_before_payment(client: AsyncClient, auth_headers, paid_event, gateway):
    order_id = await paid_order(client, auth_headers, paid_event, gateway, confirm=False)
    assert await credentials(client, auth_headers, order_id) == []


@pytest.mark.asyncio
async def test_credentials_of_another_buyer(client: AsyncClient, auth_headers, other_headers, rsvp_event):
    order_id = await rsvp_order(client, auth_headers, rsvp_event)
    response = await client.get(f"/api/v1/orders/{order_id}/credentials", headers=other_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_second_scan_rejected(client: AsyncClient, auth_headers, staff_headers, rsvp_event):
    """First scan admits; the second reports who scanned it first."""
    order_id = await rsvp_order(client, auth_headers, rsvp_event)
    qr = (await credentials(client, auth_headers, order_id))[0]["qr_data"]

    first = await client.post(
        "/api/v1/scans", json={"qr_payload": qr, "event_id": rsvp_event.id}, headers=staff_headers
    )
    assert first.status_code == 200
    body = first.json()
    assert body["result"] == "valid"
    assert body["message"] == "Entry allowed"
    assert body["buyer_name"] == "Test Buyer"
    assert body["quantity"] == 2

    order = await client.get(f"/api/v1/orders/{order_id}", headers=auth_headers)
    assert order.json()["status"] == "checked_in"

    second = await client.post(
        "/api/v1/scans", json={"qr_payload": qr, "event_id": rsvp_event.id}, headers=staff_headers
    )
    assert second.status_code == 409
    assert second.json()["result"] == "already_scanned"
    assert second.json()["previous_scan"]["staff_name"] == "Door Staff"


@pytest.mark.asyncio
async def test_each_ticket_line_admits_once(client: AsyncClient, auth_headers, staff_headers, paid_event, gateway):
    """Checking in GA does not use up the VIP credential of the same order."""
    order_id = await paid_order(client, auth_headers, paid_event, gateway)
    ga, vip = await credentials(client, auth_headers, order_id)

    assert (await client.post("/api/v1/scans", json={"qr_payload": ga["payload"]}, headers=staff_headers)).status_code == 200
    assert (await client.post("/api/v1/scans", json={"qr_payload": vip["payload"]}, headers=staff_headers)).status_code == 200
    assert (await client.post("/api/v1/scans", json={"qr_payload": ga["payload"]}, headers=staff_headers)).status_code == 409


@pytest.mark.asyncio
async def test_forged_signature_admits_nobody(client: AsyncClient, auth_headers, staff_headers, rsvp_event, session_factory):
    """A tampered payload is invalid and admits nobody."""
    order_id = await rsvp_order(client, auth_headers, rsvp_event)
    payload = dict((await credentials(client, auth_headers, order_id))[0]["payload"])
    payload["quantity"] = 10

    response = await client.post("/api/v1/scans", json={"qr_payload": payload}, headers=staff_headers)
    assert response.status_code == 400
    assert response.json()["result"] == "invalid"
    assert await count(session_factory, ScanRecord) == 0

    async with session_factory() as db:
        attempt = (await db.execute(select(ScanAttempt))).scalar_one()
        assert attempt.result == "invalid"
        assert attempt.reason == "signature_mismatch"


@pytest.mark.asyncio
async def test_non_ascii_signature_is_invalid(client: AsyncClient, auth_headers, staff_headers, rsvp_event, session_factory):
    """A signature with characters outside ASCII is just a mismatch."""
    order_id = await rsvp_order(client, auth_headers, rsvp_event)
    payload = dict((await credentials(client, auth_headers, order_id))[0]["payload"])
    payload["sig"] = payload["sig"][:-1] + "é"

    response = await client.post("/api/v1/scans", json={"qr_payload": payload}, headers=staff_headers)
    assert response.status_code == 400
    assert response.json()["result"] == "invalid"
    assert await count(session_factory, ScanRecord) == 0

    async with session_factory() as db:
        attempt = (await db.execute(select(ScanAttempt))).scalar_one()
        assert attempt.reason == "signature_mismatch"


@pytest.mark.asyncio
async def test_malformed_payload(client: AsyncClient, staff_headers):
    response = await client.post("/api/v1/scans", json={"qr_payload": "hello"}, headers=staff_headers)
    assert response.status_code == 400
    assert response.json()["result"] == "invalid"


@pytest.mark.asyncio
async def test_wrong_event(client: AsyncClient, auth_headers, staff_headers, rsvp_event, paid_event):
    order_id = await rsvp_order(client, auth_headers, rsvp_event)
    qr = (await credentials(client, auth_headers, order_id))[0]["qr_data"]

    response = await client.post(
        "/api/v1/scans", json={"qr_payload": qr, "event_id": paid_event.id}, headers=staff_headers
    )
    assert response.status_code == 422
    assert response.json()["result"] == "wrong_event"


@pytest.mark.asyncio
async def test_unpaid_order_not_confirmed(client: AsyncClient, auth_headers, staff_headers, paid_event, gateway, test_user):
    """A correctly signed credential for an unpaid order is refused."""
    order_id = await paid_order(client, auth_headers, paid_event, gateway, confirm=False)
    payload = issue_payload(order_id, paid_event.id, paid_event.tiers["GA"].id, test_user.id, 2)

    response = await client.post("/api/v1/scans", json={"qr_payload": payload.to_dict()}, headers=staff_headers)
    assert response.status_code == 412
    assert response.json()["result"] == "not_confirmed"


@pytest.mark.asyncio
async def test_unknown_order(client: AsyncClient, staff_headers, paid_event):
    payload = issue_payload("ghost-order", paid_event.id, paid_event.tiers["GA"].id, 1, 1)
    response = await client.post("/api/v1/scans", json={"qr_payload": payload.to_dict()}, headers=staff_headers)
    assert response.status_code == 404
    assert response.json()["result"] == "not_found"


@pytest.mark.asyncio
async def test_device_binding(client: AsyncClient, auth_headers, staff_headers, rsvp_event, session_factory):
    """A scanner bound to another venue is refused; the bound one is accepted."""
    async with session_factory() as db:
        db.add(BoundDevice(id="scanner-1", venue_id="hall-a", name="Gate 1"))
        await db.commit()

    order_id = await rsvp_order(client, auth_headers, rsvp_event)
    qr = (await credentials(client, auth_headers, order_id))[0]["qr_data"]

    wrong_venue = await client.post(
        "/api/v1/scans",
        json={"qr_payload": qr, "device_id": "scanner-1", "venue_id": "hall-b"},
        headers=staff_headers,
    )
    assert wrong_venue.status_code == 403
    assert wrong_venue.json()["result"] == "device_invalid"

    bound = await client.post(
        "/api/v1/scans",
        json={"qr_payload": qr, "device_id": "scanner-1", "venue_id": "hall-a"},
        headers=staff_headers,
    )
    assert bound.status_code == 200

    async with session_factory() as db:
        device = await db.get(BoundDevice, "scanner-1")
        assert device.last_active_at is not None


@pytest.mark.asyncio
async def test_concurrent_scanners(client: AsyncClient, auth_headers, rsvp_event, staff_user, session_factory):
    """Two scanners racing on one ticket admit it once."""
    order_id = await rsvp_order(client, auth_headers, rsvp_event)
    qr = (await credentials(client, auth_headers, order_id))[0]["qr_data"]

    async def scan_at(device_id):
        async with session_factory() as db:
            outcome = await scan_service.scan(db, qr, device_id=device_id, staff_id=staff_user.id)
            return outcome.result

    results = await asyncio.gather(scan_at("gate-1"), scan_at("gate-2"))
    assert sorted(results) == ["already_scanned", "valid"]
    assert await count(session_factory, ScanRecord) == 1
    assert await count(session_factory, ScanAttempt) == 2


@pytest.mark.asyncio
async def test_scan_conflict_on_insert(client: AsyncClient, auth_headers, staff_headers, rsvp_event, session_factory, monkeypatch):
    """A scanner that read no prior scan still loses on the unique key and reports the winner."""
    order_id = await rsvp_order(client, auth_headers, rsvp_event)
    qr = (await credentials(client, auth_headers, order_id))[0]["qr_data"]
    first = await client.post("/api/v1/scans", json={"qr_payload": qr}, headers=staff_headers)
    assert first.status_code == 200

    lookup = scan_service._prior_valid_scan
    lookups = []

    async def stale_first_read(db, order_id, ticket_id):
        lookups.append(ticket_id)
        if len(lookups) == 1:
            return None
        return await lookup(db, order_id, ticket_id)

    monkeypatch.setattr(scan_service, "_prior_valid_scan", stale_first_read)

    second = await client.post("/api/v1/scans", json={"qr_payload": qr}, headers=staff_headers)
    assert second.status_code == 409
    body = second.json()
    assert body["result"] == "already_scanned"
    assert body["previous_scan"]["staff_name"] == "Door Staff"
    assert len(lookups) == 2
    assert await count(session_factory, ScanRecord) == 1

    async with session_factory() as db:
        attempt = (await db.execute(
            select(ScanAttempt).where(ScanAttempt.result == "already_scanned")
        )).scalar_one()
        assert attempt.reason == "concurrent_scan"


@pytest.mark.asyncio
async def test_door_stats(client: AsyncClient, auth_headers, staff_headers, paid_event, rsvp_event, gateway):
    """Head counts by entry type; a repeated credential counts as a duplicate."""
    order_id = await paid_order(client, auth_headers, paid_event, gateway)
    ga, vip = await credentials(client, auth_headers, order_id)
    for credential in (ga, vip, ga):
        await client.post(
            "/api/v1/scans",
            json={"qr_payload": credential["payload"], "event_id": paid_event.id},
            headers=staff_headers,
        )

    response = await client.get("/api/v1/scans", params={"event_id": paid_event.id}, headers=staff_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["total_scans"] == 2
    assert body["total_people"] == 3
    assert body["by_entry_type"] == {"general": 2, "vip": 1}
    assert body["duplicate_attempts"] == 1
    assert sorted(s["tier_name"] for s in body["scans"]) == ["GA", "VIP"]
    assert all(s["staff_name"] == "Door Staff" for s in body["scans"])

    latest = await client.get(
        "/api/v1/scans", params={"event_id": paid_event.id, "limit": 1}, headers=staff_headers
    )
    assert len(latest.json()["scans"]) == 1
    assert latest.json()["total_people"] == 3

    other = await client.get("/api/v1/scans", params={"event_id": rsvp_event.id}, headers=staff_headers)
    assert other.json()["total_scans"] == 0
    assert other.json()["by_entry_type"] == {}


@pytest.mark.asyncio
async def test_door_stats_requires_staff(client: AsyncClient, auth_headers, staff_headers):
    attendee = await client.get("/api/v1/scans", params={"event_id": "e"}, headers=auth_headers)
    assert attendee.status_code == 403

    missing = await client.get("/api/v1/scans", headers=staff_headers)
    assert missing.status_code == 422


@pytest.mark.asyncio
async def test_scanning_requires_staff(client: AsyncClient, auth_headers, organizer_headers):
    """Attendees cannot scan; organizers can."""
    attendee = await client.post("/api/v1/scans", json={"qr_payload": "x"}, headers=auth_headers)
    assert attendee.status_code == 403

    organizer = await client.post("/api/v1/scans", json={"qr_payload": "x"}, headers=organizer_headers)
    assert organizer.status_code == 400
