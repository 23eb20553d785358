"""
Tests for checkout: order creation, idempotent retries and payment intents.
"""

import asyncio
from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from gatehouse.db.base import utcnow
from gatehouse.models.order import Order
from gatehouse.models.promo import PromoCode
from gatehouse.models.payment import PaymentIntent
from gatehouse.services import checkout_service, reservation_service


async def reserve(client: AsyncClient, headers: dict, event, tier_name: str = "GA", quantity: int = 2) -> str:
    response = await client.post(
        "/api/v1/reservations/",
        json={"event_id": event.id, "items": [{"tier_id": event.tiers[tier_name].id, "quantity": quantity}]},
        headers=headers,
    )
    assert response.status_code == 201
    return response.json()["reservation_id"]


async def count_orders(session_factory) -> int:
    async with session_factory() as db:
        return (await db.execute(select(func.count()).select_from(Order))).scalar()


@pytest.mark.asyncio
async def test_checkout_paid_order(client: AsyncClient, auth_headers, paid_event):
    """A priced basket becomes a pending order with a gateway intent."""
    reservation_id = await reserve(client, auth_headers, paid_event)
    response = await client.post(
        "/api/v1/checkout",
        json={"reservation_id": reservation_id, "buyer": {"name": "Test Buyer", "email": "test@example.com"}},
        headers=auth_headers,
    )
    assert response.status_code == 201
    data = response.json()
    order = data["order"]
    assert order["status"] == "pending_payment"
    assert order["total_amount"] == 126850
    assert order["buyer_name"] == "Test Buyer"
    assert data["requires_payment"] is True
    assert data["pricing"]["grand_total"] == 126850

    intent = data["payment_intent"]
    assert intent["id"].startswith("order_mock_")
    assert intent["amount"] == 126850
    assert intent["receipt"] == order["id"]
    assert intent["key_id"] == "rzp_test_key"
    assert order["payment_intent_id"] == intent["id"]

    reservation = await client.get(f"/api/v1/reservations/{reservation_id}", headers=auth_headers)
    assert reservation.json()["status"] == "consumed"


@pytest.mark.asyncio
async def test_checkout_retry_returns_same_order(client: AsyncClient, auth_headers, paid_event, session_factory):
    """A retried checkout answers 200 with the original order and intent."""
    reservation_id = await reserve(client, auth_headers, paid_event)
    first = await client.post("/api/v1/checkout", json={"reservation_id": reservation_id}, headers=auth_headers)
    second = await client.post("/api/v1/checkout", json={"reservation_id": reservation_id}, headers=auth_headers)

    assert first.status_code == 201
    assert second.status_code == 200
    assert second.json()["order"]["id"] == first.json()["order"]["id"]
    assert second.json()["payment_intent"]["id"] == first.json()["payment_intent"]["id"]
    assert await count_orders(session_factory) == 1


@pytest.mark.asyncio
async def test_concurrent_checkouts_create_one_order(client: AsyncClient, auth_headers, paid_event, session_factory):
    reservation_id = await reserve(client, auth_headers, paid_event)
    responses = await asyncio.gather(*[
        client.post("/api/v1/checkout", json={"reservation_id": reservation_id}, headers=auth_headers)
        for _ in range(2)
    ])
    assert sorted(r.status_code for r in responses) == [200, 201]
    assert len({r.json()["order"]["id"] for r in responses}) == 1
    assert await count_orders(session_factory) == 1


@pytest.mark.asyncio
async def test_checkout_rsvp(client: AsyncClient, auth_headers, rsvp_event):
    """RSVP orders are confirmed at once with no payment."""
    reservation_id = await reserve(client, auth_headers, rsvp_event, "Guest list", 1)
    response = await client.post("/api/v1/checkout", json={"reservation_id": reservation_id}, headers=auth_headers)
    assert response.status_code == 201
    data = response.json()
    assert data["order"]["status"] == "rsvp_confirmed"
    assert data["order"]["total_amount"] == 0
    assert data["order"]["confirmed_at"] is not None
    assert data["requires_payment"] is False
    assert data["payment_intent"] is None


@pytest.mark.asyncio
async def test_checkout_free_with_full_discount(client: AsyncClient, auth_headers, paid_event, add_promo, session_factory):
    """A zero total confirms immediately and counts the promo once."""
    promo = await add_promo(paid_event.id, "COMP", discount_value=10000)
    reservation_id = await reserve(client, auth_headers, paid_event)
    response = await client.post(
        "/api/v1/checkout",
        json={"reservation_id": reservation_id, "promo_code": "comp"},
        headers=auth_headers,
    )
    data = response.json()
    assert data["order"]["status"] == "confirmed"
    assert data["order"]["confirmation_source"] == "free"
    assert data["order"]["total_amount"] == 0
    assert data["order"]["fees"] == []
    assert data["requires_payment"] is False

    async with session_factory() as db:
        stored = await db.get(PromoCode, promo.id)
        assert stored.redemption_count == 1


@pytest.mark.asyncio
async def test_promo_not_counted_until_paid(client: AsyncClient, auth_headers, paid_event, add_promo, session_factory):
    promo = await add_promo(paid_event.id, "SAVE10")
    reservation_id = await reserve(client, auth_headers, paid_event)
    response = await client.post(
        "/api/v1/checkout",
        json={"reservation_id": reservation_id, "promo_code": "SAVE10"},
        headers=auth_headers,
    )
    assert response.json()["order"]["total_amount"] == 114165

    async with session_factory() as db:
        stored = await db.get(PromoCode, promo.id)
        assert stored.redemption_count == 0


@pytest.mark.asyncio
async def test_gateway_outage_then_retry(client: AsyncClient, auth_headers, paid_event, gateway, session_factory):
    """The order survives a gateway failure and a retry attaches the intent."""
    reservation_id = await reserve(client, auth_headers, paid_event)
    gateway.fail_next = 1

    failed = await client.post("/api/v1/checkout", json={"reservation_id": reservation_id}, headers=auth_headers)
    assert failed.status_code == 502
    assert failed.json()["code"] == "PAYMENT_GATEWAY_UNAVAILABLE"
    assert await count_orders(session_factory) == 1

    retry = await client.post("/api/v1/checkout", json={"reservation_id": reservation_id}, headers=auth_headers)
    assert retry.status_code == 200
    data = retry.json()
    assert data["order"]["status"] == "pending_payment"
    assert data["payment_intent"]["id"] == data["order"]["payment_intent_id"]
    assert await count_orders(session_factory) == 1



@pytest.mark.asyncio
async def test_intent_retries_share_one_intent(client: AsyncClient, auth_headers, paid_event, gateway, session_factory):
    """A retry holding a stale order adopts the intent another retry attached first."""
    reservation_id = await reserve(client, auth_headers, paid_event)
    gateway.fail_next = 1
    failed = await client.post("/api/v1/checkout", json={"reservation_id": reservation_id}, headers=auth_headers)
    assert failed.status_code == 502

    async with session_factory() as db:
        stale = await checkout_service.find_order_for_reservation(db, reservation_id)
    assert stale.payment_intent_id is None

    async with session_factory() as db:
        fresh = await checkout_service.find_order_for_reservation(db, reservation_id)
        winner = await checkout_service.ensure_payment_intent(db, gateway, fresh)

    async with session_factory() as db:
        intent = await checkout_service.ensure_payment_intent(db, gateway, stale)

    assert intent.id == winner.id
    async with session_factory() as db:
        order = await checkout_service.find_order_for_reservation(db, reservation_id)
        assert order.payment_intent_id == winner.id
        intents = (await db.execute(select(func.count()).select_from(PaymentIntent))).scalar()
        assert intents == 1


@pytest.mark.asyncio
async def test_checkout_conflict_on_insert(paid_event, test_user, gateway, session_factory, monkeypatch):
    """When the reservation's order appears between lookup and insert, that order is returned."""
    async with session_factory() as db:
        reservation = await reservation_service.reserve(
            db, paid_event.id, test_user.id, [{"tier_id": paid_event.tiers["GA"].id, "quantity": 1}]
        )
    async with session_factory() as db:
        winner = Order(
            reservation_id=reservation.id,
            event_id=paid_event.id,
            buyer_id=test_user.id,
            tickets=[],
            status="confirmed",
        )
        db.add(winner)
        await db.commit()

    lookup = checkout_service.find_order_for_reservation
    lookups = []

    async def stale_first_read(db, reservation_id):
        lookups.append(reservation_id)
        if len(lookups) == 1:
            return None
        return await lookup(db, reservation_id)

    monkeypatch.setattr(checkout_service, "find_order_for_reservation", stale_first_read)

    async with session_factory() as db:
        result = await checkout_service.checkout(db, gateway, reservation.id, test_user.id)

    assert result.created is False
    assert result.order.id == winner.id
    assert result.requires_payment is False
    assert len(lookups) == 2
    assert await count_orders(session_factory) == 1


@pytest.mark.asyncio
async def test_checkout_expired_reservation(client: AsyncClient, auth_headers, paid_event, test_user, session_factory):
    async with session_factory() as db:
        reservation = await reservation_service.reserve(
            db,
            paid_event.id,
            test_user.id,
            [{"tier_id": paid_event.tiers["GA"].id, "quantity": 1}],
            now=utcnow() - timedelta(minutes=11),
        )

    response = await client.post("/api/v1/checkout", json={"reservation_id": reservation.id}, headers=auth_headers)
    assert response.status_code == 410
    assert response.json()["code"] == "RESERVATION_EXPIRED"
    assert await count_orders(session_factory) == 0


@pytest.mark.asyncio
async def test_checkout_cancelled_reservation(client: AsyncClient, auth_headers, paid_event):
    reservation_id = await reserve(client, auth_headers, paid_event)
    await client.delete(f"/api/v1/reservations/{reservation_id}", headers=auth_headers)

    response = await client.post("/api/v1/checkout", json={"reservation_id": reservation_id}, headers=auth_headers)
    assert response.status_code == 410


@pytest.mark.asyncio
async def test_checkout_someone_elses_reservation(client: AsyncClient, auth_headers, other_headers, paid_event):
    reservation_id = await reserve(client, auth_headers, paid_event)
    response = await client.post("/api/v1/checkout", json={"reservation_id": reservation_id}, headers=other_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_checkout_unknown_reservation(client: AsyncClient, auth_headers):
    response = await client.post("/api/v1/checkout", json={"reservation_id": "nope"}, headers=auth_headers)
    assert response.status_code == 404
    assert response.json()["code"] == "RESERVATION_NOT_FOUND"


@pytest.mark.asyncio
async def test_checkout_requires_auth(client: AsyncClient):
    response = await client.post("/api/v1/checkout", json={"reservation_id": "x"})
    assert response.status_code == 401
