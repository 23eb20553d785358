"""
Tests for the pricing engine and the quote endpoint.
"""

from datetime import datetime, timezone, timedelta
from types import SimpleNamespace

import pytest
from httpx import AsyncClient

from gatehouse.core.errors import TierNotFoundError
from gatehouse.services.pricing_engine import calculate_price, merge_lines, percent_of
from gatehouse.services.promo_service import PromoRule, PromoterRule

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_event(**overrides):
    fields = dict(
        id="evt",
        currency="INR",
        is_rsvp=False,
        promoter_discounts_enabled=False,
        promoter_discount_type="percent",
        promoter_discount_value=0,
        platform_fee_type="percent",
        platform_fee_value=None,
        payment_fee_bps=None,
        fee_tax_bps=None,
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


def make_tier(tier_id, price, **overrides):
    fields = dict(
        id=tier_id,
        event_id="evt",
        name=tier_id.upper(),
        entry_type="general",
        price=price,
        scheduled_prices=None,
        promoter_enabled=False,
        promoter_discount_type=None,
        promoter_discount_value=None,
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


def tiers_by_id(*tiers):
    return {tier.id: tier for tier in tiers}


def fee(breakdown, kind):
    return next(f["amount"] for f in breakdown.fees if f["kind"] == kind)


def test_percent_of_rounds_half_up():
    assert percent_of(25, 5000) == 13
    assert percent_of(199, 250) == 5
    assert percent_of(1, 250) == 0
    assert percent_of(100000, 1800) == 18000


def test_merge_lines_keeps_first_seen_order():
    lines = merge_lines([
        {"tier_id": "vip", "quantity": 1},
        {"tier_id": "ga", "quantity": 2},
        SimpleNamespace(tier_id="vip", quantity=2),
    ])
    assert [(line.tier_id, line.quantity) for line in lines] == [("vip", 3), ("ga", 2)]


def test_base_price_with_fees():
    """Platform 5%, processing 2.5%, then 18% tax on subtotal plus fees."""
    breakdown = calculate_price(
        make_event(), tiers_by_id(make_tier("ga", 50000)), [{"tier_id": "ga", "quantity": 2}], now=NOW
    )
    assert breakdown.subtotal == 100000
    assert fee(breakdown, "platform") == 5000
    assert fee(breakdown, "payment_processing") == 2500
    assert fee(breakdown, "tax") == 19350
    assert breakdown.fee_total == 26850
    assert breakdown.grand_total == 126850
    assert breakdown.is_free is False


def test_flat_platform_fee():
    event = make_event(platform_fee_type="flat", platform_fee_value=2000)
    breakdown = calculate_price(event, tiers_by_id(make_tier("ga", 50000)), [{"tier_id": "ga", "quantity": 2}], now=NOW)
    assert fee(breakdown, "platform") == 2000
    assert fee(breakdown, "tax") == 18810
    assert breakdown.grand_total == 123310


def test_percent_promo_code():
    promo = PromoRule(id="p1", code="SAVE10", discount_type="percent", discount_value=1000)
    breakdown = calculate_price(
        make_event(), tiers_by_id(make_tier("ga", 50000)), [{"tier_id": "ga", "quantity": 2}], promo=promo, now=NOW
    )
    assert breakdown.discounts == [{"kind": "promo", "code": "SAVE10", "amount": 10000}]
    assert breakdown.discount_total == 10000
    assert breakdown.grand_total == 114165


def test_promo_restricted_to_tier():
    """A tier-scoped promo only discounts its own lines."""
    promo = PromoRule(id="p1", code="VIP10", discount_type="percent", discount_value=1000, tier_ids=("vip",))
    breakdown = calculate_price(
        make_event(),
        tiers_by_id(make_tier("ga", 50000), make_tier("vip", 150000)),
        [{"tier_id": "ga", "quantity": 1}, {"tier_id": "vip", "quantity": 1}],
        promo=promo,
        now=NOW,
    )
    assert breakdown.discount_total == 15000


def test_flat_promo_capped_and_fees_waived():
    """A discount larger than the basket makes it free; a free basket has no fees."""
    promo = PromoRule(id="p1", code="COMP", discount_type="flat", discount_value=500000)
    breakdown = calculate_price(
        make_event(), tiers_by_id(make_tier("ga", 50000)), [{"tier_id": "ga", "quantity": 2}], promo=promo, now=NOW
    )
    assert breakdown.discount_total == 100000
    assert breakdown.fees == []
    assert breakdown.grand_total == 0
    assert breakdown.is_free is True
    assert any(entry["rule"] == "fees_waived" for entry in breakdown.audit_ledger)


def test_promoter_then_promo():
    """Promoter discount applies per opted-in tier, the promo code after it."""
    event = make_event(promoter_discounts_enabled=True, promoter_discount_value=1000)
    tiers = tiers_by_id(make_tier("ga", 50000, promoter_enabled=True), make_tier("vip", 150000))
    promo = PromoRule(id="p1", code="FIVE", discount_type="flat", discount_value=5000)

    breakdown = calculate_price(
        event,
        tiers,
        [{"tier_id": "ga", "quantity": 2}, {"tier_id": "vip", "quantity": 1}],
        promo=promo,
        promoter=PromoterRule(id="r1", code="DJ-ALEX"),
        now=NOW,
    )
    assert breakdown.subtotal == 250000
    assert breakdown.discounts == [
        {"kind": "promoter", "code": "DJ-ALEX", "amount": 10000},
        {"kind": "promo", "code": "FIVE", "amount": 5000},
    ]
    # 18% of 252625 is 45472.5
    assert fee(breakdown, "tax") == 45473
    assert breakdown.grand_total == 298098


def test_promoter_flat_capped_at_unit_price():
    event = make_event(promoter_discounts_enabled=True)
    tier = make_tier("ga", 50000, promoter_enabled=True, promoter_discount_type="flat", promoter_discount_value=60000)
    breakdown = calculate_price(
        event,
        tiers_by_id(tier),
        [{"tier_id": "ga", "quantity": 2}],
        promoter=PromoterRule(id="r1", code="DJ"),
        now=NOW,
    )
    assert breakdown.discount_total == 100000
    assert breakdown.grand_total == 0


def test_promoter_ignored_when_event_disabled():
    tier = make_tier("ga", 50000, promoter_enabled=True)
    breakdown = calculate_price(
        make_event(),
        tiers_by_id(tier),
        [{"tier_id": "ga", "quantity": 1}],
        promoter=PromoterRule(id="r1", code="DJ"),
        now=NOW,
    )
    assert breakdown.discount_total == 0
    assert any(entry["rule"] == "promoter_skipped" for entry in breakdown.audit_ledger)


def test_scheduled_price_window():
    """The active window overrides the base price; past windows are ignored."""
    tier = make_tier("ga", 50000, scheduled_prices=[
        {"price": 10000, "starts_at": "2026-01-01T00:00:00Z", "ends_at": "2026-02-01T00:00:00Z"},
        {"price": 40000, "starts_at": "2026-05-01T00:00:00Z", "ends_at": "2026-07-01T00:00:00Z"},
    ])
    breakdown = calculate_price(make_event(), tiers_by_id(tier), [{"tier_id": "ga", "quantity": 1}], now=NOW)
    assert breakdown.items[0]["unit_price"] == 40000
    assert breakdown.subtotal == 40000

    later = calculate_price(
        make_event(), tiers_by_id(tier), [{"tier_id": "ga", "quantity": 1}], now=NOW + timedelta(days=60)
    )
    assert later.items[0]["unit_price"] == 50000


def test_rsvp_event_is_free():
    breakdown = calculate_price(
        make_event(is_rsvp=True), tiers_by_id(make_tier("ga", 50000)), [{"tier_id": "ga", "quantity": 3}], now=NOW
    )
    assert breakdown.items[0]["unit_price"] == 0
    assert breakdown.grand_total == 0
    assert breakdown.fees == []


def test_tier_of_another_event_rejected():
    stranger = make_tier("ga", 50000, event_id="other")
    with pytest.raises(TierNotFoundError):
        calculate_price(make_event(), tiers_by_id(stranger), [{"tier_id": "ga", "quantity": 1}], now=NOW)


def test_audit_ledger_stays_internal():
    breakdown = calculate_price(
        make_event(), tiers_by_id(make_tier("ga", 50000)), [{"tier_id": "ga", "quantity": 1}], now=NOW
    )
    assert breakdown.audit_ledger[-1]["rule"] == "total"
    assert "audit_ledger" not in breakdown.public_dict()


@pytest.mark.asyncio
async def test_quote_endpoint(client: AsyncClient, paid_event):
    """Quotes need no login and hold no inventory."""
    response = await client.post(
        "/api/v1/pricing/quote",
        json={"event_id": paid_event.id, "items": [{"tier_id": paid_event.tiers["GA"].id, "quantity": 2}]},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["grand_total"] == 126850
    assert data["promo_error"] is None
    assert "audit_ledger" not in data

    event = await client.get(f"/api/v1/events/{paid_event.id}")
    ga = next(t for t in event.json()["tiers"] if t["name"] == "GA")
    assert ga["remaining"] == 100


@pytest.mark.asyncio
async def test_quote_with_promo_code(client: AsyncClient, paid_event, add_promo):
    await add_promo(paid_event.id, "SAVE10")
    response = await client.post(
        "/api/v1/pricing/quote",
        json={
            "event_id": paid_event.id,
            "items": [{"tier_id": paid_event.tiers["GA"].id, "quantity": 2}],
            "promo_code": " save10 ",
        },
    )
    data = response.json()
    assert data["discount_total"] == 10000
    assert data["grand_total"] == 114165


@pytest.mark.asyncio
async def test_quote_unknown_promo_is_soft_error(client: AsyncClient, paid_event):
    """A bad code is reported, not fatal."""
    response = await client.post(
        "/api/v1/pricing/quote",
        json={
            "event_id": paid_event.id,
            "items": [{"tier_id": paid_event.tiers["GA"].id, "quantity": 2}],
            "promo_code": "NOPE",
        },
    )
    assert response.status_code == 200
    data = response.json()
    assert data["promo_error"] == "Promo code not found"
    assert data["discount_total"] == 0
    assert data["grand_total"] == 126850


@pytest.mark.asyncio
async def test_quote_exhausted_and_expired_promos(client: AsyncClient, paid_event, add_promo):
    await add_promo(paid_event.id, "USEDUP", max_redemptions=1, redemption_count=1)
    await add_promo(paid_event.id, "OLD", ends_at=datetime.now(timezone.utc) - timedelta(days=1))
    items = [{"tier_id": paid_event.tiers["GA"].id, "quantity": 1}]

    used = await client.post(
        "/api/v1/pricing/quote", json={"event_id": paid_event.id, "items": items, "promo_code": "USEDUP"}
    )
    assert used.json()["promo_error"] == "Promo code usage limit reached"

    old = await client.post(
        "/api/v1/pricing/quote", json={"event_id": paid_event.id, "items": items, "promo_code": "OLD"}
    )
    assert old.json()["promo_error"] == "Promo code has expired"


@pytest.mark.asyncio
async def test_quote_unknown_event(client: AsyncClient):
    response = await client.post(
        "/api/v1/pricing/quote",
        json={"event_id": "nope", "items": [{"tier_id": "x", "quantity": 1}]},
    )
    assert response.status_code == 404
    assert response.json()["code"] == "EVENT_NOT_FOUND"
