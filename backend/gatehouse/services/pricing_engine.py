"""
Pricing engine.

`calculate_price` is a pure function of (event, tiers, items, resolved codes,
clock). It never touches inventory or usage counters; codes are looked up and
validated by `promo_service`, and usage is only counted when an order is
finalized.

Rule order
==========
1. Unit price per tier. An active scheduled price window overrides the base
   price.
2. Promoter discount, per line. Needs a valid promoter code, the event's
   `promoter_discounts_enabled` flag and the tier's `promoter_enabled`
   opt-in. Percent (basis points) of the line, or flat per unit capped at the
   unit price. Tier settings override the event defaults.
3. Promo code on the lines it applies to (all tiers, or its `tier_ids`),
   after promoter discounts. Percent of that amount, or flat capped at it.
4. Discount total is capped at the subtotal.
5. Fees on the discounted subtotal: platform fee (percent or flat), payment
   processing fee (percent), then tax on discounted subtotal plus those fees.
   A zero discounted subtotal carries no fees.

Amounts are integers in minor units. Percentages are basis points and every
percentage is rounded half-up to a whole minor unit.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Mapping, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.core.config import get_settings
from gatehouse.core.errors import InvalidQuantityError, TierNotFoundError
from gatehouse.models.event import DiscountType
from gatehouse.services import event_service, promo_service
from gatehouse.services.promo_service import PromoRule, PromoterRule

settings = get_settings()


@dataclass(frozen=True)
class LineRequest:
    tier_id: str
    quantity: int


@dataclass
class PriceBreakdown:
    items: list[dict]
    subtotal: int
    discounts: list[dict]
    discount_total: int
    fees: list[dict]
    fee_total: int
    grand_total: int
    currency: str
    is_free: bool
    promo_error: Optional[str] = None
    promo: Optional[PromoRule] = None
    promoter: Optional[PromoterRule] = None
    audit_ledger: list[dict] = field(default_factory=list)

    def public_dict(self) -> dict:
        """Client-facing view. The audit ledger and resolved rules stay internal."""
        return {
            "items": self.items,
            "subtotal": self.subtotal,
            "discounts": self.discounts,
            "discount_total": self.discount_total,
            "fees": self.fees,
            "fee_total": self.fee_total,
            "grand_total": self.grand_total,
            "currency": self.currency,
            "is_free": self.is_free,
            "promo_error": self.promo_error,
        }


def percent_of(amount: int, bps: int) -> int:
    """`bps` basis points of `amount`, rounded half-up."""
    value = Decimal(amount) * Decimal(bps) / Decimal(10000)
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def merge_lines(items: Sequence[Any]) -> list[LineRequest]:
    """Collapse repeated tier ids into one line, keeping first-seen order."""
    merged: dict[str, int] = {}
    for item in items:
        tier_id = item["tier_id"] if isinstance(item, Mapping) else item.tier_id
        quantity = item["quantity"] if isinstance(item, Mapping) else item.quantity
        merged[tier_id] = merged.get(tier_id, 0) + int(quantity)
    return [LineRequest(tier_id=k, quantity=v) for k, v in merged.items()]


def _parse_ts(value) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def effective_unit_price(tier, now: datetime) -> tuple[int, Optional[dict]]:
    for window in tier.scheduled_prices or []:
        starts = _parse_ts(window.get("starts_at"))
        ends = _parse_ts(window.get("ends_at"))
        if (starts is None or starts <= now) and (ends is None or now < ends):
            return int(window["price"]), window
    return int(tier.price), None


def _platform_fee(event, amount: int) -> int:
    if event.platform_fee_type == DiscountType.FLAT:
        return int(event.platform_fee_value or 0)
    bps = event.platform_fee_value if event.platform_fee_value is not None else settings.PLATFORM_FEE_BPS
    return percent_of(amount, bps)


def calculate_price(
    event,
    tiers: Mapping[str, Any],
    items: Sequence[Any],
    promo: Optional[PromoRule] = None,
    promoter: Optional[PromoterRule] = None,
    promo_error: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PriceBreakdown:
    now = now or datetime.now(timezone.utc)
    ledger: list[dict] = []
    lines: list[dict] = []

    for request in merge_lines(items):
        tier = tiers.get(request.tier_id)
        if tier is None or tier.event_id != event.id:
            raise TierNotFoundError(f"Tier {request.tier_id} not found for this event")
        if request.quantity <= 0:
            raise InvalidQuantityError()

        unit_price, window = effective_unit_price(tier, now)
        if event.is_rsvp:
            unit_price = 0
        line_total = unit_price * request.quantity
        lines.append({
            "tier_id": tier.id,
            "tier_name": tier.name,
            "entry_type": tier.entry_type,
            "quantity": request.quantity,
            "unit_price": unit_price,
            "line_total": line_total,
        })
        ledger.append({
            "rule": "scheduled_price" if window else "base_price",
            "tier_id": tier.id,
            "unit_price": unit_price,
            "quantity": request.quantity,
            "line_total": line_total,
        })

    subtotal = sum(line["line_total"] for line in lines)
    discounts: list[dict] = []
    # Per-line amount still discountable after promoter discounts
    net_by_tier = {line["tier_id"]: line["line_total"] for line in lines}

    # Promoter discount
    if promoter is not None:
        if not event.promoter_discounts_enabled:
            ledger.append({"rule": "promoter_skipped", "code": promoter.code, "reason": "event_disabled"})
        else:
            promoter_amount = 0
            for line in lines:
                tier = tiers[line["tier_id"]]
                if not tier.promoter_enabled:
                    ledger.append({"rule": "promoter_skipped", "tier_id": tier.id, "reason": "tier_not_opted_in"})
                    continue
                discount_type = tier.promoter_discount_type or event.promoter_discount_type
                value = (
                    tier.promoter_discount_value
                    if tier.promoter_discount_value is not None
                    else event.promoter_discount_value
                )
                if discount_type == DiscountType.FLAT:
                    amount = min(value, line["unit_price"]) * line["quantity"]
                else:
                    amount = percent_of(line["line_total"], value)
                amount = min(amount, net_by_tier[tier.id])
                net_by_tier[tier.id] -= amount
                promoter_amount += amount
                ledger.append({
                    "rule": "promoter_discount",
                    "code": promoter.code,
                    "tier_id": tier.id,
                    "type": discount_type,
                    "value": value,
                    "amount": amount,
                })
            if promoter_amount:
                discounts.append({"kind": "promoter", "code": promoter.code, "amount": promoter_amount})

    # Promo code
    if promo is not None:
        applicable_ids = [
            line["tier_id"] for line in lines
            if promo.tier_ids is None or line["tier_id"] in promo.tier_ids
        ]
        applicable = sum(net_by_tier[tier_id] for tier_id in applicable_ids)
        if promo.discount_type == DiscountType.FLAT:
            promo_amount = min(promo.discount_value, applicable)
        else:
            promo_amount = min(percent_of(applicable, promo.discount_value), applicable)
        ledger.append({
            "rule": "promo_code",
            "code": promo.code,
            "type": promo.discount_type,
            "value": promo.discount_value,
            "applicable_subtotal": applicable,
            "amount": promo_amount,
        })
        if promo_amount:
            discounts.append({"kind": "promo", "code": promo.code, "amount": promo_amount})
    elif promo_error:
        ledger.append({"rule": "promo_rejected", "reason": promo_error})

    discount_total = sum(d["amount"] for d in discounts)
    if discount_total > subtotal:
        ledger.append({"rule": "discount_cap", "uncapped": discount_total, "capped": subtotal})
        discount_total = subtotal

    discounted = subtotal - discount_total
    fees: list[dict] = []
    if discounted > 0:
        platform_fee = _platform_fee(event, discounted)
        payment_bps = event.payment_fee_bps if event.payment_fee_bps is not None else settings.PAYMENT_FEE_BPS
        payment_fee = percent_of(discounted, payment_bps)
        tax_bps = event.fee_tax_bps if event.fee_tax_bps is not None else settings.FEE_TAX_BPS
        tax = percent_of(discounted + platform_fee + payment_fee, tax_bps)
        fees = [
            {"kind": "platform", "amount": platform_fee},
            {"kind": "payment_processing", "amount": payment_fee},
            {"kind": "tax", "amount": tax},
        ]
        ledger.append({
            "rule": "fees",
            "base": discounted,
            "platform": platform_fee,
            "payment_bps": payment_bps,
            "payment": payment_fee,
            "tax_bps": tax_bps,
            "tax": tax,
        })
    else:
        ledger.append({"rule": "fees_waived", "reason": "zero_subtotal"})

    fee_total = sum(f["amount"] for f in fees)
    grand_total = discounted + fee_total
    ledger.append({"rule": "total", "grand_total": grand_total, "priced_at": now.isoformat()})

    return PriceBreakdown(
        items=lines,
        subtotal=subtotal,
        discounts=discounts,
        discount_total=discount_total,
        fees=fees,
        fee_total=fee_total,
        grand_total=grand_total,
        currency=event.currency,
        is_free=grand_total == 0,
        promo_error=promo_error,
        promo=promo,
        promoter=promoter,
        audit_ledger=ledger,
    )


async def price_order(
    db: AsyncSession,
    event,
    items: Sequence[Any],
    promo_code: Optional[str] = None,
    promoter_code: Optional[str] = None,
    user_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> PriceBreakdown:
    """Resolve codes against the store, then price. Reads only."""
    now = now or datetime.now(timezone.utc)
    tiers = {tier.id: tier for tier in await event_service.get_tiers(db, event.id)}
    promo, promo_error = await promo_service.resolve_promo_code(db, event.id, promo_code, user_id, now)
    promoter, promoter_error = await promo_service.resolve_promoter_code(db, event.id, promoter_code, now)
    return calculate_price(
        event,
        tiers,
        items,
        promo=promo,
        promoter=promoter,
        promo_error=promo_error or promoter_error,
        now=now,
    )
