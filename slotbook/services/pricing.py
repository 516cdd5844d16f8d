"""
Pricing resolver.

Pure functions: no database access, no clock reads. Callers pass the candidate
promotions already ordered by creation (``created_at``, then ``id``); that
order is the tie-break when two promotions give the same discount.
"""

from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from slotbook.models.promotion import PromotionType

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def _to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_promotion_active(promotion, now: datetime) -> bool:
    if not promotion.is_active:
        return False
    now = _as_utc(now)
    return _as_utc(promotion.start_date) <= now <= _as_utc(promotion.end_date)


def discounted_unit_price(base_price, promotion) -> Decimal:
    base = _to_decimal(base_price)
    value = _to_decimal(promotion.value)
    kind = PromotionType(promotion.type)

    if kind == PromotionType.PercentageDiscount:
        price = base * (1 - value / HUNDRED)
    else:
        price = base - value
    return max(price, ZERO)


def select_promotion(base_price, candidate_promotions: Iterable, now: datetime):
    """Pick the active promotion with the largest per-participant discount."""
    base = _to_decimal(base_price)
    best = None
    best_discount: Optional[Decimal] = None

    for promotion in candidate_promotions:
        if not is_promotion_active(promotion, now):
            continue
        discount = base - discounted_unit_price(base, promotion)
        # Strictly greater: on a tie the earlier promotion wins
        if best_discount is None or discount > best_discount:
            best, best_discount = promotion, discount
    return best


def resolve_price(base_price, participants: int, candidate_promotions: Iterable, now: datetime) -> Decimal:
    """
    Total price for ``participants`` places at ``base_price`` each.

    At most one promotion is applied. Rounding happens once, on the final
    total, half-up to two decimal places.
    """
    if participants < 1:
        raise ValueError("participants must be at least 1")

    base = _to_decimal(base_price)
    promotion = select_promotion(base, candidate_promotions, now)
    unit_price = discounted_unit_price(base, promotion) if promotion is not None else base

    return (unit_price * participants).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
