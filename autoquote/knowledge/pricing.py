"""
pricing.py - Quantity-tiered quoted unit price

Tiers are checked highest-first and are not cumulative:
    qty ≥ 100 → 15% off, qty ≥ 50 → 10% off, qty ≥ 20 → 5% off.
The discounted price is clamped into [min_price, max_price] when those are
set, then rounded half-up to currency precision.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

# (minimum quantity, discount) - highest threshold first
DISCOUNT_TIERS = (
    (100, Decimal("0.15")),
    (50, Decimal("0.10")),
    (20, Decimal("0.05")),
)

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Round half-up to 2 decimals (floats go through str to avoid binary drift)."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def discount_for_quantity(quantity: int) -> Decimal:
    for min_qty, discount in DISCOUNT_TIERS:
        if quantity >= min_qty:
            return discount
    return Decimal("0")


def quoted_price(base_price: float, quantity: int,
                 min_price: Optional[float] = None,
                 max_price: Optional[float] = None) -> float:
    """Unit price for `quantity` units. min_price > max_price is not defended against."""
    price = Decimal(str(base_price)) * (1 - discount_for_quantity(quantity))
    if min_price is not None and price < Decimal(str(min_price)):
        price = Decimal(str(min_price))
    if max_price is not None and price > Decimal(str(max_price)):
        price = Decimal(str(max_price))
    return float(to_money(price))
