"""
Money arithmetic shared by the promo counter and the loyalty ledger.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_discount(
    kind: str,
    value: Optional[Decimal],
    subtotal: Decimal,
    free_item_value: Optional[Decimal] = None,
) -> Decimal:
    """
    Discount for `kind` in {percentage, fixed, free_item}, never more than
    the amount it is applied to.
    """
    subtotal = to_money(subtotal)
    if subtotal <= ZERO:
        return ZERO

    if kind == "percentage":
        percent = min(Decimal(str(value or 0)), Decimal(100))
        discount = subtotal * percent / Decimal(100)
    elif kind == "fixed":
        discount = Decimal(str(value or 0))
    elif kind == "free_item":
        discount = Decimal(str(free_item_value or 0))
    else:
        raise ValueError(f"Unknown discount kind: {kind}")

    return min(to_money(max(discount, ZERO)), subtotal)


PROMO_DISCOUNT_KINDS = {
    "percentage": "percentage",
    "fixed": "fixed",
    "free_ticket": "free_item",
}

REWARD_DISCOUNT_KINDS = {
    "discount_percentage": "percentage",
    "discount_fixed": "fixed",
    "free_ticket": "free_item",
    "free_concession": "free_item",
}
