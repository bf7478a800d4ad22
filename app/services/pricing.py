"""
Centralized product pricing calculations.

Every product carries a margin percentage over its supplier price. The price
shown to buyers (final_price) is always derived from those two values and is
rounded half-up to a whole number of currency units.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional, Union

Number = Union[Decimal, int, float, str]


def to_decimal(value: Optional[Number]) -> Optional[Decimal]:
    """Coerce a price-like value to Decimal, None for blanks and junk."""
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    try:
        # str() first so floats keep their printed value (0.1 -> Decimal("0.1"))
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def calculate_final_price(price: Optional[Number], margin: Optional[Number] = 0) -> Optional[Decimal]:
    """
    Apply the margin and round half-up to a whole number.

    Examples:
        100, 20 -> 120
        100, 25 -> 125
        9.99, 5 -> 10
    """
    base = to_decimal(price)
    if base is None:
        return None

    markup = to_decimal(margin) or Decimal("0")
    target = base * (Decimal("1") + markup / Decimal("100"))
    return target.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def calculate_legacy_final_price(price: Optional[Number], margin: Optional[Number] = 0) -> Optional[Decimal]:
    """
    Previous pricing policy: margin applied, rounded to 2 decimal places.

    Kept for auditing old listings and for data migrations comparing both policies.
    """
    base = to_decimal(price)
    if base is None:
        return None

    markup = to_decimal(margin) or Decimal("0")
    target = base * (Decimal("1") + markup / Decimal("100"))
    return target.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
