"""
Money Utilities

All currency amounts are Decimal rounded half-up to cents. Values coming
back from the database may be float (SQLite) or Decimal (PostgreSQL), so
everything is routed through to_decimal before arithmetic.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Union

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

Number = Union[Decimal, float, int, str]


def to_decimal(value: Optional[Number]) -> Decimal:
    """
    Coerce a number to Decimal without float noise.

    Example:
        >>> to_decimal(0.1)
        Decimal('0.1')
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def money(value: Optional[Number]) -> Decimal:
    """
    Round to cents, half-up.

    Example:
        >>> money(Decimal("400") * Decimal("0.08"))
        Decimal('32.00')
    """
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def total(values: Iterable[Optional[Number]]) -> Decimal:
    return money(sum((to_decimal(v) for v in values), ZERO))
