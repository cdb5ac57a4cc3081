"""
Money Helpers Module

Decimal conversion and rounding for monetary amounts. NEVER uses float for
money: every amount passes through Decimal(str(value)) and is rounded
HALF_UP to cents.
"""

from decimal import Decimal, ROUND_HALF_UP, getcontext
from typing import Iterable, Union

# Set global decimal context for financial precision
getcontext().prec = 28

CENT = Decimal('0.01')
ZERO = Decimal('0.00')

Numeric = Union[Decimal, int, float, str]


def to_decimal(value: Numeric) -> Decimal:
    """Convert a stored value to Decimal without rounding (None becomes zero)"""
    if value is None:
        return Decimal('0')
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def money(value: Numeric) -> Decimal:
    """Always return a 2-decimal Decimal with HALF_UP rounding"""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def money_sum(values: Iterable[Numeric]) -> Decimal:
    """Sum amounts exactly, then round once"""
    total = Decimal('0')
    for value in values:
        total += to_decimal(value)
    return money(total)
