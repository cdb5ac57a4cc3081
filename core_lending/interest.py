"""
Interest Rate Normalization Module

Loan rates reach the engine in mixed formats: decimal fractions (0.12),
percentages (12) and mis-scaled percentages (1200). normalize_interest_rate
maps them to a percentage without ever substituting the product default,
so a loan keeps its creation-time rate for its whole lifecycle.
"""

from decimal import Decimal

from .money import Numeric, to_decimal


HUNDRED = Decimal('100')


def normalize_interest_rate(raw_rate: Numeric) -> Decimal:
    """
    Convert a stored rate to a percentage (12.5 means 12.5%).

    A raw value of exactly 1 is read as a fraction (100%), not as 1%.

    Examples:
        0.0067 -> 0.67, 0.12 -> 12, 1200 -> 12, 15 -> 15
    """
    rate = to_decimal(raw_rate)

    if rate <= Decimal('0.01'):
        # Very small decimal (0.0067 for 0.67%)
        return rate * HUNDRED
    elif rate <= Decimal('1'):
        # Decimal fraction (0.12 for 12%)
        return rate * HUNDRED
    elif rate > HUNDRED:
        # Mis-scaled percentage (1200 instead of 12)
        return rate / HUNDRED
    return rate


def to_stored_rate(rate_percent: Numeric) -> Decimal:
    """Percentage back to the decimal fraction the loans table stores"""
    return to_decimal(rate_percent) / HUNDRED
