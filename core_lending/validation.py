"""
Schedule Consistency Module

Decides whether a persisted schedule still matches the loan it belongs to.
An inconsistent schedule is not an error: it is the trigger for
regeneration during harmonization.
"""

from decimal import Decimal
from typing import Optional, Sequence

from .models import LoanTerms, RepaymentFrequency, ScheduleEntry
from .money import Numeric, to_decimal
from .config import get_config


def expected_days_between_payments(frequency) -> int:
    """Nominal gap in days for a repayment frequency (monthly counts as 30)"""
    return RepaymentFrequency.parse(frequency).expected_days


def max_expected_interest(terms: LoanTerms, normalized_rate: Numeric,
                          ceiling_factor: Optional[Numeric] = None) -> Decimal:
    """Upper bound on total schedule interest before a schedule is rejected"""
    if ceiling_factor is None:
        ceiling_factor = get_config().interest_ceiling_factor
    annual_rate = to_decimal(normalized_rate) / Decimal('100')
    term_years = Decimal(terms.term_months) / Decimal('12')
    return terms.principal * annual_rate * term_years * to_decimal(ceiling_factor)


def is_schedule_consistent(
    schedule: Sequence[ScheduleEntry],
    terms: LoanTerms,
    normalized_rate: Numeric,
    tolerance_days: Optional[int] = None,
    ceiling_factor: Optional[Numeric] = None
) -> bool:
    """
    Check a stored schedule against the loan terms.

    All of the following must hold:
      - the schedule has at least one entry
      - the first two due dates are one period apart (within tolerance)
      - total interest stays under principal * rate * years * ceiling factor

    Args:
        schedule: Entries ordered by installment number
        terms: Current loan terms
        normalized_rate: Annual rate as a percentage
        tolerance_days: Allowed deviation of the first gap (config default 1)
        ceiling_factor: Multiplier on simple interest (config default 3)
    """
    if not schedule:
        return False

    if tolerance_days is None:
        tolerance_days = get_config().schedule_gap_tolerance_days

    if len(schedule) >= 2:
        days_between = abs((schedule[1].due_date - schedule[0].due_date).days)
        expected_days = expected_days_between_payments(terms.repayment_frequency)
        if abs(days_between - expected_days) > tolerance_days:
            return False

    total_interest = sum((entry.interest_amount for entry in schedule), Decimal('0'))
    if total_interest > max_expected_interest(terms, normalized_rate, ceiling_factor):
        return False

    return True
