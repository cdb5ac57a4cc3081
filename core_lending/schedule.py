"""
Schedule Generation Module

Builds loan repayment schedules from loan terms: reducing balance with equal
installments (French method) or equal principal, and flat-rate interest.
Pure functions, no storage access.
"""

from decimal import Decimal
from datetime import date, timedelta
from typing import List
import calendar
import logging

from .models import (
    LoanTerms, ScheduleEntry, RepaymentFrequency, CalculationMethod,
    AmortizationMethod, PaymentStatus
)
from .money import money, ZERO
from .exceptions import InvalidTermsError


logger = logging.getLogger("core_lending.schedule")

# More than 10% per period usually means the rate was stored in the wrong format
SUSPICIOUS_PERIOD_RATE = Decimal('0.1')


def validate_terms(terms: LoanTerms) -> None:
    """Reject terms that cannot produce a schedule"""
    if terms.principal <= 0:
        raise InvalidTermsError(f"Principal must be positive, got {terms.principal}")
    if terms.term_months <= 0:
        raise InvalidTermsError(f"Term must be at least one installment, got {terms.term_months}")
    if terms.annual_interest_rate_percent < 0:
        raise InvalidTermsError(
            f"Interest rate cannot be negative, got {terms.annual_interest_rate_percent}"
        )
    if terms.disbursement_date is None:
        raise InvalidTermsError("Disbursement date is required")


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, handling month-end edge cases"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def advance_date(start_date: date, frequency: RepaymentFrequency, periods: int) -> date:
    """Move a date forward by a number of repayment periods"""
    if frequency == RepaymentFrequency.DAILY:
        return start_date + timedelta(days=periods)
    elif frequency == RepaymentFrequency.WEEKLY:
        return start_date + timedelta(days=7 * periods)
    elif frequency == RepaymentFrequency.BI_WEEKLY:
        return start_date + timedelta(days=14 * periods)
    elif frequency == RepaymentFrequency.MONTHLY:
        return add_months(start_date, periods)
    elif frequency == RepaymentFrequency.QUARTERLY:
        return add_months(start_date, 3 * periods)
    else:
        raise InvalidTermsError(f"Unsupported repayment frequency: {frequency}")


def installment_due_date(terms: LoanTerms, installment_number: int) -> date:
    """
    Due date of an installment.

    Dates are always computed from the anchor rather than from the previous
    installment, so a 31st-of-month start does not drift to the 28th.
    """
    if terms.first_payment_date:
        return advance_date(
            terms.first_payment_date, terms.repayment_frequency, installment_number - 1
        )
    return advance_date(terms.disbursement_date, terms.repayment_frequency, installment_number)


def calculate_level_payment(principal: Decimal, period_rate: Decimal, periods: int) -> Decimal:
    """
    Equal installment amount (unrounded).

    Standard loan payment formula: P * [c(1+c)^n] / [(1+c)^n - 1]
    where P = principal, c = periodic rate, n = number of installments.
    """
    if periods <= 0:
        raise InvalidTermsError(f"Term must be at least one installment, got {periods}")
    if period_rate == Decimal('0'):
        return principal / Decimal(periods)
    factor = (Decimal('1') + period_rate) ** periods
    return principal * (period_rate * factor) / (factor - Decimal('1'))


def generate_schedule(terms: LoanTerms, loan_id: str = "") -> List[ScheduleEntry]:
    """
    Generate the repayment schedule for a loan.

    Args:
        terms: Loan terms with the rate already normalized to a percentage
        loan_id: Loan the entries belong to

    Returns:
        Entries numbered 1..term_months, all unpaid, with the final installment
        absorbing rounding drift so principal amounts sum to the principal.

    Raises:
        InvalidTermsError: If principal or term is not positive or rate is negative
    """
    validate_terms(terms)

    principal = money(terms.principal)
    periods = terms.term_months
    period_rate = terms.period_rate

    if period_rate > SUSPICIOUS_PERIOD_RATE:
        logger.warning(
            f"Very high periodic rate {period_rate} for loan {loan_id or '<new>'}; "
            f"annual rate {terms.annual_interest_rate_percent}% may be mis-scaled"
        )

    level_payment = calculate_level_payment(principal, period_rate, periods)
    equal_principal = money(principal / Decimal(periods))
    remaining_balance = principal
    schedule = []

    for installment_number in range(1, periods + 1):
        if terms.calculation_method == CalculationMethod.FLAT:
            interest_amount = money(principal * period_rate)
            principal_amount = equal_principal
        elif terms.amortization_method == AmortizationMethod.EQUAL_PRINCIPAL:
            interest_amount = money(remaining_balance * period_rate)
            principal_amount = equal_principal
        else:
            interest_amount = money(remaining_balance * period_rate)
            principal_amount = money(level_payment - interest_amount)

        # Final installment pays off exactly what is left
        if installment_number == periods or principal_amount > remaining_balance:
            principal_amount = remaining_balance

        remaining_balance = remaining_balance - principal_amount

        schedule.append(ScheduleEntry(
            loan_id=loan_id,
            installment_number=installment_number,
            due_date=installment_due_date(terms, installment_number),
            principal_amount=principal_amount,
            interest_amount=interest_amount,
            fee_amount=ZERO,
            paid_amount=ZERO,
            payment_status=PaymentStatus.UNPAID,
        ))

    logger.debug(
        f"Generated {len(schedule)} installments for loan {loan_id or '<new>'} "
        f"({terms.repayment_frequency.value}, {terms.calculation_method.value})"
    )
    return schedule
