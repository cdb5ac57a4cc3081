"""
Repayment Allocation Module

Two levels of allocation:

- reallocate_payments() replays a loan's payment history over its schedule,
  oldest installment first (waterfall), returning new schedule entries.
- allocate_repayment() splits a single payment across penalties, fees,
  interest and principal in the order the product's repayment strategy names.
"""

from decimal import Decimal
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence
from enum import Enum

from .models import ScheduleEntry, Payment, PaymentStatus
from .money import Numeric, money, to_decimal, ZERO
from .config import get_config


def total_paid(payments: Sequence[Payment]) -> Decimal:
    """Sum of all payment amounts"""
    return money(sum((payment.payment_amount for payment in payments), Decimal('0')))


def installment_status(applied: Decimal, total: Decimal,
                       paid_tolerance: Optional[Numeric] = None) -> PaymentStatus:
    """Status of an installment after `applied` has been put against `total`"""
    if paid_tolerance is None:
        paid_tolerance = get_config().paid_tolerance
    outstanding = total - applied
    if outstanding <= to_decimal(paid_tolerance):
        return PaymentStatus.PAID
    if applied > 0:
        return PaymentStatus.PARTIAL
    return PaymentStatus.UNPAID


def reallocate_payments(
    schedule: Sequence[ScheduleEntry],
    payments: Sequence[Payment],
    paid_tolerance: Optional[Numeric] = None
) -> List[ScheduleEntry]:
    """
    Apply the pooled payment history to a schedule, oldest installment first.

    Entries reached by the pool get paid/outstanding/status recomputed from
    scratch. Once the pool is exhausted the remaining entries are returned
    unchanged, so re-running over a schedule that already carries paid
    amounts beyond the pool does not reset them.

    Args:
        schedule: Schedule entries in any order
        payments: Complete payment history of the loan
        paid_tolerance: Outstanding amount still treated as paid (config default 0.01)

    Returns:
        New entries ordered by installment number; inputs are not modified
    """
    pool = total_paid(payments)
    ordered = sorted(schedule, key=lambda entry: entry.installment_number)
    result = []

    for index, entry in enumerate(ordered):
        if pool <= 0:
            result.extend(ordered[index:])
            break

        applied = min(pool, entry.total_amount)
        result.append(replace(
            entry,
            paid_amount=applied,
            outstanding_amount=max(ZERO, entry.total_amount - applied),
            payment_status=installment_status(applied, entry.total_amount, paid_tolerance),
        ))
        pool -= applied

    return result


class RepaymentStrategy(Enum):
    """Order in which a payment settles the loan's components"""
    PENALTIES_FEES_INTEREST_PRINCIPAL = "penalties_fees_interest_principal"
    INTEREST_PRINCIPAL_PENALTIES_FEES = "interest_principal_penalties_fees"
    INTEREST_PENALTIES_FEES_PRINCIPAL = "interest_penalties_fees_principal"
    PRINCIPAL_INTEREST_FEES_PENALTIES = "principal_interest_fees_penalties"

    @property
    def order(self) -> List[str]:
        return self.value.split("_")


@dataclass
class LoanBalances:
    """Amounts currently owed, per component"""
    outstanding_principal: Decimal = ZERO
    unpaid_interest: Decimal = ZERO
    unpaid_fees: Decimal = ZERO
    unpaid_penalties: Decimal = ZERO

    def available(self, component: str) -> Decimal:
        value = {
            "principal": self.outstanding_principal,
            "interest": self.unpaid_interest,
            "fees": self.unpaid_fees,
            "penalties": self.unpaid_penalties,
        }[component]
        return max(ZERO, money(value))


@dataclass
class RepaymentAllocation:
    """How one payment was split"""
    principal: Decimal = ZERO
    interest: Decimal = ZERO
    fees: Decimal = ZERO
    penalties: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.principal + self.interest + self.fees + self.penalties

    def as_dict(self) -> Dict[str, Decimal]:
        return {
            "principal": self.principal,
            "interest": self.interest,
            "fees": self.fees,
            "penalties": self.penalties,
        }


def allocate_repayment(
    payment_amount: Numeric,
    balances: LoanBalances,
    strategy: RepaymentStrategy = RepaymentStrategy.PENALTIES_FEES_INTEREST_PRINCIPAL
) -> RepaymentAllocation:
    """
    Split a payment across loan components in strategy order.

    Any amount left after every component is settled is not allocated;
    callers treat allocation.total < payment_amount as an overpayment.
    """
    remaining = money(payment_amount)
    allocation = RepaymentAllocation()

    for component in strategy.order:
        if remaining <= 0:
            break
        allocated = min(remaining, balances.available(component))
        if allocated > 0:
            setattr(allocation, component, allocated)
            remaining -= allocated

    return allocation


def validate_allocation(allocation: RepaymentAllocation, balances: LoanBalances) -> List[str]:
    """Return a list of problems with an allocation (empty when valid)"""
    errors = []

    if allocation.principal > money(balances.outstanding_principal):
        errors.append("Principal allocation exceeds outstanding principal")
    if allocation.interest > money(balances.unpaid_interest):
        errors.append("Interest allocation exceeds unpaid interest")
    if allocation.fees > money(balances.unpaid_fees):
        errors.append("Fee allocation exceeds unpaid fees")
    if allocation.penalties > money(balances.unpaid_penalties):
        errors.append("Penalty allocation exceeds unpaid penalties")

    for component, value in allocation.as_dict().items():
        if value < 0:
            errors.append(f"{component} allocation cannot be negative")

    return errors
