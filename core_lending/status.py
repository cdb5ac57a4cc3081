"""
Loan Status Module

Derives the status shown for a loan from its stored status, balance,
payments and schedule, and groups statuses into categories used for
filtering (closed, active, pending, ...).
"""

from decimal import Decimal
from datetime import date
from typing import Dict, List, Optional, Sequence
from enum import Enum

from .models import LoanRecord, ScheduleEntry, Payment, DerivedLoanStatus
from .allocation import total_paid
from .arrears import days_in_arrears
from .money import money, ZERO


class StatusCategory(Enum):
    """Coarse grouping of loan and savings statuses"""
    ACTIVE = "active"
    PENDING = "pending"
    APPROVED = "approved"
    CLOSED = "closed"
    PROBLEM = "problem"
    UNKNOWN = "unknown"


STATUS_CATEGORIES: Dict[str, StatusCategory] = {
    # Loan/application statuses
    "pending": StatusCategory.PENDING,
    "under_review": StatusCategory.PENDING,
    "pending_approval": StatusCategory.PENDING,
    "approved": StatusCategory.APPROVED,
    "pending_disbursement": StatusCategory.APPROVED,
    "disbursed": StatusCategory.ACTIVE,
    "active": StatusCategory.ACTIVE,
    "activated": StatusCategory.ACTIVE,
    "overpaid": StatusCategory.ACTIVE,
    "in_arrears": StatusCategory.PROBLEM,
    "overdue": StatusCategory.PROBLEM,
    "closed": StatusCategory.CLOSED,
    "fully_paid": StatusCategory.CLOSED,
    "rejected": StatusCategory.CLOSED,
    "withdrawn": StatusCategory.CLOSED,
    "written_off": StatusCategory.CLOSED,
    # Savings account statuses
    "created": StatusCategory.PENDING,
    "inactive": StatusCategory.CLOSED,
    "dormant": StatusCategory.CLOSED,
    "unknown": StatusCategory.UNKNOWN,
}


def derive_loan_status(
    loan: LoanRecord,
    schedule: Sequence[ScheduleEntry],
    payments: Sequence[Payment] = (),
    as_of: Optional[date] = None
) -> DerivedLoanStatus:
    """
    Compute the display status of a loan. First matching rule wins:

    1. overpaid: stored outstanding balance is negative, or payments exceed
       the loan amount (schedule total, or principal when there is no schedule)
    2. in_arrears: some installment is past due and unpaid
    3. disbursed is shown as active
    4. anything else passes through unchanged ('' becomes unknown)
    """
    if loan is None:
        return DerivedLoanStatus(status="unknown")

    raw_status = (loan.status or "").strip().lower()

    paid = total_paid(payments)
    loan_amount = money(sum((entry.total_amount for entry in schedule), Decimal('0')))
    if loan_amount == ZERO:
        loan_amount = loan.principal_amount

    if loan.outstanding_balance < 0 or paid > loan_amount:
        overpaid_amount = max(-loan.outstanding_balance, paid - loan_amount)
        return DerivedLoanStatus(status="overpaid", overpaid_amount=money(overpaid_amount))

    arrears = days_in_arrears(schedule, as_of)
    if arrears > 0:
        return DerivedLoanStatus(status="in_arrears", days_in_arrears=arrears)

    if raw_status == "disbursed":
        return DerivedLoanStatus(status="active")

    return DerivedLoanStatus(status=raw_status or "unknown")


def status_category(status: Optional[str]) -> StatusCategory:
    """Category of a status string; unrecognized statuses are UNKNOWN"""
    normalized = (status or "unknown").strip().lower()
    return STATUS_CATEGORIES.get(normalized, StatusCategory.UNKNOWN)


def status_label(status: Optional[str]) -> str:
    """Display text for a status, e.g. in_arrears -> IN ARREARS"""
    normalized = (status or "unknown").strip().lower()
    if normalized == "activated":
        return "ACTIVE"
    return normalized.replace("_", " ").upper()


def statuses_in_category(category: StatusCategory) -> List[str]:
    """All known statuses belonging to a category"""
    return [status for status, cat in STATUS_CATEGORIES.items() if cat == category]


def is_closed(status: Optional[str]) -> bool:
    return status_category(status) == StatusCategory.CLOSED


def is_active(status: Optional[str]) -> bool:
    return status_category(status) == StatusCategory.ACTIVE


def is_pending(status: Optional[str]) -> bool:
    return status_category(status) == StatusCategory.PENDING


def is_problem(status: Optional[str]) -> bool:
    return status_category(status) == StatusCategory.PROBLEM


def is_approved(status: Optional[str]) -> bool:
    return status_category(status) == StatusCategory.APPROVED
