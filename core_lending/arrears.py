"""
Arrears Calculation Module

Days in arrears are counted from the oldest installment that is past due
and not fully paid.
"""

from datetime import date
from typing import List, Optional, Sequence

from .models import ScheduleEntry, PaymentStatus


def overdue_entries(schedule: Sequence[ScheduleEntry], as_of: Optional[date] = None) -> List[ScheduleEntry]:
    """Entries due before `as_of` (default today) that are not paid"""
    today = as_of or date.today()
    return [
        entry for entry in schedule
        if entry.due_date < today and entry.payment_status != PaymentStatus.PAID
    ]


def days_in_arrears(schedule: Sequence[ScheduleEntry], as_of: Optional[date] = None) -> int:
    """
    Days since the earliest overdue installment fell due.

    Returns 0 when nothing is overdue, otherwise at least 1.
    """
    today = as_of or date.today()
    overdue = overdue_entries(schedule, today)
    if not overdue:
        return 0

    earliest_due = min(entry.due_date for entry in overdue)
    return max(1, (today - earliest_due).days)


def effective_payment_status(entry: ScheduleEntry, as_of: Optional[date] = None) -> PaymentStatus:
    """Stored status, promoted to OVERDUE for unpaid or partial entries past due"""
    today = as_of or date.today()
    if entry.payment_status != PaymentStatus.PAID and entry.due_date < today:
        return PaymentStatus.OVERDUE
    return entry.payment_status
