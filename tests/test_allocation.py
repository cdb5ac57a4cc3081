"""
Test suite for repayment allocation

Tests the installment waterfall used when replaying payment history and
the component split used for a single repayment.
"""

import pytest
from decimal import Decimal
from datetime import date

from core_lending.models import ScheduleEntry, Payment, PaymentStatus
from core_lending.allocation import (
    reallocate_payments, total_paid, installment_status,
    allocate_repayment, validate_allocation, LoanBalances, RepaymentAllocation, RepaymentStrategy
)


def make_entry(number: int, amount: str = '1000', **overrides) -> ScheduleEntry:
    values = dict(
        id=f"SCH{number:03d}",
        loan_id="LOAN001",
        installment_number=number,
        due_date=date(2024, number, 15),
        principal_amount=Decimal(amount),
        interest_amount=Decimal('0'),
    )
    values.update(overrides)
    return ScheduleEntry(**values)


def make_payment(amount: str, payment_id: str = "PMT001") -> Payment:
    return Payment(id=payment_id, loan_id="LOAN001",
                   payment_amount=Decimal(amount), payment_date=date(2024, 2, 1))


class TestReallocatePayments:
    """Test the oldest-first installment waterfall"""

    def setup_method(self):
        """Set up test fixtures"""
        self.schedule = [make_entry(1), make_entry(2), make_entry(3)]

    def test_partial_spill_into_second_installment(self):
        """1500 pays the first installment and half of the second"""
        result = reallocate_payments(self.schedule, [make_payment('1500')])

        assert [entry.paid_amount for entry in result] == [
            Decimal('1000.00'), Decimal('500.00'), Decimal('0.00')
        ]
        assert [entry.outstanding_amount for entry in result] == [
            Decimal('0.00'), Decimal('500.00'), Decimal('1000.00')
        ]
        assert [entry.payment_status for entry in result] == [
            PaymentStatus.PAID, PaymentStatus.PARTIAL, PaymentStatus.UNPAID
        ]

    def test_inputs_not_modified(self):
        """Reallocation returns new entries"""
        result = reallocate_payments(self.schedule, [make_payment('1500')])

        assert result[0] is not self.schedule[0]
        assert self.schedule[0].paid_amount == Decimal('0')
        assert self.schedule[0].payment_status == PaymentStatus.UNPAID

    def test_multiple_payments_are_pooled(self):
        payments = [make_payment('400', "PMT001"), make_payment('700', "PMT002")]
        result = reallocate_payments(self.schedule, payments)

        assert result[0].payment_status == PaymentStatus.PAID
        assert result[1].paid_amount == Decimal('100.00')

    def test_conservation_when_underpaid(self):
        """Everything paid is applied when payments do not exceed the schedule"""
        payments = [make_payment('1234.56')]
        result = reallocate_payments(self.schedule, payments)

        applied = sum((entry.paid_amount for entry in result), Decimal('0'))
        assert applied == total_paid(payments)

    def test_overpayment_caps_at_schedule_total(self):
        """Excess payment is not applied anywhere"""
        result = reallocate_payments(self.schedule, [make_payment('5000')])

        applied = sum((entry.paid_amount for entry in result), Decimal('0'))
        assert applied == Decimal('3000.00')
        assert all(entry.payment_status == PaymentStatus.PAID for entry in result)

    def test_orders_by_installment_number(self):
        shuffled = [self.schedule[2], self.schedule[0], self.schedule[1]]
        result = reallocate_payments(shuffled, [make_payment('1000')])

        assert [entry.installment_number for entry in result] == [1, 2, 3]
        assert result[0].payment_status == PaymentStatus.PAID
        assert result[2].payment_status == PaymentStatus.UNPAID

    def test_within_tolerance_counts_as_paid(self):
        """One cent short is still paid"""
        result = reallocate_payments(self.schedule, [make_payment('999.99')])
        assert result[0].payment_status == PaymentStatus.PAID
        assert result[0].outstanding_amount == Decimal('0.01')

    def test_no_payments(self):
        result = reallocate_payments(self.schedule, [])
        assert result == self.schedule

    def test_entries_past_pool_keep_prior_state(self):
        """Once the pool runs out later entries are returned untouched"""
        schedule = [
            make_entry(1),
            make_entry(2),
            make_entry(3, paid_amount=Decimal('200'), payment_status=PaymentStatus.PARTIAL),
        ]
        result = reallocate_payments(schedule, [make_payment('1500')])

        assert result[2].paid_amount == Decimal('200.00')
        assert result[2].payment_status == PaymentStatus.PARTIAL

    def test_installment_status(self):
        assert installment_status(Decimal('0'), Decimal('100')) == PaymentStatus.UNPAID
        assert installment_status(Decimal('50'), Decimal('100')) == PaymentStatus.PARTIAL
        assert installment_status(Decimal('100'), Decimal('100')) == PaymentStatus.PAID
        assert installment_status(Decimal('99'), Decimal('100'), paid_tolerance='1') == PaymentStatus.PAID


class TestAllocateRepayment:
    """Test component allocation strategies"""

    def setup_method(self):
        """Set up test fixtures"""
        self.balances = LoanBalances(
            outstanding_principal=Decimal('1000'),
            unpaid_interest=Decimal('100'),
            unpaid_fees=Decimal('50'),
            unpaid_penalties=Decimal('20'),
        )

    def test_default_strategy_settles_penalties_first(self):
        allocation = allocate_repayment(Decimal('150'), self.balances)

        assert allocation.penalties == Decimal('20.00')
        assert allocation.fees == Decimal('50.00')
        assert allocation.interest == Decimal('80.00')
        assert allocation.principal == Decimal('0')
        assert allocation.total == Decimal('150.00')

    def test_principal_first_strategy(self):
        allocation = allocate_repayment(
            Decimal('1050'), self.balances, RepaymentStrategy.PRINCIPAL_INTEREST_FEES_PENALTIES
        )

        assert allocation.principal == Decimal('1000.00')
        assert allocation.interest == Decimal('50.00')
        assert allocation.fees == Decimal('0')
        assert allocation.penalties == Decimal('0')

    def test_interest_principal_strategy(self):
        allocation = allocate_repayment(
            Decimal('1120'), self.balances, RepaymentStrategy.INTEREST_PRINCIPAL_PENALTIES_FEES
        )

        assert allocation.interest == Decimal('100.00')
        assert allocation.principal == Decimal('1000.00')
        assert allocation.penalties == Decimal('20.00')
        assert allocation.fees == Decimal('0')

    def test_overpayment_leaves_remainder_unallocated(self):
        allocation = allocate_repayment(Decimal('2000'), self.balances)
        assert allocation.total == Decimal('1170.00')

    def test_strategy_order(self):
        assert RepaymentStrategy.INTEREST_PENALTIES_FEES_PRINCIPAL.order == [
            "interest", "penalties", "fees", "principal"
        ]

    def test_valid_allocation(self):
        allocation = allocate_repayment(Decimal('500'), self.balances)
        assert validate_allocation(allocation, self.balances) == []

    def test_invalid_allocation(self):
        allocation = RepaymentAllocation(principal=Decimal('1500'), fees=Decimal('-1'))
        errors = validate_allocation(allocation, self.balances)

        assert "Principal allocation exceeds outstanding principal" in errors
        assert "fees allocation cannot be negative" in errors
