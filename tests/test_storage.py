"""
Tests for loan stores and transaction support
"""

import pytest
import tempfile
import os
from decimal import Decimal
from datetime import date

from core_lending.models import (
    LoanRecord, LoanProduct, ScheduleEntry, Payment, PaymentStatus, RepaymentFrequency
)
from core_lending.storage import InMemoryLoanStore, SQLiteLoanStore, create_store
from core_lending.exceptions import PersistenceError, LoanNotFoundError


def make_loan(loan_id: str = "LOAN001") -> LoanRecord:
    return LoanRecord(
        id=loan_id,
        principal_amount=Decimal('120000'),
        interest_rate=Decimal('0.12'),
        term_months=3,
        disbursement_date=date(2024, 3, 15),
        outstanding_balance=Decimal('120000'),
        status="disbursed",
        product=LoanProduct(repayment_frequency=RepaymentFrequency.WEEKLY),
    )


def make_entries(loan_id: str = "LOAN001"):
    return [
        ScheduleEntry(
            loan_id=loan_id,
            installment_number=number,
            due_date=date(2024, 3 + number, 15),
            principal_amount=Decimal('40000'),
            interest_amount=Decimal('1200'),
        )
        for number in (3, 1, 2)
    ]


@pytest.fixture(params=["memory", "sqlite"])
def store(request):
    if request.param == "memory":
        yield InMemoryLoanStore()
        return

    with tempfile.TemporaryDirectory() as temp_dir:
        sqlite_store = SQLiteLoanStore(os.path.join(temp_dir, "lending.db"))
        yield sqlite_store
        sqlite_store.close()


class TestLoanRows:
    """Test loan persistence"""

    def test_loan_round_trip(self, store):
        store.save_loan(make_loan())

        loaded = store.fetch_loan("LOAN001")

        assert loaded == make_loan()
        assert loaded.product.repayment_frequency == RepaymentFrequency.WEEKLY

    def test_missing_loan(self, store):
        assert store.fetch_loan("NOPE") is None

    def test_fetch_loans(self, store):
        store.save_loan(make_loan("LOAN001"))
        store.save_loan(make_loan("LOAN002"))
        assert sorted(loan.id for loan in store.fetch_loans()) == ["LOAN001", "LOAN002"]

    def test_update_loan(self, store):
        store.save_loan(make_loan())

        store.update_loan("LOAN001", {
            'interest_rate': Decimal('0.12'),
            'outstanding_balance': Decimal('98765.43'),
        })

        loaded = store.fetch_loan("LOAN001")
        assert loaded.outstanding_balance == Decimal('98765.43')
        assert loaded.principal_amount == Decimal('120000.00')

    def test_update_missing_loan(self, store):
        with pytest.raises(LoanNotFoundError, match="LOAN404"):
            store.update_loan("LOAN404", {'outstanding_balance': Decimal('1')})

    def test_blank_product_fields_use_defaults(self, store):
        loan = make_loan()
        store.save_loan(loan)
        store.update_loan(loan.id, {'product': {'repayment_frequency': '', 'calculation_method': None}})

        loaded = store.fetch_loan(loan.id)

        assert loaded.product.repayment_frequency == RepaymentFrequency.MONTHLY


class TestScheduleRows:
    """Test schedule persistence"""

    def test_insert_assigns_ids_and_fetch_orders(self, store):
        inserted = store.insert_schedule_entries(make_entries())

        assert all(entry.id for entry in inserted)
        assert len({entry.id for entry in inserted}) == 3

        fetched = store.fetch_schedule("LOAN001")
        assert [entry.installment_number for entry in fetched] == [1, 2, 3]
        assert fetched[0].total_amount == Decimal('41200.00')

    def test_schedules_are_per_loan(self, store):
        store.insert_schedule_entries(make_entries("LOAN001"))
        store.insert_schedule_entries(make_entries("LOAN002"))

        assert store.delete_schedule("LOAN001") == 3
        assert store.fetch_schedule("LOAN001") == []
        assert len(store.fetch_schedule("LOAN002")) == 3

    def test_delete_empty_schedule(self, store):
        assert store.delete_schedule("LOAN001") == 0

    def test_update_schedule_entry(self, store):
        inserted = store.insert_schedule_entries(make_entries())
        target = next(entry for entry in inserted if entry.installment_number == 1)

        store.update_schedule_entry(target.id, {
            'paid_amount': Decimal('41200'),
            'outstanding_amount': Decimal('0'),
            'payment_status': PaymentStatus.PAID,
        })

        updated = store.fetch_schedule("LOAN001")[0]
        assert updated.id == target.id
        assert updated.payment_status == PaymentStatus.PAID
        assert updated.paid_amount == Decimal('41200.00')
        assert updated.outstanding_amount == Decimal('0.00')

    def test_update_missing_entry(self, store):
        with pytest.raises(PersistenceError, match="not found"):
            store.update_schedule_entry("missing", {'paid_amount': Decimal('1')})


class TestPaymentRows:
    """Test payment persistence"""

    def test_payments_ordered_by_date(self, store):
        store.save_payment(Payment("PMT002", "LOAN001", Decimal('200'), date(2024, 5, 1)))
        store.save_payment(Payment("PMT001", "LOAN001", Decimal('100'), date(2024, 4, 1)))
        store.save_payment(Payment("PMT003", "LOAN002", Decimal('300'), date(2024, 4, 1)))

        payments = store.fetch_payments("LOAN001")

        assert [payment.id for payment in payments] == ["PMT001", "PMT002"]
        assert payments[0].payment_amount == Decimal('100')


class TestTransactions:
    """Test atomic blocks"""

    def test_rollback_restores_schedule(self, store):
        store.save_loan(make_loan())
        original = store.insert_schedule_entries(make_entries())

        with pytest.raises(RuntimeError):
            with store.atomic():
                store.delete_schedule("LOAN001")
                store.update_loan("LOAN001", {'outstanding_balance': Decimal('0')})
                raise RuntimeError("boom")

        assert sorted(entry.id for entry in store.fetch_schedule("LOAN001")) == \
            sorted(entry.id for entry in original)
        assert store.fetch_loan("LOAN001").outstanding_balance == Decimal('120000.00')

    def test_commit_keeps_changes(self, store):
        store.save_loan(make_loan())
        store.insert_schedule_entries(make_entries())

        with store.atomic():
            store.delete_schedule("LOAN001")
            store.update_loan("LOAN001", {'outstanding_balance': Decimal('0')})

        assert store.fetch_schedule("LOAN001") == []
        assert store.fetch_loan("LOAN001").outstanding_balance == Decimal('0.00')


class TestSQLiteStore:
    """Test SQLite specific behaviour"""

    def test_data_survives_reopen(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "lending.db")
            store = SQLiteLoanStore(db_path)
            store.save_loan(make_loan())
            store.insert_schedule_entries(make_entries())
            store.close()

            reopened = SQLiteLoanStore(db_path)
            assert reopened.fetch_loan("LOAN001") == make_loan()
            assert len(reopened.fetch_schedule("LOAN001")) == 3
            reopened.close()

    def test_duplicate_payment_is_persistence_error(self):
        store = SQLiteLoanStore()
        payment = Payment("PMT001", "LOAN001", Decimal('100'), date(2024, 4, 1))
        store.save_payment(payment)

        with pytest.raises(PersistenceError, match="save_payment failed"):
            store.save_payment(payment)
        store.close()


class TestCreateStore:
    """Test building stores from database URLs"""

    def test_memory_url(self):
        assert isinstance(create_store("memory://"), InMemoryLoanStore)

    def test_sqlite_url(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            store = create_store(f"sqlite:///{os.path.join(temp_dir, 'lending.db')}")
            assert isinstance(store, SQLiteLoanStore)
            store.close()

    def test_unsupported_url(self):
        with pytest.raises(PersistenceError, match="Unsupported database URL"):
            create_store("postgresql://localhost/lending")
