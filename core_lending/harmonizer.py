"""
Loan Harmonization Module

Repairs a loan's stored state against what its terms say it should be:
normalizes the interest rate, regenerates an inconsistent schedule,
replays payment history onto it, and writes back the outstanding balance.

Each loan is harmonized inside a single store transaction and under a
per-loan lock, so a failure part way through leaves the loan untouched and
two harmonizations of the same loan in one process never interleave.
Locks are process-local; separate processes sharing a database still need
to serialize by loan id themselves.
"""

from datetime import date
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence
from contextlib import contextmanager
import threading
import uuid

from .models import LoanRecord, LoanTerms, Payment, ScheduleEntry, HarmonizationResult
from .storage import LoanStore
from .schedule import generate_schedule
from .interest import normalize_interest_rate, to_stored_rate
from .validation import is_schedule_consistent
from .allocation import reallocate_payments, total_paid
from .arrears import days_in_arrears
from .money import money_sum, ZERO
from .exceptions import LendingError, LoanNotFoundError
from .logging_config import get_logger, log_action


logger = get_logger("core_lending.harmonizer")


@dataclass
class BatchHarmonizationReport:
    """Outcome of harmonizing every loan in the store"""
    correlation_id: str
    results: List[HarmonizationResult] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)  # loan_id -> error message

    @property
    def harmonized_count(self) -> int:
        return len(self.results)

    @property
    def failed_count(self) -> int:
        return len(self.failures)

    @property
    def regenerated_count(self) -> int:
        return sum(1 for result in self.results if result.schedule_regenerated)


class LoanHarmonizer:
    """
    Harmonizes loans against a LoanStore
    """

    def __init__(self, store: LoanStore):
        self.store = store
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _loan_lock(self, loan_id: str):
        """Serialize harmonizations of the same loan"""
        with self._locks_guard:
            lock = self._locks.setdefault(loan_id, threading.Lock())
        with lock:
            yield

    def harmonize(self, loan: LoanRecord, as_of: Optional[date] = None) -> HarmonizationResult:
        """
        Harmonize one loan.

        Args:
            loan: Loan as stored, including product configuration
            as_of: Date arrears are measured against (defaults to today)

        Returns:
            HarmonizationResult with the recomputed totals

        Raises:
            InvalidTermsError: If the loan terms cannot produce a schedule
            PersistenceError: If any store read or write fails (nothing is committed)
        """
        today = as_of or date.today()

        with self._loan_lock(loan.id):
            try:
                with self.store.atomic():
                    result = self._harmonize(loan, today)
            except LendingError as e:
                log_action(
                    logger, "error", f"Harmonization of loan {loan.id} failed: {e}",
                    loan_id=loan.id, action="harmonize_failed"
                )
                raise

        log_action(
            logger, "info", f"Harmonized loan {loan.id}",
            loan_id=loan.id, action="harmonize",
            extra={
                "schedule_consistent": result.schedule_consistent,
                "schedule_regenerated": result.schedule_regenerated,
                "corrected_interest_rate": result.corrected_interest_rate,
                "calculated_outstanding": result.calculated_outstanding,
                "days_in_arrears": result.days_in_arrears,
            }
        )
        return result

    def harmonize_loan(self, loan_id: str, as_of: Optional[date] = None) -> HarmonizationResult:
        """Load a loan by id and harmonize it"""
        loan = self.store.fetch_loan(loan_id)
        if not loan:
            raise LoanNotFoundError(f"Loan {loan_id} not found")
        return self.harmonize(loan, as_of)

    def harmonize_all(self, as_of: Optional[date] = None) -> BatchHarmonizationReport:
        """
        Harmonize every loan in the store, one at a time.

        A failing loan is recorded in the report and the loop moves on; loans
        already harmonized stay committed.
        """
        report = BatchHarmonizationReport(correlation_id=str(uuid.uuid4()))
        loans = self.store.fetch_loans()

        log_action(
            logger, "info", f"Harmonizing {len(loans)} loans",
            action="harmonize_all_started", correlation_id=report.correlation_id
        )

        for loan in loans:
            try:
                report.results.append(self.harmonize(loan, as_of))
            except LendingError as e:
                report.failures[loan.id] = str(e)

        log_action(
            logger, "info",
            f"Harmonized {report.harmonized_count} loans, {report.failed_count} failed",
            action="harmonize_all_finished", correlation_id=report.correlation_id,
            extra={"regenerated": report.regenerated_count, "failed": list(report.failures)}
        )
        return report

    def _harmonize(self, loan: LoanRecord, today: date) -> HarmonizationResult:
        # Keep the loan's own rate, only fix its format
        corrected_rate = normalize_interest_rate(loan.interest_rate)
        terms = loan.to_terms(corrected_rate)

        schedule = self.store.fetch_schedule(loan.id)
        payments = self.store.fetch_payments(loan.id)
        paid = total_paid(payments)

        consistent = is_schedule_consistent(schedule, terms, corrected_rate)
        if not consistent:
            logger.info(f"Schedule of loan {loan.id} is inconsistent, regenerating")
            self._regenerate_schedule(loan.id, terms, payments)
            schedule = self.store.fetch_schedule(loan.id)

        total_scheduled = money_sum(entry.total_amount for entry in schedule)
        outstanding = max(ZERO, total_scheduled - paid)
        arrears = days_in_arrears(schedule, today)

        self.store.update_loan(loan.id, {
            'interest_rate': to_stored_rate(corrected_rate),
            'outstanding_balance': outstanding,
        })

        return HarmonizationResult(
            loan_id=loan.id,
            total_scheduled_amount=total_scheduled,
            total_paid_amount=paid,
            calculated_outstanding=outstanding,
            corrected_interest_rate=corrected_rate,
            days_in_arrears=arrears,
            schedule_consistent=consistent,
            schedule_regenerated=not consistent,
        )

    def _regenerate_schedule(self, loan_id: str, terms: LoanTerms,
                             payments: Sequence[Payment]) -> List[ScheduleEntry]:
        """Replace the stored schedule and replay payments onto it"""
        removed = self.store.delete_schedule(loan_id)
        inserted = self.store.insert_schedule_entries(generate_schedule(terms, loan_id))
        logger.debug(
            f"Replaced {removed} schedule entries of loan {loan_id} with {len(inserted)}"
        )

        if not payments:
            return inserted

        reallocated = reallocate_payments(inserted, payments)
        originals = {entry.id: entry for entry in inserted}
        for entry in reallocated:
            if entry != originals[entry.id]:
                self.store.update_schedule_entry(entry.id, {
                    'paid_amount': entry.paid_amount,
                    'outstanding_amount': entry.outstanding_amount,
                    'payment_status': entry.payment_status,
                })
        return reallocated
