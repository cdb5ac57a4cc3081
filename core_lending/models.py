"""
Lending Data Model

Loan terms, schedule entries, payments and the loan/product records the
engine reads from the store. Schedule entries and payments are immutable
values; recalculations return new instances via dataclasses.replace().
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Optional
from enum import Enum

from .money import money, to_decimal, ZERO
from .exceptions import InvalidTermsError
from .config import get_config


class RepaymentFrequency(Enum):
    """Installment frequency configured on the loan product"""
    DAILY = "daily"            # 365 payments per year
    WEEKLY = "weekly"          # 52 payments per year
    BI_WEEKLY = "bi-weekly"    # 26 payments per year
    MONTHLY = "monthly"        # 12 payments per year
    QUARTERLY = "quarterly"    # 4 payments per year

    @property
    def periods_per_year(self) -> int:
        return {
            RepaymentFrequency.DAILY: 365,
            RepaymentFrequency.WEEKLY: 52,
            RepaymentFrequency.BI_WEEKLY: 26,
            RepaymentFrequency.MONTHLY: 12,
            RepaymentFrequency.QUARTERLY: 4,
        }[self]

    @property
    def expected_days(self) -> int:
        """Nominal days between two installments"""
        return {
            RepaymentFrequency.DAILY: 1,
            RepaymentFrequency.WEEKLY: 7,
            RepaymentFrequency.BI_WEEKLY: 14,
            RepaymentFrequency.MONTHLY: 30,
            RepaymentFrequency.QUARTERLY: 90,
        }[self]

    @classmethod
    def parse(cls, value, default: "RepaymentFrequency" = None) -> "RepaymentFrequency":
        """Parse a stored frequency; blank values fall back to default (monthly)"""
        if isinstance(value, cls):
            return value
        if not value:
            return default or cls.MONTHLY
        normalized = str(value).strip().lower().replace("_", "-")
        if normalized == "biweekly":
            normalized = "bi-weekly"
        try:
            return cls(normalized)
        except ValueError:
            raise InvalidTermsError(f"Unsupported repayment frequency: {value}") from None


class CalculationMethod(Enum):
    """How interest is charged across the term"""
    REDUCING_BALANCE = "reducing_balance"  # Interest on remaining principal
    FLAT = "flat"                          # Interest on original principal

    @classmethod
    def parse(cls, value) -> "CalculationMethod":
        if isinstance(value, cls):
            return value
        if not value:
            return cls.REDUCING_BALANCE
        normalized = str(value).strip().lower()
        aliases = {
            "declining_balance": cls.REDUCING_BALANCE,
            "flat_rate": cls.FLAT,
        }
        if normalized in aliases:
            return aliases[normalized]
        return cls(normalized)


class AmortizationMethod(Enum):
    """How principal is spread over reducing-balance installments"""
    EQUAL_INSTALLMENTS = "equal_installments"  # Level total payment
    EQUAL_PRINCIPAL = "equal_principal"        # Level principal, declining interest

    @classmethod
    def parse(cls, value) -> "AmortizationMethod":
        if isinstance(value, cls):
            return value
        if not value:
            return cls.EQUAL_INSTALLMENTS
        return cls(str(value).strip().lower())


class PaymentStatus(Enum):
    """Repayment state of a single installment"""
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"


def _as_date(value) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


@dataclass(frozen=True)
class LoanTerms:
    """Inputs for one schedule calculation"""
    principal: Decimal
    annual_interest_rate_percent: Decimal    # e.g. 12.5 for 12.5%
    term_months: int                         # Number of installments
    disbursement_date: date
    repayment_frequency: RepaymentFrequency = RepaymentFrequency.MONTHLY
    calculation_method: CalculationMethod = CalculationMethod.REDUCING_BALANCE
    amortization_method: AmortizationMethod = AmortizationMethod.EQUAL_INSTALLMENTS
    first_payment_date: Optional[date] = None

    def __post_init__(self):
        object.__setattr__(self, 'principal', to_decimal(self.principal))
        object.__setattr__(
            self, 'annual_interest_rate_percent', to_decimal(self.annual_interest_rate_percent)
        )
        object.__setattr__(self, 'disbursement_date', _as_date(self.disbursement_date))
        object.__setattr__(self, 'first_payment_date', _as_date(self.first_payment_date))
        object.__setattr__(
            self, 'repayment_frequency', RepaymentFrequency.parse(self.repayment_frequency)
        )
        object.__setattr__(
            self, 'calculation_method', CalculationMethod.parse(self.calculation_method)
        )
        object.__setattr__(
            self, 'amortization_method', AmortizationMethod.parse(self.amortization_method)
        )

    @property
    def period_rate(self) -> Decimal:
        """Interest rate per installment period as a decimal fraction"""
        return (
            self.annual_interest_rate_percent
            / Decimal('100')
            / Decimal(self.repayment_frequency.periods_per_year)
        )


@dataclass(frozen=True)
class ScheduleEntry:
    """Single installment of a loan schedule"""
    loan_id: str
    installment_number: int
    due_date: date
    principal_amount: Decimal
    interest_amount: Decimal
    fee_amount: Decimal = ZERO
    total_amount: Optional[Decimal] = None
    paid_amount: Decimal = ZERO
    outstanding_amount: Optional[Decimal] = None
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    id: Optional[str] = None

    def __post_init__(self):
        for name in ('principal_amount', 'interest_amount', 'fee_amount', 'paid_amount'):
            object.__setattr__(self, name, money(getattr(self, name)))
        if self.total_amount is None:
            total = self.principal_amount + self.interest_amount + self.fee_amount
        else:
            total = money(self.total_amount)
        object.__setattr__(self, 'total_amount', total)
        if self.outstanding_amount is None:
            outstanding = total - self.paid_amount
        else:
            outstanding = money(self.outstanding_amount)
        object.__setattr__(self, 'outstanding_amount', outstanding)
        object.__setattr__(self, 'due_date', _as_date(self.due_date))
        if not isinstance(self.payment_status, PaymentStatus):
            object.__setattr__(self, 'payment_status', PaymentStatus(self.payment_status))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        result['due_date'] = self.due_date.isoformat()
        result['payment_status'] = self.payment_status.value
        for key, value in result.items():
            if isinstance(value, Decimal):
                result[key] = str(value)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScheduleEntry':
        """Create instance from a stored row"""
        return cls(
            id=data.get('id'),
            loan_id=data['loan_id'],
            installment_number=int(data['installment_number']),
            due_date=_as_date(data['due_date']),
            principal_amount=data.get('principal_amount'),
            interest_amount=data.get('interest_amount'),
            fee_amount=data.get('fee_amount'),
            total_amount=data.get('total_amount'),
            paid_amount=data.get('paid_amount'),
            outstanding_amount=data.get('outstanding_amount'),
            payment_status=PaymentStatus(data.get('payment_status') or 'unpaid'),
        )


@dataclass(frozen=True)
class Payment:
    """Historical repayment; never altered once recorded"""
    id: str
    loan_id: str
    payment_amount: Decimal
    payment_date: date
    schedule_id: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'payment_amount', money(self.payment_amount))
        object.__setattr__(self, 'payment_date', _as_date(self.payment_date))
        if self.payment_amount <= 0:
            raise ValueError(f"Payment amount must be positive, got {self.payment_amount}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'loan_id': self.loan_id,
            'payment_amount': str(self.payment_amount),
            'payment_date': self.payment_date.isoformat(),
            'schedule_id': self.schedule_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Payment':
        return cls(
            id=data['id'],
            loan_id=data['loan_id'],
            payment_amount=data['payment_amount'],
            payment_date=data['payment_date'],
            schedule_id=data.get('schedule_id'),
        )


@dataclass
class LoanProduct:
    """Product configuration a loan was issued under (read-only to the engine)"""
    repayment_frequency: RepaymentFrequency = RepaymentFrequency.MONTHLY
    calculation_method: CalculationMethod = CalculationMethod.REDUCING_BALANCE
    amortization_method: AmortizationMethod = AmortizationMethod.EQUAL_INSTALLMENTS
    default_nominal_interest_rate: Optional[Decimal] = None  # Informational only

    def __post_init__(self):
        self.repayment_frequency = RepaymentFrequency.parse(self.repayment_frequency)
        self.calculation_method = CalculationMethod.parse(self.calculation_method)
        self.amortization_method = AmortizationMethod.parse(self.amortization_method)
        if self.default_nominal_interest_rate is not None:
            self.default_nominal_interest_rate = to_decimal(self.default_nominal_interest_rate)


@dataclass
class LoanRecord:
    """Loan row as stored, including its product configuration"""
    id: str
    principal_amount: Decimal
    interest_rate: Decimal              # Raw stored rate, format not guaranteed
    term_months: int
    disbursement_date: date
    outstanding_balance: Decimal = ZERO
    status: str = "disbursed"
    product: LoanProduct = field(default_factory=LoanProduct)

    def __post_init__(self):
        self.principal_amount = money(self.principal_amount)
        self.interest_rate = to_decimal(self.interest_rate)
        self.outstanding_balance = money(self.outstanding_balance)
        self.disbursement_date = _as_date(self.disbursement_date)
        self.term_months = int(self.term_months)

    def to_terms(self, rate_percent: Decimal) -> LoanTerms:
        """Build schedule inputs using an already normalized percentage rate"""
        return LoanTerms(
            principal=self.principal_amount,
            annual_interest_rate_percent=rate_percent,
            term_months=self.term_months,
            disbursement_date=self.disbursement_date,
            repayment_frequency=self.product.repayment_frequency,
            calculation_method=self.product.calculation_method,
            amortization_method=self.product.amortization_method,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        product = {
            'repayment_frequency': self.product.repayment_frequency.value,
            'calculation_method': self.product.calculation_method.value,
            'amortization_method': self.product.amortization_method.value,
        }
        if self.product.default_nominal_interest_rate is not None:
            product['default_nominal_interest_rate'] = str(self.product.default_nominal_interest_rate)
        return {
            'id': self.id,
            'principal_amount': str(self.principal_amount),
            'interest_rate': str(self.interest_rate),
            'term_months': self.term_months,
            'disbursement_date': self.disbursement_date.isoformat(),
            'outstanding_balance': str(self.outstanding_balance),
            'status': self.status,
            'product': product,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LoanRecord':
        """Create instance from dictionary"""
        product_data = data.get('product') or {}
        settings = get_config()
        return cls(
            id=data['id'],
            principal_amount=data['principal_amount'],
            interest_rate=data['interest_rate'],
            term_months=data['term_months'],
            disbursement_date=data['disbursement_date'],
            outstanding_balance=data.get('outstanding_balance'),
            status=data.get('status') or '',
            product=LoanProduct(
                repayment_frequency=(
                    product_data.get('repayment_frequency') or settings.default_repayment_frequency
                ),
                calculation_method=(
                    product_data.get('calculation_method') or settings.default_calculation_method
                ),
                amortization_method=product_data.get('amortization_method'),
                default_nominal_interest_rate=product_data.get('default_nominal_interest_rate'),
            ),
        )


@dataclass
class HarmonizationResult:
    """Outcome of harmonizing one loan"""
    loan_id: str
    total_scheduled_amount: Decimal
    total_paid_amount: Decimal
    calculated_outstanding: Decimal
    corrected_interest_rate: Decimal    # Percentage, e.g. 12 for 12%
    days_in_arrears: int
    schedule_consistent: bool           # State before harmonization
    schedule_regenerated: bool = False


@dataclass
class DerivedLoanStatus:
    """Display status computed from loan and schedule state"""
    status: str
    days_in_arrears: Optional[int] = None
    overpaid_amount: Optional[Decimal] = None
