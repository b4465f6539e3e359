"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Optional

CENT = Decimal("0.01")
RATE_PLACES = Decimal("0.000001")
ZERO = Decimal("0.00")


def to_cents(value: Decimal) -> Decimal:
    """Quantize a monetary amount to the cent"""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_rate(value: Decimal) -> Decimal:
    return value.quantize(RATE_PLACES, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Transaction:
    """Categorized bank/accounting transaction owned by the transaction store"""

    id: str
    tenant_id: str
    date: date
    amount: Decimal  # signed: positive = inflow, negative = outflow
    vendor: Optional[str]
    category_ref: Optional[str]


@dataclass
class MonthlyBucket:
    """Cash flow aggregates for one calendar month"""

    month_start: date
    inflow: Decimal = ZERO
    outflow: Decimal = ZERO
    capital_expenditure: Decimal = ZERO
    net_operating_cash_flow: Decimal = ZERO
    free_cash_flow: Decimal = ZERO
    transaction_count: int = 0


@dataclass
class CashFlowReport:
    """Per-month free cash flow plus summary totals"""

    tenant_id: str
    window_months: int
    period_start: date
    period_end: date
    buckets: List[MonthlyBucket]
    avg_monthly_free_cash_flow: Decimal
    trailing_twelve_month_free_cash_flow: Decimal
    rolling_three_month_free_cash_flow: Decimal
    total_free_cash_flow: Decimal
    reserve_threshold: Decimal
    excess_cash: Decimal


class LoanStatus(str, Enum):
    ACTIVE = "active"
    PAID_OFF = "paid_off"
    UNCONFIRMED = "unconfirmed"


@dataclass
class PaymentCluster:
    """Payments to one vendor whose amounts fall inside the same tolerance band"""

    vendor: str
    vendor_key: str
    transactions: List[Transaction] = field(default_factory=list)

    @property
    def amounts(self) -> List[Decimal]:
        return [abs(t.amount) for t in self.transactions]

    @property
    def dates(self) -> List[date]:
        return [t.date for t in self.transactions]

    @property
    def occurrences(self) -> int:
        return len(self.transactions)

    @property
    def median_amount(self) -> Decimal:
        amounts = sorted(self.amounts)
        mid = len(amounts) // 2
        if len(amounts) % 2:
            return amounts[mid]
        return to_cents((amounts[mid - 1] + amounts[mid]) / 2)

    @property
    def first_date(self) -> date:
        return min(self.dates)

    @property
    def last_date(self) -> date:
        return max(self.dates)


@dataclass
class LoanCandidate:
    """Qualifying payment cluster with its estimated loan terms"""

    cluster: PaymentCluster
    status: LoanStatus
    monthly_payment: Decimal
    estimated_principal: Decimal
    estimated_annual_rate: Decimal
    payments_made: int


@dataclass
class DetectedLoan:
    """Loan record as exposed by the detector (mirror of the persisted row)"""

    id: str
    tenant_id: str
    vendor: str
    estimated_principal: Decimal
    monthly_payment: Decimal
    estimated_annual_rate: Decimal
    occurrences: int
    first_detected_date: date
    last_seen_date: date
    status: LoanStatus
    loan_type: Optional[str] = None
    user_overridden: bool = False


@dataclass
class AmortizationRow:
    """Single period of an amortization schedule"""

    period: int
    payment: Decimal
    interest: Decimal
    principal: Decimal
    remaining_balance: Decimal


@dataclass
class LoanSchedule:
    """Payoff schedule for one loan"""

    loan_id: str
    vendor: str
    rows: List[AmortizationRow]

    @property
    def months(self) -> int:
        return len(self.rows)

    @property
    def total_interest(self) -> Decimal:
        return sum((r.interest for r in self.rows), ZERO)

    @property
    def total_paid(self) -> Decimal:
        return sum((r.payment for r in self.rows), ZERO)


@dataclass
class PayoffScenario:
    """Schedules for all loans under one payment plan"""

    extra_monthly_payment: Decimal
    schedules: List[LoanSchedule]

    @property
    def months_to_debt_free(self) -> int:
        return max((s.months for s in self.schedules), default=0)

    @property
    def total_interest(self) -> Decimal:
        return sum((s.total_interest for s in self.schedules), ZERO)


@dataclass
class PayoffComparison:
    """Baseline vs accelerated payoff"""

    strategy: str
    extra_monthly_payment: Decimal
    baseline: PayoffScenario
    accelerated: PayoffScenario

    @property
    def months_saved(self) -> int:
        return self.baseline.months_to_debt_free - self.accelerated.months_to_debt_free

    @property
    def interest_saved(self) -> Decimal:
        return self.baseline.total_interest - self.accelerated.total_interest


@dataclass
class LoanSummary:
    """Active loan as it enters the cost-of-capital computation"""

    loan_id: str
    vendor: str
    principal: Decimal
    annual_rate: Decimal
    monthly_payment: Decimal
    remaining_months: int = 0
    total_remaining_interest: Decimal = ZERO
    loan_type: Optional[str] = None


@dataclass
class ExcludedLoan:
    loan_id: str
    vendor: str
    reason: str


@dataclass
class RefinanceOpportunity:
    """Loan priced meaningfully above the market rate for its type"""

    loan_id: str
    vendor: str
    current_rate: Decimal
    market_rate: Decimal
    remaining_balance: Decimal
    current_monthly_payment: Decimal
    new_monthly_payment: Decimal
    monthly_savings: Decimal
    total_interest_savings: Decimal
    closing_costs: Decimal
    break_even_months: int


@dataclass
class CostOfCapitalReport:
    tenant_id: str
    loans: List[LoanSummary]
    excluded_loans: List[ExcludedLoan]
    total_debt: Decimal
    total_monthly_payment: Decimal
    weighted_average_cost_of_capital: Decimal
    payoff: PayoffComparison
    total_annual_debt_service: Decimal = ZERO
    refinance_opportunities: List[RefinanceOpportunity] = field(default_factory=list)


@dataclass
class ValuationEstimate:
    """Inputs and result of a valuation before it is persisted"""

    methodology: str
    trailing_cash_flow: Decimal
    multiple: Decimal
    estimated_value: Decimal
    low_multiple: Optional[Decimal] = None
    high_multiple: Optional[Decimal] = None
    value_low: Optional[Decimal] = None
    value_high: Optional[Decimal] = None


@dataclass
class ValuationSnapshotRecord:
    """Immutable, timestamped valuation"""

    id: str
    tenant_id: str
    computed_at: datetime
    methodology: str
    trailing_cash_flow: Decimal
    multiple: Decimal
    estimated_value: Decimal
    low_multiple: Optional[Decimal] = None
    high_multiple: Optional[Decimal] = None
    value_low: Optional[Decimal] = None
    value_high: Optional[Decimal] = None


@dataclass
class AuditEvent:
    """Best-effort audit record emitted after a state mutation"""

    action: str
    entity_type: str
    tenant_id: str
    entity_id: Optional[str] = None
    old_value: Optional[Dict[str, Any]] = None
    new_value: Optional[Dict[str, Any]] = None
