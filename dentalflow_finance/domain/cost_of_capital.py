"""Cost of capital - blended loan rate and payoff strategy comparison"""

from decimal import Decimal, InvalidOperation, ROUND_CEILING
from typing import Any, Dict, List, Optional, Tuple

from dentalflow_finance.domain.amortization import build_schedule, level_payment, simulate_payoff
from dentalflow_finance.domain.exceptions import InvariantViolationError
from dentalflow_finance.domain.models import (
    CostOfCapitalReport,
    ExcludedLoan,
    LoanSummary,
    PayoffComparison,
    PayoffScenario,
    RefinanceOpportunity,
    ZERO,
    to_cents,
    to_rate,
)

AVALANCHE = "avalanche"
SNOWBALL = "snowball"
STRATEGIES = (AVALANCHE, SNOWBALL)


def parse_extra_payment(value: Any) -> Decimal:
    """Extra monthly payment as a non-negative decimal; absent or invalid input means 0"""
    if value is None or isinstance(value, bool):
        return ZERO
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return ZERO
    if not amount.is_finite() or amount < 0:
        return ZERO
    return to_cents(amount)


def order_loans(loans: List[LoanSummary], strategy: str = AVALANCHE) -> List[LoanSummary]:
    """
    Order loans for receiving extra payments.

    avalanche: highest rate first (ties: smaller balance first)
    snowball:  smallest balance first (ties: higher rate first)
    """
    if strategy == AVALANCHE:
        return sorted(loans, key=lambda l: (-l.annual_rate, l.principal, l.loan_id))
    if strategy == SNOWBALL:
        return sorted(loans, key=lambda l: (l.principal, -l.annual_rate, l.loan_id))
    raise ValueError(f"Unknown payoff strategy: {strategy}")


def weighted_average_cost(loans: List[LoanSummary]) -> Decimal:
    """Principal-weighted average annual rate; 0 when there is no debt"""
    total_principal = sum((l.principal for l in loans), ZERO)
    if total_principal <= 0:
        return Decimal("0")
    weighted = sum((l.annual_rate * l.principal for l in loans), ZERO)
    return to_rate(weighted / total_principal)


def partition_valid_loans(loans: List[LoanSummary]) -> Tuple[List[LoanSummary], List[ExcludedLoan]]:
    """
    Split loans into those with a terminating schedule and those without.

    Included loans get remaining_months and total_remaining_interest from
    their baseline schedule.
    """
    included: List[LoanSummary] = []
    excluded: List[ExcludedLoan] = []
    for loan in loans:
        try:
            schedule = build_schedule(loan)
        except InvariantViolationError as e:
            excluded.append(ExcludedLoan(loan_id=loan.loan_id, vendor=loan.vendor, reason=str(e)))
            continue
        loan.remaining_months = schedule.months
        loan.total_remaining_interest = schedule.total_interest
        included.append(loan)
    return included, excluded


def compare_payoff(
    loans: List[LoanSummary],
    extra_monthly_payment: Decimal,
    strategy: str = AVALANCHE,
) -> PayoffComparison:
    """Baseline schedules vs schedules with the extra payment applied in strategy order"""
    ordered = order_loans(loans, strategy)
    baseline = PayoffScenario(
        extra_monthly_payment=ZERO,
        schedules=[build_schedule(loan) for loan in ordered],
    )
    accelerated = simulate_payoff(ordered, extra_monthly_payment)
    return PayoffComparison(
        strategy=strategy,
        extra_monthly_payment=extra_monthly_payment,
        baseline=baseline,
        accelerated=accelerated,
    )


def market_rate_for(
    loan_type: Optional[str],
    market_rates: Dict[str, Decimal],
    default_rate: Decimal,
) -> Decimal:
    if loan_type is not None and loan_type in market_rates:
        return market_rates[loan_type]
    return default_rate


def find_refinance_opportunities(
    loans: List[LoanSummary],
    market_rates: Dict[str, Decimal],
    default_rate: Decimal,
    rate_margin: Decimal = Decimal("0.01"),
    closing_cost_pct: Decimal = Decimal("0.015"),
) -> List[RefinanceOpportunity]:
    """
    Loans that would be cheaper refinanced at the market rate for their type.

    A loan qualifies when its rate exceeds market + rate_margin. The new
    payment is the level payment at market over the loan's remaining months;
    closing costs are a percentage of the balance and break-even is the
    number of months of savings needed to recover them. Expects loans that
    already went through partition_valid_loans.
    """
    opportunities = []
    for loan in loans:
        market = market_rate_for(loan.loan_type, market_rates, default_rate)
        if loan.annual_rate <= market + rate_margin or loan.principal <= 0 or loan.remaining_months <= 0:
            continue

        new_payment = level_payment(loan.principal, market, loan.remaining_months)
        monthly_savings = loan.monthly_payment - new_payment
        if monthly_savings <= 0:
            continue

        refinanced = build_schedule(
            LoanSummary(
                loan_id=loan.loan_id,
                vendor=loan.vendor,
                principal=loan.principal,
                annual_rate=market,
                monthly_payment=new_payment,
            )
        )
        closing_costs = to_cents(loan.principal * closing_cost_pct)
        break_even = (closing_costs / monthly_savings).to_integral_value(rounding=ROUND_CEILING)

        opportunities.append(
            RefinanceOpportunity(
                loan_id=loan.loan_id,
                vendor=loan.vendor,
                current_rate=loan.annual_rate,
                market_rate=to_rate(market),
                remaining_balance=loan.principal,
                current_monthly_payment=loan.monthly_payment,
                new_monthly_payment=new_payment,
                monthly_savings=monthly_savings,
                total_interest_savings=to_cents(loan.total_remaining_interest - refinanced.total_interest),
                closing_costs=closing_costs,
                break_even_months=int(break_even),
            )
        )
    return sorted(opportunities, key=lambda o: (-o.total_interest_savings, o.loan_id))


def build_cost_of_capital_report(
    tenant_id: str,
    loans: List[LoanSummary],
    extra_monthly_payment: Decimal = ZERO,
    strategy: str = AVALANCHE,
    market_rates: Optional[Dict[str, Decimal]] = None,
    default_market_rate: Decimal = Decimal("0.075"),
    rate_margin: Decimal = Decimal("0.01"),
    closing_cost_pct: Decimal = Decimal("0.015"),
) -> CostOfCapitalReport:
    """
    Main entry point: blended cost of capital, payoff comparison and
    refinance screening.

    Loans whose schedules violate amortization invariants are reported in
    excluded_loans and left out of every aggregate.
    """
    included, excluded = partition_valid_loans(loans)
    total_monthly_payment = to_cents(sum((l.monthly_payment for l in included), ZERO))

    return CostOfCapitalReport(
        tenant_id=tenant_id,
        loans=included,
        excluded_loans=excluded,
        total_debt=to_cents(sum((l.principal for l in included), ZERO)),
        total_monthly_payment=total_monthly_payment,
        weighted_average_cost_of_capital=weighted_average_cost(included),
        payoff=compare_payoff(included, extra_monthly_payment, strategy),
        total_annual_debt_service=total_monthly_payment * 12,
        refinance_opportunities=find_refinance_opportunities(
            included, market_rates or {}, default_market_rate, rate_margin, closing_cost_pct
        ),
    )
