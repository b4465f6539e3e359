"""Amortization math - loan principal estimation and payoff schedules"""

from decimal import Decimal
from typing import Dict, List

from dentalflow_finance.domain.exceptions import InvariantViolationError
from dentalflow_finance.domain.models import (
    AmortizationRow,
    LoanSchedule,
    LoanSummary,
    PayoffScenario,
    ZERO,
    to_cents,
)

MAX_PERIODS = 600  # 50 years


def present_value(payment: Decimal, annual_rate: Decimal, months: int) -> Decimal:
    """
    Principal retired by a level monthly payment over `months` periods.

    Solves the standard amortization equation for principal:
        P = payment * (1 - (1 + r) ** -n) / r,  r = annual_rate / 12
    """
    if months <= 0 or payment <= 0:
        return ZERO

    monthly_rate = annual_rate / 12
    if monthly_rate == 0:
        return to_cents(payment * months)

    discount = (1 + monthly_rate) ** -months
    return to_cents(payment * (1 - discount) / monthly_rate)


def level_payment(principal: Decimal, annual_rate: Decimal, months: int) -> Decimal:
    """
    Level monthly payment that retires `principal` in `months` periods.

        payment = P * r / (1 - (1 + r) ** -n),  r = annual_rate / 12
    """
    if months <= 0 or principal <= 0:
        return ZERO

    monthly_rate = annual_rate / 12
    if monthly_rate == 0:
        return to_cents(principal / months)

    return to_cents(principal * monthly_rate / (1 - (1 + monthly_rate) ** -months))


def period_interest(balance: Decimal, annual_rate: Decimal) -> Decimal:
    return to_cents(balance * annual_rate / 12)


def validate_loan(loan: LoanSummary) -> None:
    """
    Reject loans whose schedule cannot terminate.

    Raises:
        InvariantViolationError: non-positive principal or payment, negative
            rate, or a payment that does not cover the first period's interest
    """
    if loan.principal <= 0:
        raise InvariantViolationError(f"non-positive principal {loan.principal}", loan.loan_id)
    if loan.monthly_payment <= 0:
        raise InvariantViolationError(f"non-positive payment {loan.monthly_payment}", loan.loan_id)
    if loan.annual_rate < 0:
        raise InvariantViolationError(f"negative rate {loan.annual_rate}", loan.loan_id)
    if loan.monthly_payment <= period_interest(loan.principal, loan.annual_rate):
        raise InvariantViolationError("payment does not cover monthly interest", loan.loan_id)


def build_schedule(loan: LoanSummary, max_periods: int = MAX_PERIODS) -> LoanSchedule:
    """
    Generate the baseline amortization schedule for a single loan.

    Each period: interest = balance * rate / 12, principal = payment - interest.
    The final payment is clipped to the exact remaining balance, so the
    schedule always ends at 0 and never goes negative.
    """
    validate_loan(loan)

    balance = loan.principal
    rows: List[AmortizationRow] = []

    while balance > 0:
        if len(rows) >= max_periods:
            raise InvariantViolationError(f"not paid off within {max_periods} months", loan.loan_id)

        interest = period_interest(balance, loan.annual_rate)
        payment = min(loan.monthly_payment, balance + interest)
        principal = payment - interest
        balance -= principal

        rows.append(
            AmortizationRow(
                period=len(rows) + 1,
                payment=payment,
                interest=interest,
                principal=principal,
                remaining_balance=balance,
            )
        )

    return LoanSchedule(loan_id=loan.loan_id, vendor=loan.vendor, rows=rows)


def simulate_payoff(
    ordered_loans: List[LoanSummary],
    extra_monthly_payment: Decimal,
    max_periods: int = MAX_PERIODS,
) -> PayoffScenario:
    """
    Simulate paying all loans together with an extra monthly amount.

    The extra goes to the first unpaid loan in `ordered_loans`; whatever is
    left over in the month that loan is paid off spills to the next one.
    Minimum payments of paid-off loans are not rolled over, so an extra of 0
    reproduces each loan's baseline schedule exactly.
    """
    for loan in ordered_loans:
        validate_loan(loan)

    balances: Dict[str, Decimal] = {loan.loan_id: loan.principal for loan in ordered_loans}
    rows: Dict[str, List[AmortizationRow]] = {loan.loan_id: [] for loan in ordered_loans}
    period = 0

    while any(balance > 0 for balance in balances.values()):
        period += 1
        if period > max_periods:
            raise InvariantViolationError(f"loans not paid off within {max_periods} months")

        available_extra = extra_monthly_payment
        for loan in ordered_loans:
            balance = balances[loan.loan_id]
            if balance <= 0:
                continue

            interest = period_interest(balance, loan.annual_rate)
            payoff_amount = balance + interest
            payment = min(loan.monthly_payment, payoff_amount)

            if available_extra > 0 and payment < payoff_amount:
                applied = min(available_extra, payoff_amount - payment)
                payment += applied
                available_extra -= applied

            principal = payment - interest
            balance -= principal
            balances[loan.loan_id] = balance

            rows[loan.loan_id].append(
                AmortizationRow(
                    period=period,
                    payment=payment,
                    interest=interest,
                    principal=principal,
                    remaining_balance=balance,
                )
            )

    return PayoffScenario(
        extra_monthly_payment=extra_monthly_payment,
        schedules=[
            LoanSchedule(loan_id=loan.loan_id, vendor=loan.vendor, rows=rows[loan.loan_id])
            for loan in ordered_loans
        ],
    )
