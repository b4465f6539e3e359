"""Free cash flow aggregation - monthly buckets and summary totals"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, FrozenSet, Iterable, List

from dentalflow_finance.domain.models import CashFlowReport, MonthlyBucket, Transaction, ZERO, to_cents
from dentalflow_finance.utils.date_utils import generate_month_range, month_start

DEFAULT_WINDOW_MONTHS = 12
MAX_WINDOW_MONTHS = 36


def effective_window(
    months: Any,
    default: int = DEFAULT_WINDOW_MONTHS,
    maximum: int = MAX_WINDOW_MONTHS,
) -> int:
    """
    Resolve a requested window to the number of months actually used.

    Out-of-range values are clamped into [1, maximum], never rejected.
    Missing or non-numeric input falls back to the default.

    Example:
        effective_window(120) -> 36
        effective_window("6") -> 6
        effective_window("abc") -> 12
    """
    if months is None or isinstance(months, bool):
        return default

    try:
        value = Decimal(str(months).strip())
    except (InvalidOperation, ValueError):
        return default

    if not value.is_finite():
        return default

    return max(1, min(int(value), maximum))


def aggregate_monthly_cash_flow(
    transactions: Iterable[Transaction],
    months: List[date],
    capex_categories: FrozenSet[str] = frozenset(),
) -> List[MonthlyBucket]:
    """
    Bucket transactions by calendar month.

    Requirements:
    - One bucket per month in `months`, including months with no activity
    - Inflow = positive amounts, outflow = magnitude of negative operating amounts
    - Outgoing transactions tagged with a capex category are reported as
      capital expenditure instead of operating outflow
    - free cash flow = net operating cash flow - capital expenditure
    """
    buckets: Dict[date, MonthlyBucket] = {m: MonthlyBucket(month_start=m) for m in months}

    for txn in transactions:
        bucket = buckets.get(month_start(txn.date))
        if bucket is None:
            continue

        bucket.transaction_count += 1
        if txn.amount > 0:
            bucket.inflow += txn.amount
        elif txn.amount < 0:
            if txn.category_ref is not None and txn.category_ref in capex_categories:
                bucket.capital_expenditure += -txn.amount
            else:
                bucket.outflow += -txn.amount

    for bucket in buckets.values():
        bucket.inflow = to_cents(bucket.inflow)
        bucket.outflow = to_cents(bucket.outflow)
        bucket.capital_expenditure = to_cents(bucket.capital_expenditure)
        bucket.net_operating_cash_flow = bucket.inflow - bucket.outflow
        bucket.free_cash_flow = bucket.net_operating_cash_flow - bucket.capital_expenditure

    return [buckets[m] for m in months]


def _mean_free_cash_flow(buckets: List[MonthlyBucket]) -> Decimal:
    """Mean FCF over buckets that saw at least one transaction"""
    active = [b.free_cash_flow for b in buckets if b.transaction_count > 0]
    if not active:
        return ZERO
    return to_cents(sum(active, ZERO) / len(active))


def build_cash_flow_report(
    tenant_id: str,
    transactions: Iterable[Transaction],
    as_of: date,
    window_months: int,
    capex_categories: FrozenSet[str] = frozenset(),
    reserve_threshold: Decimal = ZERO,
) -> CashFlowReport:
    """
    Build the free cash flow report for the `window_months` months ending with as_of's month.

    Averages ignore empty months so sparse history does not drag them toward
    zero; the trailing twelve month figure is the annualized mean of the
    active months among the last twelve buckets.
    """
    months = generate_month_range(as_of, window_months)
    buckets = aggregate_monthly_cash_flow(transactions, months, capex_categories)

    avg_monthly = _mean_free_cash_flow(buckets)
    trailing_twelve = to_cents(_mean_free_cash_flow(buckets[-12:]) * 12)
    rolling_three = _mean_free_cash_flow(buckets[-3:])
    total = sum((b.free_cash_flow for b in buckets), ZERO)

    return CashFlowReport(
        tenant_id=tenant_id,
        window_months=window_months,
        period_start=months[0],
        period_end=as_of,
        buckets=buckets,
        avg_monthly_free_cash_flow=avg_monthly,
        trailing_twelve_month_free_cash_flow=trailing_twelve,
        rolling_three_month_free_cash_flow=rolling_three,
        total_free_cash_flow=total,
        reserve_threshold=to_cents(reserve_threshold),
        excess_cash=avg_monthly - to_cents(reserve_threshold),
    )
