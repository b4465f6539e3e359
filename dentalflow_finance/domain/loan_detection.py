"""
Recurring loan detection - clustering of vendor payments and loan estimation.

Pure functions over transaction lists; persistence lives in
services/loan_detection_service.py.
"""

import logging
from collections import Counter
from datetime import date
from decimal import Decimal
from typing import Dict, FrozenSet, Iterable, List, Optional

from dentalflow_finance.domain.amortization import present_value
from dentalflow_finance.domain.exceptions import InvalidTransactionDataError
from dentalflow_finance.domain.models import (
    LoanCandidate,
    LoanStatus,
    PaymentCluster,
    Transaction,
    to_cents,
    to_rate,
)
from dentalflow_finance.utils.date_utils import months_between

logger = logging.getLogger(__name__)

MIN_CYCLE_DAYS = 25
MAX_CYCLE_DAYS = 35
MAX_SKIPPED_CYCLES = 1
MAX_EXTRA_PAYMENTS = 1
STALE_AFTER_CYCLES = 2


def normalize_vendor(vendor: Optional[str]) -> str:
    """Clustering key for a vendor name: trimmed, case-folded, single-spaced"""
    if vendor is None:
        raise InvalidTransactionDataError("transaction has no vendor")
    key = " ".join(vendor.split()).casefold()
    if not key:
        raise InvalidTransactionDataError("transaction has a blank vendor")
    return key


def payment_amount(txn: Transaction) -> Decimal:
    """Magnitude of an outgoing payment"""
    if not isinstance(txn.amount, Decimal) or not txn.amount.is_finite():
        raise InvalidTransactionDataError(f"amount {txn.amount!r} is not a finite decimal")
    if txn.amount >= 0:
        raise InvalidTransactionDataError("not an outgoing payment")
    if not isinstance(txn.date, date):
        raise InvalidTransactionDataError(f"date {txn.date!r} is not a date")
    return -txn.amount


def within_tolerance(
    amount: Decimal,
    reference: Decimal,
    tolerance_pct: Decimal,
    tolerance_abs: Decimal,
) -> bool:
    """True when amount is within max(pct of reference, abs) of reference"""
    band = max(reference * tolerance_pct, tolerance_abs)
    return abs(amount - reference) <= band


def partition_by_vendor(
    transactions: Iterable[Transaction],
    excluded_categories: FrozenSet[str] = frozenset(),
) -> Dict[str, List[Transaction]]:
    """
    Group outgoing payments by normalized vendor.

    Transactions that cannot produce a clustering key (no vendor, bad
    amount, not an outflow) are skipped rather than failing the run.
    """
    by_vendor: Dict[str, List[Transaction]] = {}
    for txn in transactions:
        if txn.category_ref is not None and txn.category_ref in excluded_categories:
            continue
        try:
            key = normalize_vendor(txn.vendor)
            payment_amount(txn)
        except InvalidTransactionDataError as e:
            logger.debug("Skipping transaction %s: %s", txn.id, e)
            continue
        by_vendor.setdefault(key, []).append(txn)
    return by_vendor


def cluster_payments(
    transactions: List[Transaction],
    tolerance_pct: Decimal = Decimal("0.02"),
    tolerance_abs: Decimal = Decimal("5.00"),
) -> List[PaymentCluster]:
    """
    Cluster one vendor's payments by amount.

    Payments are visited in date order; each joins the first cluster whose
    median is within tolerance, otherwise it starts a new cluster.

    Example:
        [500.00, 498.75, 1200.00, 502.10] -> [[500.00, 498.75, 502.10], [1200.00]]
    """
    clusters: List[PaymentCluster] = []
    for txn in sorted(transactions, key=lambda t: (t.date, t.id)):
        amount = payment_amount(txn)
        for cluster in clusters:
            if within_tolerance(amount, cluster.median_amount, tolerance_pct, tolerance_abs):
                cluster.transactions.append(txn)
                break
        else:
            vendor_name = " ".join((txn.vendor or "").split())
            clusters.append(
                PaymentCluster(
                    vendor=vendor_name,
                    vendor_key=normalize_vendor(txn.vendor),
                    transactions=[txn],
                )
            )
    return clusters


def split_runs(transactions: List[Transaction]) -> List[List[Transaction]]:
    """
    Split payments into runs wherever more than two cycles pass without one.

    A loan that stopped and resumed (or a stray old payment of the same
    amount) then shows up as separate runs, each judged on its own cadence.
    """
    runs: List[List[Transaction]] = []
    for txn in sorted(transactions, key=lambda t: (t.date, t.id)):
        if runs and (txn.date - runs[-1][-1].date).days <= STALE_AFTER_CYCLES * MAX_CYCLE_DAYS:
            runs[-1].append(txn)
        else:
            runs.append([txn])
    return runs


def monthly_cycles(dates: List[date]) -> Optional[int]:
    """
    Count the monthly cycles in a run of payment dates.

    A payment 25-35 days after the previous cycle starts a new cycle; a
    single skipped cycle (a 50-70 day gap) and a single extra payment
    inside a cycle are tolerated. Returns None when the dates do not
    follow a monthly rhythm.

    Example:
        [Jan 1, Jan 15, Feb 1, Mar 2] -> 3
    """
    ordered = sorted(dates)
    if not ordered:
        return None

    cycles, skipped, extra = 1, 0, 0
    cycle_start = ordered[0]
    for current in ordered[1:]:
        gap = (current - cycle_start).days
        if gap < MIN_CYCLE_DAYS:
            extra += 1
            if extra > MAX_EXTRA_PAYMENTS:
                return None
            continue
        if gap <= MAX_CYCLE_DAYS:
            pass
        elif 2 * MIN_CYCLE_DAYS <= gap <= 2 * MAX_CYCLE_DAYS and skipped < MAX_SKIPPED_CYCLES:
            skipped += 1
        else:
            return None
        cycles += 1
        cycle_start = current
    return cycles


def has_monthly_cadence(dates: List[date]) -> bool:
    """True when the dates form at least two monthly cycles"""
    cycles = monthly_cycles(dates)
    return cycles is not None and cycles >= 2


def is_stale(last_seen: date, as_of: date) -> bool:
    """A loan missing for two expected cycles is considered paid off"""
    return (as_of - last_seen).days > STALE_AFTER_CYCLES * MAX_CYCLE_DAYS


def dominant_category(cluster: PaymentCluster) -> Optional[str]:
    categories = Counter(t.category_ref for t in cluster.transactions if t.category_ref)
    if not categories:
        return None
    return sorted(categories.items(), key=lambda item: (-item[1], item[0]))[0][0]


def _classify_run(
    run: List[Transaction],
    min_occurrences: int,
    debt_service_categories: FrozenSet[str],
) -> Optional[LoanStatus]:
    cycles = monthly_cycles([t.date for t in run])
    if cycles is None or cycles < 2:
        return None
    if cycles >= min_occurrences:
        return LoanStatus.ACTIVE
    run_cluster = PaymentCluster(vendor="", vendor_key="", transactions=run)
    if dominant_category(run_cluster) in debt_service_categories:
        return LoanStatus.UNCONFIRMED
    return None


def classify_cluster(
    cluster: PaymentCluster,
    min_occurrences: int = 3,
    debt_service_categories: FrozenSet[str] = frozenset(),
) -> Optional[LoanStatus]:
    """
    Decide whether a cluster looks like a loan.

    Each run of the cluster (see split_runs) is judged separately. Returns
    ACTIVE when some run has min_occurrences+ monthly cycles, UNCONFIRMED
    when the best run is a shorter monthly run tagged as debt service, and
    None when no run qualifies. A qualifying cluster keeps all its payments,
    so a fresh payment after a gap still counts as the loan being seen.
    """
    statuses = {
        _classify_run(run, min_occurrences, debt_service_categories)
        for run in split_runs(cluster.transactions)
    }
    if LoanStatus.ACTIVE in statuses:
        return LoanStatus.ACTIVE
    if LoanStatus.UNCONFIRMED in statuses:
        return LoanStatus.UNCONFIRMED
    return None


def estimate_loan(
    cluster: PaymentCluster,
    status: LoanStatus,
    first_seen: Optional[date] = None,
    assumed_term_months: int = 60,
    annual_rate: Decimal = Decimal("0.075"),
) -> LoanCandidate:
    """
    Estimate remaining principal for a detected payment stream.

    The real term is not observable from payments alone, so the loan is
    assumed to be a `assumed_term_months` amortizing loan at `annual_rate`.
    Payments made are counted in calendar months from the first payment on
    record to the latest one; the remaining principal is the present value
    of the remaining payments.
    """
    start = min(first_seen, cluster.first_date) if first_seen else cluster.first_date
    payments_made = months_between(start, cluster.last_date) + 1
    remaining_months = max(assumed_term_months - payments_made, 1)
    monthly_payment = cluster.median_amount

    return LoanCandidate(
        cluster=cluster,
        status=status,
        monthly_payment=to_cents(monthly_payment),
        estimated_principal=present_value(monthly_payment, annual_rate, remaining_months),
        estimated_annual_rate=to_rate(annual_rate),
        payments_made=payments_made,
    )


def find_loan_candidates(
    transactions: Iterable[Transaction],
    tolerance_pct: Decimal = Decimal("0.02"),
    tolerance_abs: Decimal = Decimal("5.00"),
    min_occurrences: int = 3,
    excluded_categories: FrozenSet[str] = frozenset(),
    debt_service_categories: FrozenSet[str] = frozenset(),
) -> List[tuple[PaymentCluster, LoanStatus]]:
    """Partition, cluster and classify; returns qualifying clusters with their status"""
    candidates = []
    by_vendor = partition_by_vendor(transactions, excluded_categories)
    for vendor_key in sorted(by_vendor):
        for cluster in cluster_payments(by_vendor[vendor_key], tolerance_pct, tolerance_abs):
            status = classify_cluster(cluster, min_occurrences, debt_service_categories)
            if status is None:
                logger.debug(
                    "Cluster %s/%s does not qualify (%d payments)",
                    vendor_key,
                    cluster.median_amount,
                    cluster.occurrences,
                )
                continue
            candidates.append((cluster, status))
    return candidates
