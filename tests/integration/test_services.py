"""Integration tests for the cash flow, cost of capital and valuation services"""

import pytest
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock
from sqlalchemy.exc import OperationalError
from dentalflow_finance.domain.exceptions import InvalidTenantError, UpstreamUnavailableError
from dentalflow_finance.domain.models import LoanStatus
from dentalflow_finance.infrastructure.database.models import Loan, ValuationSnapshot
from dentalflow_finance.services.cash_flow_service import CashFlowService
from dentalflow_finance.services.cost_of_capital_service import CostOfCapitalService
from dentalflow_finance.services.valuation_service import ValuationService
from dentalflow_finance.utils.date_utils import add_months, month_start

AS_OF = date(2026, 6, 10)


def _clock(*hours):
    times = iter(datetime(2026, 6, 10, hour, 0, tzinfo=timezone.utc) for hour in hours)
    return lambda: next(times)


def _loan_row(tenant_id, vendor, principal, rate, payment, status=LoanStatus.ACTIVE):
    return Loan(
        id=uuid.uuid4(),
        tenant_id=tenant_id,
        vendor=vendor,
        vendor_key=vendor.lower(),
        payment_cluster=str(int(Decimal(payment))),
        estimated_principal=Decimal(principal),
        monthly_payment=Decimal(payment),
        estimated_annual_rate=Decimal(rate),
        occurrences=6,
        first_detected_date=date(2026, 1, 1),
        last_seen_date=date(2026, 6, 1),
        status=status.value,
        version=1,
    )


def test_cash_flow_for_tenant_without_transactions(db):
    report = CashFlowService(db).compute_free_cash_flow("tenant_a", as_of=AS_OF)

    assert report.window_months == 12
    assert len(report.buckets) == 12
    assert all(b.free_cash_flow == 0 and b.transaction_count == 0 for b in report.buckets)
    assert report.avg_monthly_free_cash_flow == Decimal("0.00")


def test_cash_flow_window_is_clamped(db):
    service = CashFlowService(db)

    assert len(service.compute_free_cash_flow("tenant_a", 120, as_of=AS_OF).buckets) == 36
    assert len(service.compute_free_cash_flow("tenant_a", "abc", as_of=AS_OF).buckets) == 12
    assert len(service.compute_free_cash_flow("tenant_a", 0, as_of=AS_OF).buckets) == 1


def test_cash_flow_reads_only_the_tenants_transactions(db, seed_transactions):
    seed_transactions(
        "tenant_a",
        [
            (date(2026, 6, 2), "15000.00", "Delta Dental"),
            (date(2026, 6, 5), "-6000.00", "Payroll", "payroll"),
            (date(2026, 6, 8), "-2000.00", "Henry Schein", "equipment_purchase"),
        ],
    )
    seed_transactions("tenant_b", [(date(2026, 6, 2), "99999.00", "Other Practice")])

    report = CashFlowService(db).compute_free_cash_flow("tenant_a", 1, as_of=AS_OF)

    [bucket] = report.buckets
    assert bucket.inflow == Decimal("15000.00")
    assert bucket.outflow == Decimal("6000.00")
    assert bucket.capital_expenditure == Decimal("2000.00")
    assert bucket.free_cash_flow == Decimal("7000.00")


@pytest.mark.parametrize("tenant_id", [None, ""])
def test_cash_flow_requires_tenant(db, tenant_id):
    with pytest.raises(InvalidTenantError):
        CashFlowService(db).compute_free_cash_flow(tenant_id)


def test_cash_flow_store_unavailable():
    db = MagicMock()
    db.query.return_value.filter.return_value.order_by.return_value.all.side_effect = OperationalError(
        "SELECT", {}, Exception("connection refused")
    )

    with pytest.raises(UpstreamUnavailableError):
        CashFlowService(db).compute_free_cash_flow("tenant_a", as_of=AS_OF)


def test_valuation_with_no_data_is_zero(db, audit_sink):
    snapshot = ValuationService(db, audit_sink=audit_sink, clock=_clock(9)).calculate_valuation("tenant_a")

    assert snapshot.estimated_value == Decimal("0.00")
    assert snapshot.methodology == "fcf_multiple"
    assert [e.entity_type for e in audit_sink.events] == ["valuation_snapshot"]
    assert audit_sink.events[0].entity_id == snapshot.id


def test_valuation_is_ttm_times_industry_multiple(db, seed_transactions):
    seed_transactions("tenant_a", [(date(2026, m, 15), "1000.00", "Delta Dental") for m in range(1, 7)])

    snapshot = ValuationService(db, industry_multiple=Decimal("2.5"), clock=_clock(9)).calculate_valuation(
        "tenant_a"
    )

    assert snapshot.trailing_cash_flow == Decimal("12000.00")
    assert snapshot.multiple == Decimal("2.50")
    assert snapshot.estimated_value == Decimal("30000.00")


def test_two_valuations_append_two_snapshots_in_order(db):
    service = ValuationService(db, clock=_clock(9, 10))

    service.calculate_valuation("tenant_a")
    service.calculate_valuation("tenant_a")
    history = service.get_valuation_history("tenant_a")

    assert len(history) == 2
    assert history[0].computed_at <= history[1].computed_at
    assert history[0].id != history[1].id
    assert service.get_valuation_history("tenant_b") == []


def test_audit_failure_does_not_fail_valuation(db, failing_audit_sink):
    snapshot = ValuationService(db, audit_sink=failing_audit_sink, clock=_clock(9)).calculate_valuation("tenant_a")

    assert db.query(ValuationSnapshot).filter(ValuationSnapshot.id == uuid.UUID(snapshot.id)).count() == 1


def test_cost_of_capital_runs_detection_when_no_loans(db, seed_transactions, monthly_payments, audit_sink):
    start = add_months(month_start(date.today()), -4)
    seed_transactions("tenant_a", monthly_payments(start, 5))

    report = CostOfCapitalService(db, audit_sink=audit_sink).calculate_cost_of_capital("tenant_a")

    assert len(report.loans) == 1
    assert report.loans[0].vendor == "Bank A"
    assert report.weighted_average_cost_of_capital == Decimal("0.075000")
    assert report.total_monthly_payment == Decimal("500.00")
    assert [e.action for e in audit_sink.events] == ["create"]


def test_cost_of_capital_uses_only_active_loans(db):
    db.add(_loan_row("tenant_a", "Bank A", "20000.00", "0.06", "450.00"))
    db.add(_loan_row("tenant_a", "Old Lender", "5000.00", "0.12", "200.00", status=LoanStatus.PAID_OFF))
    db.add(_loan_row("tenant_a", "Maybe Lender", "5000.00", "0.12", "200.00", status=LoanStatus.UNCONFIRMED))
    db.add(_loan_row("tenant_b", "Bank B", "90000.00", "0.10", "1500.00"))
    db.commit()

    report = CostOfCapitalService(db).calculate_cost_of_capital("tenant_a", "150", "snowball")

    assert [l.vendor for l in report.loans] == ["Bank A"]
    assert report.total_debt == Decimal("20000.00")
    assert report.weighted_average_cost_of_capital == Decimal("0.060000")
    assert report.payoff.strategy == "snowball"
    assert report.payoff.extra_monthly_payment == Decimal("150.00")
    assert report.payoff.months_saved > 0


def test_cost_of_capital_with_no_data_is_empty(db):
    report = CostOfCapitalService(db).calculate_cost_of_capital("tenant_a", "abc")

    assert report.loans == []
    assert report.total_debt == Decimal("0.00")
    assert report.payoff.extra_monthly_payment == Decimal("0.00")


def test_valuation_keeps_fractional_multiple(db, seed_transactions):
    seed_transactions("tenant_a", [(date(2026, m, 15), "1000.00", "Delta Dental") for m in range(1, 7)])
    service = ValuationService(db, industry_multiple=Decimal("2.375"), clock=_clock(9))

    snapshot = service.calculate_valuation("tenant_a")
    [stored] = service.get_valuation_history("tenant_a")

    assert snapshot.estimated_value == Decimal("28500.00")
    assert stored.multiple == Decimal("2.375")
    assert stored.estimated_value == stored.trailing_cash_flow * Decimal("2.375")


def test_valuation_snapshot_carries_value_range(db, seed_transactions, audit_sink):
    seed_transactions("tenant_a", [(date(2026, m, 15), "1000.00", "Delta Dental") for m in range(1, 7)])
    service = ValuationService(
        db,
        audit_sink=audit_sink,
        industry_multiple=Decimal("2.5"),
        multiple_band=(Decimal("2.0"), Decimal("3.0")),
        clock=_clock(9),
    )

    service.calculate_valuation("tenant_a")
    [stored] = service.get_valuation_history("tenant_a")

    assert stored.value_low == Decimal("24000.00")
    assert stored.value_high == Decimal("36000.00")
    assert stored.low_multiple == Decimal("2.0")
    assert stored.high_multiple == Decimal("3.0")
    assert audit_sink.events[0].new_value["value_low"] == "24000.00"


def test_cost_of_capital_reports_debt_service_and_refinance(db):
    db.add(_loan_row("tenant_a", "Bank A", "20000.00", "0.12", "500.00"))
    db.add(_loan_row("tenant_a", "Bank B", "10000.00", "0.075", "300.00"))
    db.commit()

    report = CostOfCapitalService(db).calculate_cost_of_capital("tenant_a")

    assert report.total_annual_debt_service == Decimal("9600.00")
    [opportunity] = report.refinance_opportunities
    assert opportunity.vendor == "Bank A"
    assert opportunity.market_rate == Decimal("0.075000")
    assert opportunity.monthly_savings > 0
    assert opportunity.break_even_months >= 1
