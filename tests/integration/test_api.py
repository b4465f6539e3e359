"""Integration tests for API endpoints"""

import pytest
from datetime import date
from decimal import Decimal
from unittest.mock import patch
from fastapi.testclient import TestClient
from dentalflow_finance.domain.exceptions import UpstreamUnavailableError
from dentalflow_finance.utils.date_utils import add_months, month_start

TENANT = {"X-Tenant-ID": "tenant_a"}


@pytest.fixture
def bank_a_loan(seed_transactions, monthly_payments):
    """Five monthly $500 payments to Bank A ending this month"""
    start = add_months(month_start(date.today()), -4)
    seed_transactions("tenant_a", monthly_payments(start, 5))


def test_health_endpoint(client: TestClient):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_metrics_endpoint(client: TestClient):
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "dentalflow_report_total" in response.text


@pytest.mark.parametrize(
    "method,path",
    [
        ("get", "/v1/finance/cash-flow"),
        ("post", "/v1/finance/loans/detect"),
        ("get", "/v1/finance/loans"),
        ("get", "/v1/finance/cost-of-capital"),
        ("post", "/v1/finance/valuation"),
        ("get", "/v1/finance/valuation/history"),
    ],
)
def test_missing_tenant_is_unauthorized(client: TestClient, method, path):
    response = getattr(client, method)(path)
    assert response.status_code == 401


def test_request_id_is_echoed(client: TestClient):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


def test_cash_flow_default_window_with_no_data(client: TestClient):
    response = client.get("/v1/finance/cash-flow", headers=TENANT)

    assert response.status_code == 200
    data = response.json()
    assert data["window_months"] == 12
    assert len(data["buckets"]) == 12
    assert all(Decimal(b["free_cash_flow"]) == 0 for b in data["buckets"])
    assert data["buckets"][-1]["month_start"] == month_start(date.today()).isoformat()


@pytest.mark.parametrize("months,expected", [("120", 36), ("abc", 12), ("0", 1), ("6", 6)])
def test_cash_flow_window_is_clamped_not_rejected(client: TestClient, months, expected):
    response = client.get("/v1/finance/cash-flow", params={"months": months}, headers=TENANT)

    assert response.status_code == 200
    assert len(response.json()["buckets"]) == expected


def test_cash_flow_upstream_unavailable(client: TestClient):
    with patch(
        "dentalflow_finance.infrastructure.database.repositories.TransactionRepository.list_transactions",
        side_effect=UpstreamUnavailableError("store down"),
    ):
        response = client.get("/v1/finance/cash-flow", headers=TENANT)

    assert response.status_code == 503


def test_cash_flow_unexpected_error_is_generic(client: TestClient):
    with patch(
        "dentalflow_finance.services.cash_flow_service.CashFlowService.compute_free_cash_flow",
        side_effect=RuntimeError("boom"),
    ):
        response = client.get("/v1/finance/cash-flow", headers=TENANT)

    assert response.status_code == 500
    assert response.json() == {"detail": "Failed to calculate cash flow"}


def test_detect_loans_then_list(client: TestClient, bank_a_loan, audit_sink):
    first = client.post("/v1/finance/loans/detect", headers=TENANT)
    second = client.post("/v1/finance/loans/detect", headers=TENANT)
    listed = client.get("/v1/finance/loans", headers=TENANT)

    assert first.status_code == 200
    [loan] = first.json()["detected"]
    assert loan["vendor"] == "Bank A"
    assert loan["status"] == "active"
    assert Decimal(loan["estimated_principal"]) > Decimal("500.00")

    assert second.json()["detected"] == []
    assert [l["id"] for l in listed.json()["loans"]] == [loan["id"]]
    assert [e.action for e in audit_sink.events] == ["create"]


def test_loans_are_tenant_scoped(client: TestClient, bank_a_loan):
    client.post("/v1/finance/loans/detect", headers=TENANT)

    response = client.get("/v1/finance/loans", headers={"X-Tenant-ID": "tenant_b"})

    assert response.json()["loans"] == []


def test_cost_of_capital(client: TestClient, bank_a_loan):
    response = client.get(
        "/v1/finance/cost-of-capital",
        params={"extraMonthlyPayment": "200", "strategy": "avalanche"},
        headers=TENANT,
    )

    assert response.status_code == 200
    data = response.json()
    assert len(data["loans"]) == 1
    assert Decimal(data["weighted_average_cost_of_capital"]) == Decimal("0.075")
    assert data["payoff"]["months_saved"] > 0
    assert Decimal(data["payoff"]["interest_saved"]) > 0
    assert Decimal(data["total_annual_debt_service"]) == Decimal("6000.00")
    assert data["refinance_opportunities"] == []


def test_cost_of_capital_invalid_extra_payment_means_zero(client: TestClient, bank_a_loan):
    response = client.get(
        "/v1/finance/cost-of-capital", params={"extraMonthlyPayment": "lots"}, headers=TENANT
    )

    assert response.status_code == 200
    payoff = response.json()["payoff"]
    assert Decimal(payoff["extra_monthly_payment"]) == 0
    assert payoff["months_saved"] == 0
    assert payoff["baseline"]["schedules"] == payoff["accelerated"]["schedules"]


def test_cost_of_capital_unknown_strategy_rejected(client: TestClient):
    response = client.get("/v1/finance/cost-of-capital", params={"strategy": "lottery"}, headers=TENANT)
    assert response.status_code == 422


def test_payoff_scenario(client: TestClient, bank_a_loan):
    response = client.post(
        "/v1/finance/cost-of-capital/payoff",
        json={"extra_monthly_payment": "300", "strategy": "snowball"},
        headers=TENANT,
    )

    assert response.status_code == 200
    payoff = response.json()["payoff"]
    assert payoff["strategy"] == "snowball"
    assert Decimal(payoff["extra_monthly_payment"]) == Decimal("300")
    assert payoff["accelerated"]["months_to_debt_free"] < payoff["baseline"]["months_to_debt_free"]


@pytest.mark.parametrize("body", [{"extra_monthly_payment": -10}, {"extra_monthly_payment": "abc"}, {}])
def test_payoff_scenario_treats_invalid_extra_as_zero(client: TestClient, body):
    response = client.post("/v1/finance/cost-of-capital/payoff", json=body, headers=TENANT)

    assert response.status_code == 200
    assert Decimal(response.json()["payoff"]["extra_monthly_payment"]) == 0


def test_valuation_and_history(client: TestClient, audit_sink):
    first = client.post("/v1/finance/valuation", headers=TENANT)
    second = client.post("/v1/finance/valuation", headers=TENANT)
    history = client.get("/v1/finance/valuation/history", headers=TENANT)

    assert first.status_code == 200
    assert Decimal(first.json()["estimated_value"]) == 0
    assert first.json()["methodology"] == "fcf_multiple"
    assert Decimal(first.json()["value_low"]) <= Decimal(first.json()["value_high"])

    snapshots = history.json()["history"]
    assert [s["id"] for s in snapshots] == [first.json()["id"], second.json()["id"]]
    assert snapshots[0]["computed_at"] <= snapshots[1]["computed_at"]
    assert len(audit_sink.events) == 2


def test_valuation_history_empty_for_new_tenant(client: TestClient):
    response = client.get("/v1/finance/valuation/history", headers=TENANT)

    assert response.status_code == 200
    assert response.json() == {"tenant_id": "tenant_a", "history": []}


def test_get_and_update_loan(client: TestClient, bank_a_loan, audit_sink):
    [loan] = client.post("/v1/finance/loans/detect", headers=TENANT).json()["detected"]

    fetched = client.get(f"/v1/finance/loans/{loan['id']}", headers=TENANT)
    updated = client.put(
        f"/v1/finance/loans/{loan['id']}",
        json={"estimated_annual_rate": "0.12", "loan_type": "practice_loan"},
        headers=TENANT,
    )

    assert fetched.status_code == 200
    assert fetched.json()["id"] == loan["id"]
    assert updated.status_code == 200
    assert Decimal(updated.json()["estimated_annual_rate"]) == Decimal("0.12")
    assert updated.json()["loan_type"] == "practice_loan"
    assert updated.json()["user_overridden"] is True
    assert updated.json()["estimated_principal"] == loan["estimated_principal"]
    assert audit_sink.events[-1].old_value["estimated_annual_rate"] == "0.075000"

    report = client.get("/v1/finance/cost-of-capital", headers=TENANT).json()
    [opportunity] = report["refinance_opportunities"]
    assert opportunity["loan_id"] == loan["id"]
    assert Decimal(opportunity["market_rate"]) == Decimal("0.075")


@pytest.mark.parametrize("loan_id", ["00000000-0000-0000-0000-000000000000", "not-a-uuid"])
def test_unknown_loan_is_not_found(client: TestClient, loan_id):
    assert client.get(f"/v1/finance/loans/{loan_id}", headers=TENANT).status_code == 404
    assert client.put(f"/v1/finance/loans/{loan_id}", json={"status": "active"}, headers=TENANT).status_code == 404


def test_loan_of_other_tenant_is_not_found(client: TestClient, bank_a_loan):
    [loan] = client.post("/v1/finance/loans/detect", headers=TENANT).json()["detected"]

    response = client.get(f"/v1/finance/loans/{loan['id']}", headers={"X-Tenant-ID": "tenant_b"})

    assert response.status_code == 404


def test_update_loan_rejects_negative_principal(client: TestClient, bank_a_loan):
    [loan] = client.post("/v1/finance/loans/detect", headers=TENANT).json()["detected"]

    response = client.put(f"/v1/finance/loans/{loan['id']}", json={"estimated_principal": "-1"}, headers=TENANT)

    assert response.status_code == 422
