"""Cost of capital endpoints - blended rate and payoff scenarios"""

import time
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from dentalflow_finance.api.dependencies import get_audit_sink, get_request_id, get_tenant_id
from dentalflow_finance.api.v1.errors import report_failure
from dentalflow_finance.api.v1.schemas import CostOfCapitalResponse, PayoffRequest
from dentalflow_finance.infrastructure.audit_sink import AuditSink
from dentalflow_finance.infrastructure.database.session import get_db
from dentalflow_finance.infrastructure.observability.logging import log_report
from dentalflow_finance.infrastructure.observability.metrics import record_report
from dentalflow_finance.services.cost_of_capital_service import CostOfCapitalService

router = APIRouter()


def _calculate(
    request: Request,
    tenant_id: str,
    db: Session,
    audit_sink: AuditSink,
    extra_monthly_payment: Any,
    strategy: str,
) -> CostOfCapitalResponse:
    start_time = time.time()
    request_id = get_request_id(request)

    try:
        report = CostOfCapitalService(db, audit_sink=audit_sink).calculate_cost_of_capital(
            tenant_id, extra_monthly_payment, strategy
        )
    except Exception as e:
        raise report_failure("cost_of_capital", "Failed to calculate cost of capital", e, request_id) from e

    record_report("cost_of_capital", success=True)
    log_report(request_id, tenant_id, "cost_of_capital", (time.time() - start_time) * 1000, loans=len(report.loans))
    return CostOfCapitalResponse.from_report(report)


@router.get("/finance/cost-of-capital", response_model=CostOfCapitalResponse)
def get_cost_of_capital(
    request: Request,
    extra_monthly_payment: str | None = Query(None, alias="extraMonthlyPayment"),
    strategy: Literal["avalanche", "snowball"] = Query("avalanche"),
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    audit_sink: AuditSink = Depends(get_audit_sink),
):
    """
    Weighted average cost of capital across active loans.

    An absent, negative or non-numeric extraMonthlyPayment is treated as 0.
    """
    return _calculate(request, tenant_id, db, audit_sink, extra_monthly_payment, strategy)


@router.post("/finance/cost-of-capital/payoff", response_model=CostOfCapitalResponse)
def post_payoff_scenario(
    request: Request,
    body: PayoffRequest,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    audit_sink: AuditSink = Depends(get_audit_sink),
):
    """Cost of capital recalculated with a custom extra monthly payment"""
    return _calculate(request, tenant_id, db, audit_sink, body.extra_monthly_payment, body.strategy)
