"""GET /v1/finance/cash-flow - monthly free cash flow report"""

import time
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from dentalflow_finance.api.dependencies import get_request_id, get_tenant_id
from dentalflow_finance.api.v1.errors import report_failure
from dentalflow_finance.api.v1.schemas import CashFlowResponse
from dentalflow_finance.infrastructure.database.session import get_db
from dentalflow_finance.infrastructure.observability.logging import log_report
from dentalflow_finance.infrastructure.observability.metrics import record_report
from dentalflow_finance.services.cash_flow_service import CashFlowService

router = APIRouter()


@router.get("/finance/cash-flow", response_model=CashFlowResponse)
def get_cash_flow(
    request: Request,
    months: str | None = Query(None, description="Window in months (1-36, default 12)"),
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    """
    Free cash flow per calendar month plus summary totals.

    Out-of-range or non-numeric `months` values are clamped or defaulted,
    never rejected.
    """
    start_time = time.time()
    request_id = get_request_id(request)

    try:
        report = CashFlowService(db).compute_free_cash_flow(tenant_id, months)
    except Exception as e:
        raise report_failure("cash_flow", "Failed to calculate cash flow", e, request_id) from e

    record_report("cash_flow", success=True)
    log_report(request_id, tenant_id, "cash_flow", (time.time() - start_time) * 1000, window_months=report.window_months)
    return CashFlowResponse.from_report(report)
