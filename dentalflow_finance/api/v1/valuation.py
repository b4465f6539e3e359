"""Valuation endpoints - new snapshot and history"""

import time
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from dentalflow_finance.api.dependencies import get_audit_sink, get_request_id, get_tenant_id
from dentalflow_finance.api.v1.errors import report_failure
from dentalflow_finance.api.v1.schemas import ValuationHistoryResponse, ValuationSnapshotSchema
from dentalflow_finance.infrastructure.audit_sink import AuditSink
from dentalflow_finance.infrastructure.database.session import get_db
from dentalflow_finance.infrastructure.observability.logging import log_report
from dentalflow_finance.infrastructure.observability.metrics import record_report
from dentalflow_finance.services.valuation_service import ValuationService

router = APIRouter()


@router.post("/finance/valuation", response_model=ValuationSnapshotSchema)
def create_valuation(
    request: Request,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    audit_sink: AuditSink = Depends(get_audit_sink),
):
    """Compute the current valuation and append it to the tenant's history"""
    start_time = time.time()
    request_id = get_request_id(request)

    try:
        snapshot = ValuationService(db, audit_sink=audit_sink).calculate_valuation(tenant_id)
    except Exception as e:
        raise report_failure("valuation", "Failed to calculate valuation", e, request_id) from e

    record_report("valuation", success=True)
    log_report(request_id, tenant_id, "valuation", (time.time() - start_time) * 1000, snapshot_id=snapshot.id)
    return ValuationSnapshotSchema.from_record(snapshot)


@router.get("/finance/valuation/history", response_model=ValuationHistoryResponse)
def get_valuation_history(
    request: Request,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    """
    Retrieve all valuation snapshots for the tenant.

    Returns:
        Snapshots ordered oldest to newest (empty list when none exist)
    """
    try:
        history = ValuationService(db).get_valuation_history(tenant_id)
    except Exception as e:
        raise report_failure("valuation_history", "Failed to load valuation history", e, get_request_id(request)) from e

    return ValuationHistoryResponse(
        tenant_id=tenant_id,
        history=[ValuationSnapshotSchema.from_record(s) for s in history],
    )
