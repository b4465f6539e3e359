"""Loan endpoints - detection run, listing and manual corrections"""

import time
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from dentalflow_finance.api.dependencies import get_audit_sink, get_request_id, get_tenant_id
from dentalflow_finance.api.v1.errors import report_failure
from dentalflow_finance.api.v1.schemas import DetectLoansResponse, LoanListResponse, LoanSchema, LoanUpdateRequest
from dentalflow_finance.infrastructure.audit_sink import AuditSink
from dentalflow_finance.infrastructure.database.session import get_db
from dentalflow_finance.infrastructure.observability.logging import log_report
from dentalflow_finance.infrastructure.observability.metrics import record_report
from dentalflow_finance.services.loan_detection_service import LoanDetectionService

router = APIRouter()


@router.post("/finance/loans/detect", response_model=DetectLoansResponse)
def detect_loans(
    request: Request,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    audit_sink: AuditSink = Depends(get_audit_sink),
):
    """
    Run loan detection for the tenant.

    Returns only loans created or whose status changed in this run; an
    immediate re-run returns an empty list.
    """
    start_time = time.time()
    request_id = get_request_id(request)

    try:
        detected = LoanDetectionService(db, audit_sink=audit_sink).detect_loans(tenant_id)
    except Exception as e:
        raise report_failure("loan_detection", "Failed to detect loans", e, request_id) from e

    record_report("loan_detection", success=True)
    log_report(request_id, tenant_id, "loan_detection", (time.time() - start_time) * 1000, detected=len(detected))
    return DetectLoansResponse.from_loans(detected)


@router.get("/finance/loans", response_model=LoanListResponse)
def list_loans(
    request: Request,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    """All loans on record for the tenant, any status"""
    try:
        loans = LoanDetectionService(db).list_loans(tenant_id)
    except Exception as e:
        raise report_failure("loans", "Failed to load loans", e, get_request_id(request)) from e

    return LoanListResponse.from_loans(loans)


@router.get("/finance/loans/{loan_id}", response_model=LoanSchema)
def get_loan(
    request: Request,
    loan_id: str,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    """A single loan; 404 when it does not exist for this tenant"""
    try:
        loan = LoanDetectionService(db).get_loan(tenant_id, loan_id)
    except Exception as e:
        raise report_failure("loans", "Failed to load loan", e, get_request_id(request)) from e

    return LoanSchema.model_validate(loan)


@router.put("/finance/loans/{loan_id}", response_model=LoanSchema)
def update_loan(
    request: Request,
    loan_id: str,
    body: LoanUpdateRequest,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    audit_sink: AuditSink = Depends(get_audit_sink),
):
    """
    Confirm or correct a detected loan.

    Only the fields present in the body are changed. Overriding the rate,
    principal or payment keeps detection from re-estimating them.
    """
    start_time = time.time()
    request_id = get_request_id(request)

    try:
        loan = LoanDetectionService(db, audit_sink=audit_sink).update_loan(
            tenant_id, loan_id, body.model_dump(exclude_unset=True)
        )
    except Exception as e:
        raise report_failure("loan_update", "Failed to update loan", e, request_id) from e

    record_report("loan_update", success=True)
    log_report(request_id, tenant_id, "loan_update", (time.time() - start_time) * 1000, loan_id=loan.id)
    return LoanSchema.model_validate(loan)
