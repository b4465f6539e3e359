"""Mapping of report failures to a single generic HTTP error per report"""

import logging

from fastapi import HTTPException

from dentalflow_finance.domain.exceptions import (
    InvalidTenantError,
    LoanNotFoundError,
    LoanUpdateConflictError,
    UpstreamUnavailableError,
)
from dentalflow_finance.infrastructure.observability.metrics import record_report, upstream_failures_counter

logger = logging.getLogger(__name__)


def report_failure(report: str, detail: str, error: Exception, request_id: str) -> HTTPException:
    """
    Translate an exception raised while computing a report.

    Callers never receive a partial report: the response is 401 for a
    missing tenant, 404/409 for loan lookups and updates, 503 when the store is unreachable and 500 otherwise.
    """
    record_report(report, success=False)

    if isinstance(error, InvalidTenantError):
        return HTTPException(status_code=401, detail="Unauthorized")

    if isinstance(error, LoanNotFoundError):
        return HTTPException(status_code=404, detail="Loan not found")

    if isinstance(error, LoanUpdateConflictError):
        return HTTPException(status_code=409, detail="Loan was modified concurrently, retry")

    if isinstance(error, UpstreamUnavailableError):
        upstream_failures_counter.inc()
        logger.error(f"Upstream unavailable: {error}", extra={"request_id": request_id, "report": report})
        return HTTPException(status_code=503, detail="Finance data store unavailable")

    logger.error(f"Unexpected error: {error!r}", extra={"request_id": request_id, "report": report})
    return HTTPException(status_code=500, detail=detail)
