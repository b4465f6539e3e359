"""Cost of capital report built from the tenant's active loans"""

import logging
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.orm import Session

from dentalflow_finance.config import Settings, settings as default_settings
from dentalflow_finance.domain.cost_of_capital import (
    AVALANCHE,
    build_cost_of_capital_report,
    parse_extra_payment,
)
from dentalflow_finance.domain.models import CostOfCapitalReport, LoanSummary
from dentalflow_finance.infrastructure.audit_sink import AuditSink
from dentalflow_finance.infrastructure.database.repositories import LoanRepository
from dentalflow_finance.services.loan_detection_service import LoanDetectionService
from dentalflow_finance.services.tenancy import require_tenant

logger = logging.getLogger(__name__)


class CostOfCapitalService:
    def __init__(self, db: Session, audit_sink: Optional[AuditSink] = None, config: Settings = default_settings):
        self.db = db
        self.audit_sink = audit_sink
        self.config = config
        self.loans = LoanRepository(db)

    def calculate_cost_of_capital(
        self,
        tenant_id: str,
        extra_monthly_payment: Any = None,
        strategy: str = AVALANCHE,
    ) -> CostOfCapitalReport:
        """
        Weighted average cost of capital, payoff comparison and refinance
        opportunities for active loans.

        A detection pass runs first only when the tenant has no loans on
        record; otherwise stored loans are used as-is so repeated calls
        return the same figures.
        """
        tenant_id = require_tenant(tenant_id)
        extra = parse_extra_payment(extra_monthly_payment)

        if self.loans.count_loans(tenant_id) == 0:
            logger.info("No loans on record, running detection", extra={"tenant_id": tenant_id})
            LoanDetectionService(self.db, audit_sink=self.audit_sink, config=self.config).detect_loans(tenant_id)

        summaries = [
            LoanSummary(
                loan_id=str(loan.id),
                vendor=loan.vendor,
                principal=Decimal(loan.estimated_principal),
                annual_rate=Decimal(loan.estimated_annual_rate),
                monthly_payment=Decimal(loan.monthly_payment),
                loan_type=loan.loan_type,
            )
            for loan in self.loans.get_active_loans(tenant_id)
        ]

        report = build_cost_of_capital_report(
            tenant_id,
            summaries,
            extra,
            strategy,
            market_rates=self.config.loan_category_rates,
            default_market_rate=self.config.loan_default_annual_rate,
            rate_margin=self.config.refinance_rate_margin,
            closing_cost_pct=self.config.refinance_closing_cost_pct,
        )
        for excluded in report.excluded_loans:
            logger.warning(
                "Loan excluded from cost of capital",
                extra={"tenant_id": tenant_id, "loan_id": excluded.loan_id, "reason": excluded.reason},
            )
        return report
