"""Free cash flow report for one tenant"""

from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from dentalflow_finance.config import settings
from dentalflow_finance.domain.cash_flow import build_cash_flow_report, effective_window
from dentalflow_finance.domain.models import CashFlowReport
from dentalflow_finance.infrastructure.database.repositories import TransactionRepository
from dentalflow_finance.services.tenancy import require_tenant
from dentalflow_finance.utils.date_utils import add_months, month_start


class CashFlowService:
    """Read-only: pulls transactions and aggregates them by month"""

    def __init__(
        self,
        db: Session,
        capex_categories: Optional[Iterable[str]] = None,
        reserve_threshold: Optional[Decimal] = None,
    ):
        self.transactions = TransactionRepository(db)
        self.capex_categories = frozenset(
            settings.capex_categories if capex_categories is None else capex_categories
        )
        self.reserve_threshold = settings.reserve_threshold if reserve_threshold is None else reserve_threshold

    def compute_free_cash_flow(
        self,
        tenant_id: str,
        window_months: Any = None,
        as_of: Optional[date] = None,
    ) -> CashFlowReport:
        """
        Free cash flow for the `window_months` calendar months ending this month.

        window_months is clamped to [1, max_window_months] and defaults to
        default_window_months when missing or non-numeric.

        Raises:
            InvalidTenantError: tenant id missing
            UpstreamUnavailableError: transaction store unreachable
        """
        tenant_id = require_tenant(tenant_id)
        as_of = as_of or date.today()
        window = effective_window(
            window_months,
            default=settings.default_window_months,
            maximum=settings.max_window_months,
        )

        period_start = add_months(month_start(as_of), -(window - 1))
        transactions = self.transactions.list_transactions(tenant_id, period_start, as_of)

        return build_cash_flow_report(
            tenant_id=tenant_id,
            transactions=transactions,
            as_of=as_of,
            window_months=window,
            capex_categories=self.capex_categories,
            reserve_threshold=self.reserve_threshold,
        )
