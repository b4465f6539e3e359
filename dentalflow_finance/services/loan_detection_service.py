"""
Loan detection - turns recurring vendor payments into persisted loan records.

Safe to re-run on a schedule and from several processes at once:
inserts are guarded by the (tenant, vendor, payment cluster) unique
constraint and updates are compare-and-swap on the row version.
"""

import logging
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Set

from sqlalchemy.orm import Session

from dentalflow_finance.config import Settings, settings as default_settings
from dentalflow_finance.domain.loan_detection import (
    dominant_category,
    estimate_loan,
    find_loan_candidates,
    is_stale,
)
from dentalflow_finance.domain.exceptions import LoanNotFoundError, LoanUpdateConflictError
from dentalflow_finance.domain.models import AuditEvent, DetectedLoan, LoanStatus, PaymentCluster, to_cents, to_rate
from dentalflow_finance.infrastructure.audit_sink import AuditSink, emit_all
from dentalflow_finance.infrastructure.database.models import Loan
from dentalflow_finance.infrastructure.database.repositories import LoanRepository, TransactionRepository
from dentalflow_finance.infrastructure.observability.metrics import loan_transition_counter
from dentalflow_finance.services.tenancy import require_tenant
from dentalflow_finance.utils.date_utils import add_months, month_start

logger = logging.getLogger(__name__)

CAS_ATTEMPTS = 3

# Fields a user may set on a loan; amounts also pin the loan against re-estimation
EDITABLE_FIELDS = ("status", "estimated_annual_rate", "estimated_principal", "monthly_payment", "loan_type")
AMOUNT_FIELDS = ("estimated_annual_rate", "estimated_principal", "monthly_payment")


def to_detected_loan(loan: Loan) -> DetectedLoan:
    return DetectedLoan(
        id=str(loan.id),
        tenant_id=loan.tenant_id,
        vendor=loan.vendor,
        estimated_principal=Decimal(loan.estimated_principal),
        monthly_payment=Decimal(loan.monthly_payment),
        estimated_annual_rate=Decimal(loan.estimated_annual_rate),
        occurrences=loan.occurrences,
        first_detected_date=loan.first_detected_date,
        last_seen_date=loan.last_seen_date,
        status=LoanStatus(loan.status),
        loan_type=loan.loan_type,
        user_overridden=bool(loan.user_overridden),
    )


def loan_audit_value(loan: Loan) -> Dict[str, Any]:
    """JSON-safe view of a loan row for the audit trail"""
    return {
        "vendor": loan.vendor,
        "payment_cluster": loan.payment_cluster,
        "estimated_principal": str(loan.estimated_principal),
        "monthly_payment": str(loan.monthly_payment),
        "estimated_annual_rate": str(loan.estimated_annual_rate),
        "occurrences": loan.occurrences,
        "first_detected_date": loan.first_detected_date.isoformat(),
        "last_seen_date": loan.last_seen_date.isoformat(),
        "status": loan.status,
        "loan_type": loan.loan_type,
        "user_overridden": bool(loan.user_overridden),
    }


class LoanDetectionService:
    """Detects loans for a tenant and upserts them"""

    def __init__(self, db: Session, audit_sink: Optional[AuditSink] = None, config: Settings = default_settings):
        self.db = db
        self.audit_sink = audit_sink
        self.config = config
        self.transactions = TransactionRepository(db)
        self.loans = LoanRepository(db)

    def list_loans(self, tenant_id: str) -> List[DetectedLoan]:
        """All loans on record for the tenant"""
        tenant_id = require_tenant(tenant_id)
        return [to_detected_loan(loan) for loan in self.loans.get_loans_by_tenant(tenant_id)]

    def get_loan(self, tenant_id: str, loan_id: str) -> DetectedLoan:
        """
        Raises:
            LoanNotFoundError: the id is unknown or belongs to another tenant
        """
        tenant_id = require_tenant(tenant_id)
        loan = self.loans.get_loan(tenant_id, loan_id)
        if loan is None:
            raise LoanNotFoundError(f"Loan {loan_id} not found")
        return to_detected_loan(loan)

    def update_loan(self, tenant_id: str, loan_id: str, changes: Dict[str, Any]) -> DetectedLoan:
        """
        Apply a user's correction to a loan.

        Only fields present in `changes` are written; None clears loan_type
        and is ignored for the other fields. Setting the rate,
        principal or payment marks the loan as user overridden, after which
        detection keeps refreshing dates and status but no longer
        re-estimates those amounts.

        Raises:
            LoanNotFoundError: the id is unknown or belongs to another tenant
            LoanUpdateConflictError: the row kept changing concurrently
        """
        tenant_id = require_tenant(tenant_id)
        values = {
            field: value
            for field, value in changes.items()
            if field in EDITABLE_FIELDS and (value is not None or field == "loan_type")
        }
        if "status" in values:
            values["status"] = LoanStatus(values["status"]).value
        for field in ("estimated_principal", "monthly_payment"):
            if field in values:
                values[field] = to_cents(Decimal(values[field]))
        if "estimated_annual_rate" in values:
            values["estimated_annual_rate"] = to_rate(Decimal(values["estimated_annual_rate"]))
        if any(field in values for field in AMOUNT_FIELDS):
            values["user_overridden"] = True

        try:
            for _ in range(CAS_ATTEMPTS):
                loan = self.loans.get_loan(tenant_id, loan_id)
                if loan is None:
                    raise LoanNotFoundError(f"Loan {loan_id} not found")
                old_value = {field: loan_audit_value(loan)[field] for field in values}
                if all(getattr(loan, field) == value for field, value in values.items()):
                    return to_detected_loan(loan)
                if self.loans.compare_and_swap(loan, loan.version, values):
                    break
            else:
                raise LoanUpdateConflictError(f"Loan {loan_id} changed concurrently")
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        new_value = {field: loan_audit_value(loan)[field] for field in values}
        if "status" in values and old_value["status"] != new_value["status"]:
            loan_transition_counter.labels(transition=new_value["status"]).inc()
        emit_all(
            self.audit_sink,
            [
                AuditEvent(
                    action="update",
                    entity_type="loan",
                    tenant_id=tenant_id,
                    entity_id=str(loan.id),
                    old_value=old_value,
                    new_value=new_value,
                )
            ],
        )
        logger.info("Loan updated", extra={"tenant_id": tenant_id, "loan_id": str(loan.id), "fields": sorted(values)})
        return to_detected_loan(loan)

    def detect_loans(self, tenant_id: str, as_of: Optional[date] = None) -> List[DetectedLoan]:
        """
        Scan the lookback window for recurring payments and upsert loans.

        Flow:
        1. Fetch outgoing transactions for the lookback window
        2. Cluster per vendor and keep clusters with a monthly cadence
        3. Insert new loans / update matching ones
        4. Mark loans missing for two cycles as paid off
        5. Commit, then emit audit events

        Returns:
            Loans created or whose status changed in this run
        """
        tenant_id = require_tenant(tenant_id)
        as_of = as_of or date.today()
        window_start = add_months(month_start(as_of), -self.config.loan_lookback_months)

        changed: Dict[str, Loan] = {}
        events: List[AuditEvent] = []
        handled: Set[str] = set()

        try:
            transactions = self.transactions.list_transactions(tenant_id, window_start, as_of, outflows_only=True)
            candidates = find_loan_candidates(
                transactions,
                tolerance_pct=self.config.loan_tolerance_pct,
                tolerance_abs=self.config.loan_tolerance_abs,
                min_occurrences=self.config.loan_min_occurrences,
                excluded_categories=frozenset(self.config.loan_excluded_categories),
                debt_service_categories=frozenset(self.config.debt_service_categories),
            )

            for cluster, status in candidates:
                loan = self._upsert(tenant_id, cluster, status, as_of, changed, events)
                if loan is not None:
                    handled.add(str(loan.id))

            for loan in self.loans.get_loans_by_tenant(tenant_id):
                if str(loan.id) in handled or loan.status == LoanStatus.PAID_OFF.value:
                    continue
                if is_stale(loan.last_seen_date, as_of):
                    self._transition(loan, {"status": LoanStatus.PAID_OFF.value}, changed, events)

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        for event in events:
            loan_transition_counter.labels(
                transition="created" if event.action == "create" else event.new_value["status"]
            ).inc()
        emit_all(self.audit_sink, events)

        logger.info(
            "Loan detection finished",
            extra={"tenant_id": tenant_id, "candidates": len(candidates), "changed": len(changed)},
        )
        return [to_detected_loan(loan) for loan in changed.values()]

    def _rate_for(self, cluster: PaymentCluster, loan_type: Optional[str] = None) -> Decimal:
        category = loan_type or dominant_category(cluster)
        if category is not None and category in self.config.loan_category_rates:
            return self.config.loan_category_rates[category]
        return self.config.loan_default_annual_rate

    def _upsert(
        self,
        tenant_id: str,
        cluster: PaymentCluster,
        status: LoanStatus,
        as_of: date,
        changed: Dict[str, Loan],
        events: List[AuditEvent],
    ) -> Optional[Loan]:
        existing = self.loans.find_matching_loan(
            tenant_id,
            cluster.vendor_key,
            cluster.median_amount,
            self.config.loan_tolerance_pct,
            self.config.loan_tolerance_abs,
        )
        if existing is None:
            payment_cluster = str(cluster.median_amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
            candidate = estimate_loan(
                cluster,
                status,
                assumed_term_months=self.config.loan_assumed_term_months,
                annual_rate=self._rate_for(cluster),
            )
            if is_stale(cluster.last_date, as_of):
                status = LoanStatus.PAID_OFF

            loan = self.loans.insert_loan(
                tenant_id,
                vendor=cluster.vendor,
                vendor_key=cluster.vendor_key,
                payment_cluster=payment_cluster,
                estimated_principal=candidate.estimated_principal,
                monthly_payment=candidate.monthly_payment,
                estimated_annual_rate=candidate.estimated_annual_rate,
                occurrences=cluster.occurrences,
                first_detected_date=cluster.first_date,
                last_seen_date=cluster.last_date,
                status=status.value,
                loan_type=dominant_category(cluster),
            )
            if loan is not None:
                changed[str(loan.id)] = loan
                events.append(
                    AuditEvent(
                        action="create",
                        entity_type="loan",
                        tenant_id=tenant_id,
                        entity_id=str(loan.id),
                        new_value=loan_audit_value(loan),
                    )
                )
                return loan

            # A concurrent run inserted the same cluster first; update its row instead
            existing = self.loans.get_loan_by_cluster(tenant_id, cluster.vendor_key, payment_cluster)
            if existing is None:
                logger.warning(
                    "Loan insert conflicted but no row found",
                    extra={"tenant_id": tenant_id, "vendor_key": cluster.vendor_key},
                )
                return None

        for _ in range(CAS_ATTEMPTS):
            values = self._updated_values(existing, cluster, status, as_of)
            if self._transition(existing, values, changed, events):
                return existing
        logger.warning(
            "Loan update lost compare-and-swap repeatedly",
            extra={"tenant_id": tenant_id, "loan_id": str(existing.id)},
        )
        return existing

    def _updated_values(self, loan: Loan, cluster: PaymentCluster, status: LoanStatus, as_of: date) -> Dict[str, Any]:
        first_seen = min(loan.first_detected_date, cluster.first_date)
        last_seen = max(loan.last_seen_date, cluster.last_date)
        occurrences = max(loan.occurrences, cluster.occurrences)
        candidate = estimate_loan(
            cluster,
            status,
            first_seen=first_seen,
            assumed_term_months=self.config.loan_assumed_term_months,
            annual_rate=self._rate_for(cluster, loan.loan_type),
        )

        if is_stale(last_seen, as_of):
            new_status = LoanStatus.PAID_OFF
        elif loan.status == LoanStatus.ACTIVE.value or status == LoanStatus.ACTIVE:
            new_status = LoanStatus.ACTIVE
        elif occurrences >= self.config.loan_min_occurrences:
            new_status = LoanStatus.ACTIVE
        else:
            new_status = LoanStatus.UNCONFIRMED

        values = {
            "estimated_principal": candidate.estimated_principal,
            "monthly_payment": candidate.monthly_payment,
            "estimated_annual_rate": candidate.estimated_annual_rate,
            "occurrences": occurrences,
            "first_detected_date": first_seen,
            "last_seen_date": last_seen,
            "status": new_status.value,
        }
        if loan.user_overridden:
            for field in AMOUNT_FIELDS:
                del values[field]
        return values

    def _transition(
        self,
        loan: Loan,
        values: Dict[str, Any],
        changed: Dict[str, Loan],
        events: List[AuditEvent],
    ) -> bool:
        """
        Apply values to a loan with compare-and-swap.

        Returns True when the row is up to date (updated or already equal),
        False when a concurrent writer changed it first.
        """
        if all(getattr(loan, field) == value for field, value in values.items()):
            return True

        old_status = loan.status
        if not self.loans.compare_and_swap(loan, loan.version, values):
            return False

        if loan.status != old_status:
            changed[str(loan.id)] = loan
            events.append(
                AuditEvent(
                    action="update",
                    entity_type="loan",
                    tenant_id=loan.tenant_id,
                    entity_id=str(loan.id),
                    old_value={"status": old_status},
                    new_value={"status": loan.status},
                )
            )
        return True
