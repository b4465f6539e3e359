"""Data access layer - every query is scoped to a single tenant"""

import logging
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from dentalflow_finance.domain.exceptions import UpstreamUnavailableError
from dentalflow_finance.domain.loan_detection import within_tolerance
from dentalflow_finance.domain.models import AuditEvent, LoanStatus, Transaction, ValuationEstimate
from dentalflow_finance.infrastructure.database.models import (
    AuditLogEntry,
    Loan,
    TransactionRecord,
    ValuationSnapshot,
)

logger = logging.getLogger(__name__)


class TransactionRepository:
    """Read-only access to a tenant's categorized transactions"""

    def __init__(self, db: Session):
        self.db = db

    def list_transactions(
        self,
        tenant_id: str,
        from_date: date,
        to_date: date,
        outflows_only: bool = False,
    ) -> List[Transaction]:
        """
        Fetch transactions with from_date <= date <= to_date, oldest first.

        Raises:
            UpstreamUnavailableError: when the store cannot be queried
        """
        query = self.db.query(TransactionRecord).filter(
            TransactionRecord.tenant_id == tenant_id,
            TransactionRecord.date >= from_date,
            TransactionRecord.date <= to_date,
        )
        if outflows_only:
            query = query.filter(TransactionRecord.amount < 0)

        try:
            rows = query.order_by(TransactionRecord.date, TransactionRecord.id).all()
        except DBAPIError as e:
            raise UpstreamUnavailableError(f"Transaction store unavailable: {e.__class__.__name__}") from e

        return [
            Transaction(
                id=str(row.id),
                tenant_id=row.tenant_id,
                date=row.date,
                amount=Decimal(row.amount),
                vendor=row.vendor,
                category_ref=row.category_ref,
            )
            for row in rows
        ]


class LoanRepository:
    """Repository for detected loans"""

    def __init__(self, db: Session):
        self.db = db

    def _query(self, tenant_id: str):
        return self.db.query(Loan).filter(Loan.tenant_id == tenant_id)

    def get_loans_by_tenant(self, tenant_id: str) -> List[Loan]:
        """All loans for a tenant regardless of status"""
        try:
            return self._query(tenant_id).order_by(Loan.vendor, Loan.monthly_payment).all()
        except DBAPIError as e:
            raise UpstreamUnavailableError(f"Loan store unavailable: {e.__class__.__name__}") from e

    def get_active_loans(self, tenant_id: str) -> List[Loan]:
        try:
            return (
                self._query(tenant_id)
                .filter(Loan.status == LoanStatus.ACTIVE.value)
                .order_by(Loan.vendor, Loan.monthly_payment)
                .all()
            )
        except DBAPIError as e:
            raise UpstreamUnavailableError(f"Loan store unavailable: {e.__class__.__name__}") from e

    def count_loans(self, tenant_id: str) -> int:
        try:
            return self._query(tenant_id).count()
        except DBAPIError as e:
            raise UpstreamUnavailableError(f"Loan store unavailable: {e.__class__.__name__}") from e

    def get_loan(self, tenant_id: str, loan_id: str) -> Optional[Loan]:
        """A single loan of the tenant; None for unknown or malformed ids"""
        try:
            key = uuid.UUID(str(loan_id))
        except ValueError:
            return None
        try:
            return self._query(tenant_id).filter(Loan.id == key).first()
        except DBAPIError as e:
            raise UpstreamUnavailableError(f"Loan store unavailable: {e.__class__.__name__}") from e

    def find_matching_loan(
        self,
        tenant_id: str,
        vendor_key: str,
        monthly_payment: Decimal,
        tolerance_pct: Decimal,
        tolerance_abs: Decimal,
    ) -> Optional[Loan]:
        """Existing loan for the vendor whose payment is within tolerance (closest wins)"""
        try:
            rows = self._query(tenant_id).filter(Loan.vendor_key == vendor_key).all()
        except DBAPIError as e:
            raise UpstreamUnavailableError(f"Loan store unavailable: {e.__class__.__name__}") from e

        candidates = [
            loan
            for loan in rows
            if within_tolerance(monthly_payment, Decimal(loan.monthly_payment), tolerance_pct, tolerance_abs)
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda l: abs(Decimal(l.monthly_payment) - monthly_payment))

    def get_loan_by_cluster(self, tenant_id: str, vendor_key: str, payment_cluster: str) -> Optional[Loan]:
        try:
            return (
                self._query(tenant_id)
                .filter(Loan.vendor_key == vendor_key, Loan.payment_cluster == payment_cluster)
                .first()
            )
        except DBAPIError as e:
            raise UpstreamUnavailableError(f"Loan store unavailable: {e.__class__.__name__}") from e

    def insert_loan(self, tenant_id: str, **values: Any) -> Optional[Loan]:
        """
        Insert a loan inside a SAVEPOINT.

        Returns None when the (tenant, vendor, cluster) unique constraint
        rejects the row because a concurrent detector inserted it first.
        """
        loan = Loan(id=uuid.uuid4(), tenant_id=tenant_id, version=1, **values)
        try:
            with self.db.begin_nested():
                self.db.add(loan)
                self.db.flush()
        except IntegrityError:
            logger.warning(
                "Concurrent loan insert conflict",
                extra={"tenant_id": tenant_id, "vendor_key": values.get("vendor_key")},
            )
            return None
        except DBAPIError as e:
            raise UpstreamUnavailableError(f"Loan store unavailable: {e.__class__.__name__}") from e
        return loan

    def compare_and_swap(self, loan: Loan, expected_version: int, values: Dict[str, Any]) -> bool:
        """
        Update a loan only if nobody changed it since it was read.

        Returns False when the version no longer matches.
        """
        try:
            updated = (
                self._query(loan.tenant_id)
                .filter(Loan.id == loan.id, Loan.version == expected_version)
                .update({**values, "version": Loan.version + 1}, synchronize_session=False)
            )
            self.db.refresh(loan)
        except DBAPIError as e:
            raise UpstreamUnavailableError(f"Loan store unavailable: {e.__class__.__name__}") from e
        return updated == 1


class ValuationSnapshotRepository:
    """Append-only repository for valuation snapshots"""

    def __init__(self, db: Session):
        self.db = db

    def create_snapshot(
        self,
        tenant_id: str,
        estimate: ValuationEstimate,
        computed_at: datetime,
    ) -> ValuationSnapshot:
        """Persist a new snapshot (never updates an existing one)"""
        snapshot = ValuationSnapshot(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            computed_at=computed_at,
            methodology=estimate.methodology,
            trailing_cash_flow=estimate.trailing_cash_flow,
            multiple=estimate.multiple,
            estimated_value=estimate.estimated_value,
            low_multiple=estimate.low_multiple,
            high_multiple=estimate.high_multiple,
            value_low=estimate.value_low,
            value_high=estimate.value_high,
        )
        try:
            self.db.add(snapshot)
            self.db.flush()
        except DBAPIError as e:
            raise UpstreamUnavailableError(f"Snapshot store unavailable: {e.__class__.__name__}") from e
        return snapshot

    def get_snapshots_by_tenant(self, tenant_id: str) -> List[ValuationSnapshot]:
        """All snapshots for a tenant, oldest first"""
        try:
            return (
                self.db.query(ValuationSnapshot)
                .filter(ValuationSnapshot.tenant_id == tenant_id)
                .order_by(ValuationSnapshot.computed_at.asc())
                .all()
            )
        except DBAPIError as e:
            raise UpstreamUnavailableError(f"Snapshot store unavailable: {e.__class__.__name__}") from e


class AuditLogRepository:
    """Repository for audit trail entries"""

    def __init__(self, db: Session):
        self.db = db

    def create_entry(self, event: AuditEvent) -> AuditLogEntry:
        entry = AuditLogEntry(
            tenant_id=event.tenant_id,
            action=event.action,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            old_value=event.old_value,
            new_value=event.new_value,
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def get_entries_by_tenant(self, tenant_id: str) -> List[AuditLogEntry]:
        return (
            self.db.query(AuditLogEntry)
            .filter(AuditLogEntry.tenant_id == tenant_id)
            .order_by(AuditLogEntry.created_at.asc())
            .all()
        )
