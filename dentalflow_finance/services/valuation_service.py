"""Valuation snapshots - compute, persist and list"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Callable, List, Optional, Tuple

from sqlalchemy.orm import Session

from dentalflow_finance.config import settings
from dentalflow_finance.domain.models import AuditEvent, ValuationSnapshotRecord
from dentalflow_finance.domain.valuation import estimate_value
from dentalflow_finance.infrastructure.audit_sink import AuditSink, emit_all
from dentalflow_finance.infrastructure.database.models import ValuationSnapshot
from dentalflow_finance.infrastructure.database.repositories import ValuationSnapshotRepository
from dentalflow_finance.infrastructure.observability.metrics import record_valuation
from dentalflow_finance.services.cash_flow_service import CashFlowService
from dentalflow_finance.services.tenancy import require_tenant

VALUATION_WINDOW_MONTHS = 12


def _as_decimal(value) -> Optional[Decimal]:
    return None if value is None else Decimal(value)


def to_snapshot_record(snapshot: ValuationSnapshot) -> ValuationSnapshotRecord:
    return ValuationSnapshotRecord(
        id=str(snapshot.id),
        tenant_id=snapshot.tenant_id,
        computed_at=snapshot.computed_at,
        methodology=snapshot.methodology,
        trailing_cash_flow=Decimal(snapshot.trailing_cash_flow),
        multiple=Decimal(snapshot.multiple),
        estimated_value=Decimal(snapshot.estimated_value),
        low_multiple=_as_decimal(snapshot.low_multiple),
        high_multiple=_as_decimal(snapshot.high_multiple),
        value_low=_as_decimal(snapshot.value_low),
        value_high=_as_decimal(snapshot.value_high),
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ValuationService:
    def __init__(
        self,
        db: Session,
        audit_sink: Optional[AuditSink] = None,
        industry_multiple: Optional[Decimal] = None,
        multiple_band: Optional[Tuple[Decimal, Decimal]] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db = db
        self.audit_sink = audit_sink
        self.industry_multiple = settings.industry_multiple if industry_multiple is None else industry_multiple
        self.multiple_band = settings.industry_multiple_band if multiple_band is None else multiple_band
        self.clock = clock
        self.snapshots = ValuationSnapshotRepository(db)
        self.cash_flow = CashFlowService(db)

    def calculate_valuation(self, tenant_id: str, as_of: Optional[date] = None) -> ValuationSnapshotRecord:
        """
        Value the practice at trailing twelve month FCF x industry multiple,
        with a low/high range from the multiple band.

        Every call appends a new snapshot; history is an audit trail and is
        never deduplicated.
        """
        tenant_id = require_tenant(tenant_id)
        computed_at = self.clock()
        cash_flow = self.cash_flow.compute_free_cash_flow(
            tenant_id, VALUATION_WINDOW_MONTHS, as_of=as_of or computed_at.date()
        )
        estimate = estimate_value(cash_flow, self.industry_multiple, self.multiple_band)

        try:
            snapshot = self.snapshots.create_snapshot(tenant_id, estimate, computed_at)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        record = to_snapshot_record(snapshot)
        record_valuation(record.estimated_value)
        emit_all(
            self.audit_sink,
            [
                AuditEvent(
                    action="create",
                    entity_type="valuation_snapshot",
                    tenant_id=tenant_id,
                    entity_id=record.id,
                    new_value={
                        "methodology": record.methodology,
                        "trailing_cash_flow": str(record.trailing_cash_flow),
                        "multiple": str(record.multiple),
                        "estimated_value": str(record.estimated_value),
                        "value_low": str(record.value_low),
                        "value_high": str(record.value_high),
                    },
                )
            ],
        )
        return record

    def get_valuation_history(self, tenant_id: str) -> List[ValuationSnapshotRecord]:
        """All snapshots for the tenant, oldest first; empty when none exist"""
        tenant_id = require_tenant(tenant_id)
        return [to_snapshot_record(s) for s in self.snapshots.get_snapshots_by_tenant(tenant_id)]
