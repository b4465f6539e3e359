"""SQLAlchemy ORM models for transactions, loans, valuation snapshots and the audit log"""

import uuid
from sqlalchemy import Boolean, Column, Date, DateTime, Index, Integer, JSON, Numeric, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class TransactionRecord(Base):
    """Categorized transaction, written by the sync/categorization services and read-only here"""

    __tablename__ = "transactions"
    __table_args__ = (Index("txn_tenant_date_idx", "tenant_id", "date"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Text, nullable=False)
    date = Column(Date, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    vendor = Column(Text, nullable=True)
    category_ref = Column(Text, nullable=True)


class Loan(Base):
    """Loan detected from recurring payments; one row per (tenant, vendor, payment cluster)"""

    __tablename__ = "loans"
    __table_args__ = (
        UniqueConstraint("tenant_id", "vendor_key", "payment_cluster", name="loan_tenant_vendor_cluster_uq"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Text, nullable=False, index=True)
    vendor = Column(Text, nullable=False)
    vendor_key = Column(Text, nullable=False)
    payment_cluster = Column(Text, nullable=False)
    estimated_principal = Column(Numeric(12, 2), nullable=False)
    monthly_payment = Column(Numeric(12, 2), nullable=False)
    estimated_annual_rate = Column(Numeric(9, 6), nullable=False)
    occurrences = Column(Integer, nullable=False, default=0)
    first_detected_date = Column(Date, nullable=False)
    last_seen_date = Column(Date, nullable=False)
    status = Column(Text, nullable=False, default="unconfirmed")
    loan_type = Column(Text, nullable=True)
    user_overridden = Column(Boolean, nullable=False, default=False)  # detection leaves amounts alone
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class ValuationSnapshot(Base):
    """Point-in-time valuation; rows are only ever inserted"""

    __tablename__ = "valuation_snapshots"
    __table_args__ = (Index("valuation_tenant_computed_idx", "tenant_id", "computed_at"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Text, nullable=False)
    computed_at = Column(DateTime(timezone=True), nullable=False)
    methodology = Column(Text, nullable=False)
    trailing_cash_flow = Column(Numeric(14, 2), nullable=False)
    multiple = Column(Numeric(9, 4), nullable=False)
    estimated_value = Column(Numeric(14, 2), nullable=False)
    low_multiple = Column(Numeric(9, 4), nullable=True)
    high_multiple = Column(Numeric(9, 4), nullable=True)
    value_low = Column(Numeric(14, 2), nullable=True)
    value_high = Column(Numeric(14, 2), nullable=True)


class AuditLogEntry(Base):
    """Audit trail of state changes made by the engine"""

    __tablename__ = "audit_log"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Text, nullable=False, index=True)
    action = Column(Text, nullable=False)
    entity_type = Column(Text, nullable=False)
    entity_id = Column(Text, nullable=True)
    old_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
