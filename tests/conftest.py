"""Pytest fixtures for testing"""

import uuid
import pytest
from datetime import date
from decimal import Decimal
from typing import Callable, Generator, List, Optional
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from dentalflow_finance.api.dependencies import get_audit_sink
from dentalflow_finance.api.main import create_app
from dentalflow_finance.domain.models import AuditEvent, Transaction
from dentalflow_finance.infrastructure.database.models import Base, TransactionRecord
from dentalflow_finance.infrastructure.database.session import get_db


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


# pysqlite needs to leave transaction control to SQLAlchemy for SAVEPOINTs to work
@event.listens_for(engine, "connect")
def _disable_pysqlite_transactions(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


@event.listens_for(engine, "begin")
def _emit_begin(conn):
    conn.exec_driver_sql("BEGIN")


class RecordingAuditSink:
    """Audit sink that keeps emitted events in memory"""

    def __init__(self):
        self.events: List[AuditEvent] = []

    def emit(self, event: AuditEvent) -> None:
        self.events.append(event)


class FailingAuditSink:
    def emit(self, event: AuditEvent) -> None:
        raise RuntimeError("audit service down")


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def failing_audit_sink() -> FailingAuditSink:
    return FailingAuditSink()


@pytest.fixture
def client(db: Session, audit_sink: RecordingAuditSink) -> TestClient:
    """Create FastAPI test client with test database and in-memory audit sink"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_audit_sink] = lambda: audit_sink
    return TestClient(app)


@pytest.fixture
def make_transaction() -> Callable[..., Transaction]:
    """Build domain transactions with sensible defaults"""

    def _make(
        txn_date: date,
        amount: str,
        vendor: Optional[str] = "Vendor",
        category_ref: Optional[str] = None,
        tenant_id: str = "tenant_a",
    ) -> Transaction:
        return Transaction(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            date=txn_date,
            amount=Decimal(amount),
            vendor=vendor,
            category_ref=category_ref,
        )

    return _make


@pytest.fixture
def seed_transactions(db: Session) -> Callable[..., None]:
    """Insert transaction rows for a tenant"""

    def _seed(tenant_id: str, rows: List[tuple]) -> None:
        for row in rows:
            txn_date, amount, vendor = row[:3]
            category_ref = row[3] if len(row) > 3 else None
            db.add(
                TransactionRecord(
                    id=uuid.uuid4(),
                    tenant_id=tenant_id,
                    date=txn_date,
                    amount=Decimal(amount),
                    vendor=vendor,
                    category_ref=category_ref,
                )
            )
        db.commit()

    return _seed


def _monthly_payments(start: date, count: int, amount: str = "-500.00", vendor: str = "Bank A", category=None) -> List[tuple]:
    """Payments on the first of `count` consecutive months starting at start's month"""
    rows = []
    year, month = start.year, start.month
    for _ in range(count):
        rows.append((date(year, month, 1), amount, vendor, category))
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return rows


@pytest.fixture
def monthly_payments() -> Callable[..., List[tuple]]:
    return _monthly_payments
