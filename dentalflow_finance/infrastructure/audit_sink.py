"""Audit sinks - one-way, best-effort emission of audit events"""

import logging
from dataclasses import asdict
from typing import Any, Callable, Dict, Protocol

from fastapi import BackgroundTasks
from sqlalchemy.orm import Session

from dentalflow_finance.domain.models import AuditEvent
from dentalflow_finance.infrastructure.clients.audit import AuditWebhookClient
from dentalflow_finance.infrastructure.database.repositories import AuditLogRepository
from dentalflow_finance.infrastructure.observability.metrics import audit_failure_counter

logger = logging.getLogger(__name__)


class AuditSink(Protocol):
    def emit(self, event: AuditEvent) -> None:
        ...


def event_payload(event: AuditEvent) -> Dict[str, Any]:
    return asdict(event)


class DatabaseAuditSink:
    """
    Writes audit events to the audit_log table.

    Each event gets its own session and transaction, so a failing insert
    cannot roll back the operation that produced it.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def emit(self, event: AuditEvent) -> None:
        try:
            db = self.session_factory()
            try:
                AuditLogRepository(db).create_entry(event)
                db.commit()
            finally:
                db.close()
        except Exception as e:
            audit_failure_counter.inc()
            logger.warning(
                "Audit log write failed",
                extra={"tenant_id": event.tenant_id, "action": event.action, "error": str(e)},
            )


class WebhookAuditSink:
    """Schedules webhook delivery to run after the response is sent"""

    def __init__(self, background_tasks: BackgroundTasks, client: AuditWebhookClient):
        self.background_tasks = background_tasks
        self.client = client

    def emit(self, event: AuditEvent) -> None:
        try:
            self.background_tasks.add_task(self.client.send_event, event_payload(event))
        except Exception as e:
            audit_failure_counter.inc()
            logger.warning(
                "Audit event could not be scheduled",
                extra={"tenant_id": event.tenant_id, "action": event.action, "error": str(e)},
            )


def emit_all(sink: AuditSink | None, events: list[AuditEvent]) -> None:
    """Emit events one by one; a sink failure never propagates"""
    if sink is None:
        return
    for event in events:
        try:
            sink.emit(event)
        except Exception as e:
            audit_failure_counter.inc()
            logger.warning("Audit sink raised", extra={"action": event.action, "error": str(e)})
