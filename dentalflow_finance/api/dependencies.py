"""Dependency injection for FastAPI endpoints"""

from fastapi import BackgroundTasks, Header, HTTPException, Request

from dentalflow_finance.config import settings
from dentalflow_finance.infrastructure.audit_sink import AuditSink, DatabaseAuditSink, WebhookAuditSink
from dentalflow_finance.infrastructure.clients.audit import AuditWebhookClient
from dentalflow_finance.infrastructure.database.session import SessionLocal


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_tenant_id(x_tenant_id: str | None = Header(default=None)) -> str:
    """Tenant resolved upstream by the session layer and forwarded as X-Tenant-ID"""
    if x_tenant_id is None or not x_tenant_id.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_tenant_id.strip()


def get_audit_sink(background_tasks: BackgroundTasks) -> AuditSink:
    """Webhook sink when an audit service is configured, audit_log table otherwise"""
    if settings.audit_webhook_url:
        return WebhookAuditSink(background_tasks, AuditWebhookClient())
    return DatabaseAuditSink(SessionLocal)
