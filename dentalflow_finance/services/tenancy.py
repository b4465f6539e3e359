"""Tenant id guard shared by all report services"""

from dentalflow_finance.domain.exceptions import InvalidTenantError


def require_tenant(tenant_id: str | None) -> str:
    """Return the tenant id stripped of whitespace, or raise when it is missing"""
    if tenant_id is None or not str(tenant_id).strip():
        raise InvalidTenantError("A tenant id is required")
    return str(tenant_id).strip()
