"""Audit trail API routes. Tenant-scoped reads only."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from credvault.api.routes.credentials import _get_tenant, _get_vault
from credvault.api.schemas import SuspiciousResponse
from credvault.types import TenantContext

logger = logging.getLogger(__name__)
router = APIRouter(tags=["audit"])


def _default_limit(request: Request, limit: Optional[int]) -> int:
    if limit is not None:
        return limit
    cfg = getattr(request.app.state, "config", None)
    return cfg.audit_query_limit if cfg is not None else 50


@router.get("/audit")
async def list_audit(
    request: Request,
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    tenant: TenantContext = Depends(_get_tenant),
    vault=Depends(_get_vault),
):
    records = await vault.audit.query(tenant.tenant_id, limit=_default_limit(request, limit))
    return {"records": [r.model_dump(mode="json") for r in records]}


@router.get("/audit/suspicious", response_model=SuspiciousResponse)
async def suspicious_activity(
    tenant: TenantContext = Depends(_get_tenant),
    vault=Depends(_get_vault),
):
    flagged = await vault.audit.detect_suspicious(tenant.tenant_id)
    return SuspiciousResponse(tenant_id=tenant.tenant_id, suspicious=flagged)


@router.get("/credentials/{credential_id}/audit")
async def credential_audit(
    credential_id: str,
    request: Request,
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    tenant: TenantContext = Depends(_get_tenant),
    vault=Depends(_get_vault),
):
    records = await vault.audit.query(
        tenant.tenant_id, credential_id=credential_id, limit=_default_limit(request, limit),
    )
    return {"credential_id": credential_id, "records": [r.model_dump(mode="json") for r in records]}
