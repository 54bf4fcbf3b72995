"""Credential vault API routes.

The tenant always comes from the authenticated token via request.state,
never from the body or query string.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from credvault.api.schemas import CredentialCreateRequest, CredentialUpdateRequest, VerifyResponse
from credvault.types import CredentialUpdate, RequestContext, TenantContext

logger = logging.getLogger(__name__)
router = APIRouter(tags=["credentials"])


# ── Dependencies ──────────────────────────────────────────────────────────────

def _get_tenant(request: Request) -> TenantContext:
    tenant = getattr(request.state, "tenant", None)
    if tenant is None:
        raise HTTPException(status_code=401, detail="Tenant not authenticated.")
    return tenant


def _get_vault(request: Request):
    vault = getattr(request.app.state, "vault", None)
    if vault is None:
        raise HTTPException(status_code=503, detail="Credential vault not initialised.")
    return vault


def _request_context(request: Request) -> RequestContext:
    return getattr(request.state, "request_context", None) or RequestContext()


# ── Routes ────────────────────────────────────────────────────────────────────

@router.post("/credentials", status_code=201)
async def create_credential(
    body: CredentialCreateRequest,
    tenant: TenantContext = Depends(_get_tenant),
    request_context: RequestContext = Depends(_request_context),
    vault=Depends(_get_vault),
):
    metadata = await vault.store.create(
        tenant,
        body.service_type,
        body.name,
        body.credential_data,
        expires_at=body.expires_at,
        request_context=request_context,
    )
    return metadata.model_dump(mode="json")


@router.get("/credentials")
async def list_credentials(
    service_type: Optional[str] = None,
    page: int = Query(default=1),
    limit: Optional[int] = Query(default=None),
    tenant: TenantContext = Depends(_get_tenant),
    vault=Depends(_get_vault),
):
    result = await vault.store.list(tenant, service_type=service_type, page=page, limit=limit)
    return result.model_dump(mode="json")


@router.get("/credentials/{credential_id}")
async def get_credential(
    credential_id: str,
    tenant: TenantContext = Depends(_get_tenant),
    vault=Depends(_get_vault),
):
    metadata = await vault.store.get_metadata(tenant, credential_id)
    return metadata.model_dump(mode="json")


@router.put("/credentials/{credential_id}")
async def update_credential(
    credential_id: str,
    body: CredentialUpdateRequest,
    tenant: TenantContext = Depends(_get_tenant),
    request_context: RequestContext = Depends(_request_context),
    vault=Depends(_get_vault),
):
    changes = {}
    if "name" in body.model_fields_set:
        changes["name"] = body.name
    if "credential_data" in body.model_fields_set:
        changes["plaintext"] = body.credential_data
    if "expires_at" in body.model_fields_set:
        changes["expires_at"] = body.expires_at
    metadata = await vault.store.update(
        tenant, credential_id, CredentialUpdate(**changes), request_context=request_context,
    )
    return metadata.model_dump(mode="json")


@router.delete("/credentials/{credential_id}", status_code=204)
async def delete_credential(
    credential_id: str,
    tenant: TenantContext = Depends(_get_tenant),
    request_context: RequestContext = Depends(_request_context),
    vault=Depends(_get_vault),
):
    await vault.store.delete(tenant, credential_id, request_context=request_context)
    return Response(status_code=204)


@router.post("/credentials/{credential_id}/verify", response_model=VerifyResponse)
async def verify_credential(
    credential_id: str,
    tenant: TenantContext = Depends(_get_tenant),
    request_context: RequestContext = Depends(_request_context),
    vault=Depends(_get_vault),
):
    """Always 200. Failures of any kind come back as ``is_valid: false``."""
    is_valid = await vault.verifier.verify(tenant, credential_id, request_context=request_context)
    return VerifyResponse(
        credential_id=credential_id,
        is_valid=is_valid,
        verification_status="valid" if is_valid else "invalid",
    )
