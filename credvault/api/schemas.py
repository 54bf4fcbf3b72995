"""Pydantic models for API request/response. Mirrors types.py for API I/O."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


# ── Requests ──

class CredentialCreateRequest(BaseModel):
    service_type: str
    name: str = Field(..., min_length=1, max_length=255)
    credential_data: dict[str, Any]
    expires_at: Optional[datetime] = None


class CredentialUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    credential_data: Optional[dict[str, Any]] = None
    expires_at: Optional[datetime] = None


# ── Responses ──

class VerifyResponse(BaseModel):
    credential_id: str
    is_valid: bool
    verification_status: str


class SuspiciousResponse(BaseModel):
    tenant_id: str
    suspicious: bool


class HealthResponse(BaseModel):
    status: str
    version: str
    services: dict[str, bool]
