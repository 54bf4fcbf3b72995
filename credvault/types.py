"""All shared types, enums, and type aliases. Everything imports from here."""

from enum import Enum
from typing import Literal, Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field


# ── Enums ──────────────────────────────────────────────────────────────

class ServiceType(str, Enum):
    GOOGLE_SHEETS = "google_sheets"   # service-account JSON
    META = "meta"                     # ads platform bearer token
    GA4 = "ga4"                       # analytics OAuth client + refresh token
    SHOPIFY = "shopify"               # commerce admin API token

class VerificationStatus(str, Enum):
    PENDING = "pending"
    VALID = "valid"
    INVALID = "invalid"

class AuditAction(str, Enum):
    CREATED = "created"
    RETRIEVED = "retrieved"
    UPDATED = "updated"
    DELETED = "deleted"
    VERIFIED = "verified"

class AuditStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


# ── Request scope ──────────────────────────────────────────────────────

class TenantContext(BaseModel):
    """Authenticated tenant identity. Built by the auth layer, never from payloads."""
    model_config = ConfigDict(frozen=True)

    tenant_id: str
    is_active: bool = True

class RequestContext(BaseModel):
    """Where a request came from. Recorded on audit rows."""
    model_config = ConfigDict(frozen=True)

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None


# ── Encryption ─────────────────────────────────────────────────────────

class EncryptionResult(BaseModel):
    ciphertext: bytes
    iv: bytes              # 16 bytes
    auth_tag: bytes        # 16 bytes
    key_version: int


# ── Credentials ────────────────────────────────────────────────────────

class CredentialMetadata(BaseModel):
    """Everything about a stored credential except the ciphertext."""
    id: str
    tenant_id: str
    service_type: ServiceType
    name: str
    key_version: int
    schema_version: int = 1
    is_active: bool = True
    verification_status: VerificationStatus = VerificationStatus.PENDING
    last_verified_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

class CredentialUpdate(BaseModel):
    """Partial update. Only fields that were explicitly set are applied,
    so ``expires_at=None`` clears the expiry while omitting it leaves it alone."""
    name: Optional[str] = None
    plaintext: Optional[dict] = None
    expires_at: Optional[datetime] = None

class CredentialPage(BaseModel):
    items: list[CredentialMetadata] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 10


# ── Per-service payload shapes ─────────────────────────────────────────
# Extra keys are allowed: providers add fields over time and the vault
# stores the payload as given.

class GoogleSheetsCredential(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Literal["service_account"]
    project_id: str
    private_key_id: str
    private_key: str
    client_email: str
    client_id: str
    auth_uri: str
    token_uri: str
    auth_provider_x509_cert_url: Optional[str] = None
    client_x509_cert_url: Optional[str] = None

class MetaCredential(BaseModel):
    model_config = ConfigDict(extra="allow")

    access_token: str
    account_id: str
    token_type: Optional[str] = None
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None
    account_name: Optional[str] = None

class GA4Credential(BaseModel):
    model_config = ConfigDict(extra="allow")

    client_id: str
    client_secret: str
    refresh_token: str
    property_id: str

class ShopifyCredential(BaseModel):
    model_config = ConfigDict(extra="allow")

    shop_url: str
    access_token: str
    api_version: str
    scope: Optional[list[str]] = None

CREDENTIAL_MODELS: dict[ServiceType, type[BaseModel]] = {
    ServiceType.GOOGLE_SHEETS: GoogleSheetsCredential,
    ServiceType.META: MetaCredential,
    ServiceType.GA4: GA4Credential,
    ServiceType.SHOPIFY: ShopifyCredential,
}


# ── Validation ─────────────────────────────────────────────────────────

class FieldError(BaseModel):
    field: str
    message: str

class ValidationResult(BaseModel):
    valid: bool
    errors: list[FieldError] = Field(default_factory=list)


# ── Audit ──────────────────────────────────────────────────────────────

class AuditRecord(BaseModel):
    """One immutable audit row. Never carries secret material."""
    id: int
    tenant_id: str
    credential_id: Optional[str] = None
    action: AuditAction
    status: AuditStatus
    failure_reason: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None
    created_at: datetime

class AuditReport(BaseModel):
    tenant_id: Optional[str] = None
    total_actions: int = 0
    successful_actions: int = 0
    failed_actions: int = 0
    by_action: dict[str, int] = Field(default_factory=dict)


# ── Key rotation ───────────────────────────────────────────────────────

class ReencryptionSummary(BaseModel):
    active_version: int
    scanned: int = 0
    reencrypted: int = 0
    skipped: int = 0
    failed: int = 0
    failed_ids: list[str] = Field(default_factory=list)
