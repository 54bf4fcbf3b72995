"""credvault — multi-tenant credential vault.

Usage:
    from credvault import build_vault, TenantContext

    vault = build_vault(session_factory, registry)
    meta = await vault.store.create(TenantContext(tenant_id="t1"), "shopify", "prod", payload)
"""

from credvault.types import (
    ServiceType, VerificationStatus, AuditAction, AuditStatus,
    TenantContext, RequestContext, CredentialMetadata, CredentialPage,
    CredentialUpdate, AuditRecord, ValidationResult,
)
from credvault.exceptions import (
    VaultError, NoActiveKey, KeyUnavailable, EncryptionFailed, AccessDenied,
    NotFoundOrDenied, NotFound, Expired, DuplicateCredential, TenantInactive,
    ValidationFailed,
)
from credvault.vault import Vault, build_vault
from credvault.version import __version__

__all__ = [
    "ServiceType", "VerificationStatus", "AuditAction", "AuditStatus",
    "TenantContext", "RequestContext", "CredentialMetadata", "CredentialPage",
    "CredentialUpdate", "AuditRecord", "ValidationResult",
    "VaultError", "NoActiveKey", "KeyUnavailable", "EncryptionFailed", "AccessDenied",
    "NotFoundOrDenied", "NotFound", "Expired", "DuplicateCredential", "TenantInactive",
    "ValidationFailed",
    "Vault", "build_vault",
    "__version__",
]
