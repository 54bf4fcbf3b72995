"""Typed exception hierarchy. Every error the vault can raise.

Messages are deliberately generic. Anything that would help an attacker tell
"wrong tenant" from "wrong id" from "wrong key" stays in the local log.
"""


class VaultError(Exception):
    """Base exception for all credential vault errors."""

    error_code = "VAULT_000"
    failure_reason = "internal_error"
    default_message = "Credential vault error"

    def __init__(self, message: str = "", details: dict = None):
        super().__init__(message or self.default_message)
        self.details = details or {}


# ── Key management ──────────────────────────────────────────────────────────


class NoActiveKey(VaultError):
    """No master key has been registered as active."""
    error_code = "KEY_001"
    failure_reason = "encryption_failed"
    default_message = "Master key not initialized"


class KeyUnavailable(VaultError):
    """Requested key version was never registered (or has been dropped)."""
    error_code = "KEY_002"
    failure_reason = "access_denied"
    default_message = "Key version not available"


class InvalidKeyMaterial(VaultError):
    """Key material is not exactly 32 bytes."""
    error_code = "KEY_003"
    failure_reason = "internal_error"
    default_message = "Master key must be exactly 32 bytes"


# ── Encryption ──────────────────────────────────────────────────────────────


class EncryptionFailed(VaultError):
    """The cipher failed while sealing a payload."""
    error_code = "CRED_001"
    failure_reason = "encryption_failed"
    default_message = "Credential encryption failed"


class AccessDenied(VaultError):
    """Decryption failed. Bad tag, bad AAD, bad IV and missing key all look the same."""
    error_code = "CRED_006"
    failure_reason = "access_denied"
    default_message = "Decryption failed: credential access denied"


# ── Store ───────────────────────────────────────────────────────────────────


class NotFoundOrDenied(VaultError):
    """Credential does not exist, belongs to another tenant, or was deleted."""
    error_code = "CRED_005"
    failure_reason = "not_found_or_denied"
    default_message = "Credential not found or access denied"


class NotFound(VaultError):
    """Credential to mutate is absent for this tenant."""
    error_code = "CRED_008"
    failure_reason = "not_found"
    default_message = "Credential not found"


class Expired(VaultError):
    """Credential is past its expires_at."""
    error_code = "CRED_009"
    failure_reason = "expired"
    default_message = "Credential has expired"


class DuplicateCredential(VaultError):
    """An active credential with the same tenant, service and name exists."""
    error_code = "CRED_007"
    failure_reason = "duplicate_credential"
    default_message = "Credential with this name already exists for this service"


class TenantInactive(VaultError):
    """Suspended tenants cannot read or write secrets."""
    error_code = "USER_001"
    failure_reason = "tenant_inactive"
    default_message = "Tenant account is not active"


class ValidationFailed(VaultError):
    """Payload does not match the shape required for its service type."""
    error_code = "CRED_002"
    failure_reason = "validation_failed"
    default_message = "Credential validation failed"

    def __init__(self, message: str = "", errors: list = None, **kwargs):
        super().__init__(message, **kwargs)
        self.errors = errors or []
