"""Credential Vault — encrypted, tenant-scoped secret storage."""

from credvault.credentials.keys import KeyRegistry, generate_master_key, key_fingerprint
from credvault.credentials.encryption import EncryptionService, scrub
from credvault.credentials.validator import sanitize_credential, validate_credential
from credvault.credentials.store import CredentialStore
from credvault.credentials.verification import CredentialVerifier

__all__ = [
    "KeyRegistry", "generate_master_key", "key_fingerprint",
    "EncryptionService", "scrub",
    "sanitize_credential", "validate_credential",
    "CredentialStore", "CredentialVerifier",
]
