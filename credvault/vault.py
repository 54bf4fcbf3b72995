"""Wiring for the vault components.

There are no module-level singletons: the caller builds one :class:`Vault`
at startup with injected key material and tears it down at shutdown.
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from credvault.audit.log import AuditLog
from credvault.config import CredVaultConfig, config as default_config
from credvault.credentials.encryption import EncryptionService
from credvault.credentials.keys import KeyRegistry
from credvault.credentials.store import CredentialStore
from credvault.credentials.verification import CredentialVerifier


class Vault:
    """The assembled vault: keys, cipher, audit log, store and verifier."""

    def __init__(
        self,
        registry: KeyRegistry,
        encryption: EncryptionService,
        audit: AuditLog,
        store: CredentialStore,
        verifier: CredentialVerifier,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self.registry = registry
        self.encryption = encryption
        self.audit = audit
        self.store = store
        self.verifier = verifier
        self.session_factory = session_factory

    def close(self) -> None:
        """Zero the in-memory keys."""
        self.registry.clear()


def build_vault(
    session_factory: async_sessionmaker[AsyncSession],
    registry: KeyRegistry,
    cfg: CredVaultConfig = None,
) -> Vault:
    cfg = cfg or default_config
    encryption = EncryptionService(registry)
    audit = AuditLog.from_config(session_factory, cfg)
    store = CredentialStore(
        session_factory,
        encryption,
        audit,
        default_limit=cfg.list_default_limit,
        max_limit=cfg.list_max_limit,
    )
    verifier = CredentialVerifier(store, audit)
    return Vault(registry, encryption, audit, store, verifier, session_factory)
