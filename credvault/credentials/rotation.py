"""Background re-encryption after a key rotation.

``EncryptionService.rotate_key()`` only changes which key seals *new* rows.
This job walks rows still sealed under an older version and pushes each one
through the normal store contract (Get, then Update with the same payload),
so every step is tenant-scoped and audited like any other access.
"""

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from credvault.credentials.encryption import scrub
from credvault.credentials.keys import KeyRegistry
from credvault.credentials.store import CredentialStore
from credvault.db.repository import Repository
from credvault.exceptions import NoActiveKey, VaultError
from credvault.types import CredentialUpdate, ReencryptionSummary, RequestContext, TenantContext

logger = logging.getLogger(__name__)


async def reencrypt_stale_credentials(
    store: CredentialStore,
    session_factory: async_sessionmaker[AsyncSession],
    batch_size: int = 100,
) -> ReencryptionSummary:
    """Re-seal every active row whose key version is not the active one.

    Rows of missing or suspended tenants are skipped. Rows that fail (expired,
    undecryptable, no longer valid for their service) are reported and left
    untouched.
    """
    active = store.encryption.registry.active_version
    if active is None:
        raise NoActiveKey()

    summary = ReencryptionSummary(active_version=active)
    job_context = RequestContext(user_agent="credvault-reencrypt", request_id=f"reencrypt-{uuid.uuid4()}")
    excluded: set[str] = set()
    batch_size = max(batch_size, 1)

    while True:
        async with session_factory() as session:
            repo = Repository(session)
            stale = await repo.list_stale_credentials(active, limit=batch_size + len(excluded))
            batch = [(cid, tid) for cid, tid in stale if cid not in excluded][:batch_size]
            tenant_active = {}
            for _, tenant_id in batch:
                if tenant_id not in tenant_active:
                    tenant = await repo.get_tenant(tenant_id)
                    tenant_active[tenant_id] = bool(tenant and tenant.is_active)
        if not batch:
            break

        for credential_id, tenant_id in batch:
            summary.scanned += 1
            if not tenant_active[tenant_id]:
                summary.skipped += 1
                excluded.add(credential_id)
                continue
            ctx = TenantContext(tenant_id=tenant_id, is_active=True)
            try:
                payload = await store.get(ctx, credential_id, request_context=job_context)
                try:
                    await store.update(ctx, credential_id, CredentialUpdate(plaintext=payload),
                                       request_context=job_context)
                finally:
                    scrub(payload)
            except VaultError as exc:
                logger.warning("[Rotation] Could not re-encrypt credential %s: %s",
                               credential_id, exc.failure_reason)
                summary.failed += 1
                summary.failed_ids.append(credential_id)
                excluded.add(credential_id)
                continue
            summary.reencrypted += 1

    logger.info(
        "[Rotation] Re-encryption finished: active_version=%d scanned=%d reencrypted=%d skipped=%d failed=%d",
        active, summary.scanned, summary.reencrypted, summary.skipped, summary.failed,
    )
    return summary


async def unused_retired_versions(
    registry: KeyRegistry,
    session_factory: async_sessionmaker[AsyncSession],
) -> list[int]:
    """Retired key versions no row references. Safe to drop.

    Soft-deleted rows count: they keep their ciphertext and are never
    re-encrypted, so dropping their key would make them unreadable for good.
    """
    async with session_factory() as session:
        in_use = await Repository(session).key_versions_in_use()
    active = registry.active_version
    return [v for v in registry.versions() if v != active and v not in in_use]
