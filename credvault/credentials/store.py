"""CredentialStore — tenant-scoped, encrypted, audited credential storage.

Flow for writes: validate → encrypt → persist → audit, with the row and its
success audit committed together. Reads reverse it: fetch by id *and* tenant
→ decrypt with the row's own key version → audit.

Every Create/Get/Update/Delete produces exactly one audit row, success or
failure. Secrets never reach the log or the audit table.
"""

import logging
from typing import Any, Optional, Union

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from credvault.audit.log import AuditLog
from credvault.credentials.encryption import EncryptionService, scrub
from credvault.credentials.validator import validate_credential
from credvault.db.models import CredentialModel, as_utc, utcnow
from credvault.db.repository import Repository
from credvault.exceptions import (
    DuplicateCredential, Expired, NotFound, NotFoundOrDenied, TenantInactive,
    ValidationFailed, VaultError,
)
from credvault.types import (
    AuditAction, AuditStatus, CredentialMetadata, CredentialPage, CredentialUpdate,
    FieldError, RequestContext, ServiceType, TenantContext, VerificationStatus,
)

logger = logging.getLogger(__name__)


def _to_metadata(m: CredentialModel) -> CredentialMetadata:
    return CredentialMetadata(
        id=m.id,
        tenant_id=m.tenant_id,
        service_type=ServiceType(m.service_type),
        name=m.name,
        key_version=m.key_version,
        schema_version=m.schema_version,
        is_active=m.is_active,
        verification_status=VerificationStatus(m.verification_status),
        last_verified_at=as_utc(m.last_verified_at),
        expires_at=as_utc(m.expires_at),
        created_at=as_utc(m.created_at),
        updated_at=as_utc(m.updated_at),
    )


def _is_unique_violation(exc: IntegrityError) -> bool:
    # sqlite: "UNIQUE constraint failed", postgres: "violates unique constraint"
    return "unique" in str(exc.orig).lower()


def _service(service_type: Union[ServiceType, str]) -> ServiceType:
    try:
        return ServiceType(service_type)
    except ValueError:
        raise ValidationFailed(
            errors=[FieldError(field="service_type", message="Unknown service type")]
        ) from None


def _validate(service: ServiceType, payload: Any) -> None:
    result = validate_credential(service, payload)
    if not result.valid:
        raise ValidationFailed(errors=result.errors)


def _sealed_fields(sealed) -> dict:
    return {
        "encrypted_data": sealed.ciphertext,
        "iv": sealed.iv,
        "auth_tag": sealed.auth_tag,
        "key_version": sealed.key_version,
    }


class CredentialStore:
    """Encrypted credential repository scoped to the caller's tenant.

    The tenant always comes from a :class:`TenantContext` built by the
    authentication layer. No method takes a bare tenant id.

    Args:
        session_factory: async SQLAlchemy session factory.
        encryption: configured :class:`EncryptionService`.
        audit: the :class:`AuditLog` every operation reports to.
        default_limit: page size when ``list()`` gets no limit.
        max_limit: upper clamp for page size.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        encryption: EncryptionService,
        audit: AuditLog,
        default_limit: int = 10,
        max_limit: int = 100,
    ) -> None:
        self._session_factory = session_factory
        self._enc = encryption
        self._audit = audit
        self.default_limit = default_limit
        self.max_limit = max_limit

    @property
    def encryption(self) -> EncryptionService:
        return self._enc

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_active(ctx: TenantContext) -> None:
        if not ctx.is_active:
            logger.warning("[Vault] Denied: tenant %s is not active", ctx.tenant_id)
            raise TenantInactive()

    async def _fail(
        self,
        ctx: TenantContext,
        credential_id: Optional[str],
        action: AuditAction,
        exc: VaultError,
        request_context: Optional[RequestContext],
        session: Optional[AsyncSession] = None,
    ) -> None:
        logger.info(
            "[Vault] %s failed: tenant=%s credential=%s reason=%s",
            action.value, ctx.tenant_id, credential_id, exc.failure_reason,
        )
        await self._audit.record(
            ctx.tenant_id, credential_id, action, AuditStatus.FAILED,
            failure_reason=exc.failure_reason,
            request_context=request_context,
            session=session,
        )

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def create(
        self,
        ctx: TenantContext,
        service_type: Union[ServiceType, str],
        name: str,
        plaintext: dict[str, Any],
        expires_at=None,
        request_context: Optional[RequestContext] = None,
    ) -> CredentialMetadata:
        """Validate, encrypt and store a new credential.

        Raises:
            TenantInactive, ValidationFailed, NoActiveKey, EncryptionFailed,
            DuplicateCredential.
        """
        action = AuditAction.CREATED
        try:
            self._require_active(ctx)
            service = _service(service_type)
            _validate(service, plaintext)
            sealed = self._enc.encrypt(plaintext, ctx.tenant_id, service, name)
        except VaultError as exc:
            await self._fail(ctx, None, action, exc, request_context)
            raise

        async with self._session_factory() as session:
            try:
                row = await Repository(session).add_credential(
                    ctx.tenant_id, service.value, name, sealed, as_utc(expires_at),
                )
                self._audit.stage(session, ctx.tenant_id, row.id, action, AuditStatus.SUCCESS,
                                  request_context=request_context)
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                if not _is_unique_violation(exc):
                    await self._fail(ctx, None, action, VaultError(), request_context, session)
                    raise
                await self._fail(ctx, None, action, DuplicateCredential(), request_context, session)
                raise DuplicateCredential() from None
            except SQLAlchemyError:
                await session.rollback()
                await self._fail(ctx, None, action, VaultError(), request_context, session)
                raise

        logger.info("[Vault] Created credential %s (%s) for tenant %s", row.id, service.value, ctx.tenant_id)
        return _to_metadata(row)

    async def get(
        self,
        ctx: TenantContext,
        credential_id: str,
        request_context: Optional[RequestContext] = None,
    ) -> dict[str, Any]:
        """Load and decrypt a credential. Expensive: call only to actually use it.

        The caller should :func:`~credvault.credentials.encryption.scrub` the
        returned dict once done with it.

        Raises:
            TenantInactive, NotFoundOrDenied, Expired, AccessDenied.
        """
        action = AuditAction.RETRIEVED
        try:
            self._require_active(ctx)
        except VaultError as exc:
            await self._fail(ctx, credential_id, action, exc, request_context)
            raise

        async with self._session_factory() as session:
            try:
                row = await Repository(session).get_credential(ctx.tenant_id, credential_id)
                if row is None:
                    raise NotFoundOrDenied()
                expires_at = as_utc(row.expires_at)
                if expires_at is not None and expires_at < utcnow():
                    raise Expired()
                payload = self._enc.decrypt(
                    row.encrypted_data, row.iv, row.auth_tag, row.key_version,
                    ctx.tenant_id, row.service_type, row.name,
                )
            except VaultError as exc:
                await session.rollback()
                await self._fail(ctx, credential_id, action, exc, request_context, session)
                raise
            except SQLAlchemyError:
                await session.rollback()
                await self._fail(ctx, credential_id, action, VaultError(), request_context, session)
                raise

            await session.rollback()
            await self._audit.record(
                ctx.tenant_id, credential_id, action, AuditStatus.SUCCESS,
                request_context=request_context, session=session,
            )
        return payload

    async def get_metadata(self, ctx: TenantContext, credential_id: str) -> CredentialMetadata:
        """Everything except the ciphertext. Cheap; not audited."""
        self._require_active(ctx)
        async with self._session_factory() as session:
            row = await Repository(session).get_credential(ctx.tenant_id, credential_id)
        if row is None:
            raise NotFoundOrDenied()
        return _to_metadata(row)

    async def update(
        self,
        ctx: TenantContext,
        credential_id: str,
        changes: CredentialUpdate,
        request_context: Optional[RequestContext] = None,
    ) -> CredentialMetadata:
        """Apply a partial update.

        A new payload is validated, re-encrypted under the active key and bumps
        ``schema_version``. A rename without a new payload re-binds the existing
        payload to the new name (fresh IV and tag, same ``schema_version``) since
        the name is part of the authenticated data. An expiry-only change leaves
        the ciphertext alone.

        Raises:
            TenantInactive, NotFound, ValidationFailed, DuplicateCredential,
            NoActiveKey, EncryptionFailed, AccessDenied.
        """
        action = AuditAction.UPDATED
        try:
            self._require_active(ctx)
        except VaultError as exc:
            await self._fail(ctx, credential_id, action, exc, request_context)
            raise

        async with self._session_factory() as session:
            repo = Repository(session)
            try:
                row = await repo.get_credential(ctx.tenant_id, credential_id)
                if row is None:
                    raise NotFound()
                service = ServiceType(row.service_type)
                new_name = changes.name if changes.name is not None else row.name

                updates: dict[str, Any] = {}
                if new_name != row.name:
                    updates["name"] = new_name
                if "expires_at" in changes.model_fields_set:
                    updates["expires_at"] = as_utc(changes.expires_at)

                if changes.plaintext is not None:
                    _validate(service, changes.plaintext)
                    sealed = self._enc.encrypt(changes.plaintext, ctx.tenant_id, service, new_name)
                    updates.update(_sealed_fields(sealed))
                    updates["schema_version"] = row.schema_version + 1
                elif "name" in updates:
                    payload = self._enc.decrypt(
                        row.encrypted_data, row.iv, row.auth_tag, row.key_version,
                        ctx.tenant_id, service, row.name,
                    )
                    try:
                        sealed = self._enc.encrypt(payload, ctx.tenant_id, service, new_name)
                    finally:
                        scrub(payload)
                    updates.update(_sealed_fields(sealed))

                row = await repo.update_credential(ctx.tenant_id, credential_id, updates)
                self._audit.stage(session, ctx.tenant_id, credential_id, action, AuditStatus.SUCCESS,
                                  request_context=request_context)
                await session.commit()
            except VaultError as exc:
                await session.rollback()
                await self._fail(ctx, credential_id, action, exc, request_context, session)
                raise
            except IntegrityError as exc:
                await session.rollback()
                if not _is_unique_violation(exc):
                    await self._fail(ctx, credential_id, action, VaultError(), request_context, session)
                    raise
                await self._fail(ctx, credential_id, action, DuplicateCredential(), request_context, session)
                raise DuplicateCredential() from None
            except SQLAlchemyError:
                await session.rollback()
                await self._fail(ctx, credential_id, action, VaultError(), request_context, session)
                raise

        logger.info("[Vault] Updated credential %s for tenant %s (reencrypted=%s)",
                    credential_id, ctx.tenant_id, "encrypted_data" in updates)
        return _to_metadata(row)

    async def delete(
        self,
        ctx: TenantContext,
        credential_id: str,
        request_context: Optional[RequestContext] = None,
    ) -> None:
        """Soft-delete. Not idempotent: a second call raises :class:`NotFound`."""
        action = AuditAction.DELETED
        try:
            self._require_active(ctx)
        except VaultError as exc:
            await self._fail(ctx, credential_id, action, exc, request_context)
            raise

        async with self._session_factory() as session:
            try:
                if not await Repository(session).deactivate_credential(ctx.tenant_id, credential_id):
                    raise NotFound()
                self._audit.stage(session, ctx.tenant_id, credential_id, action, AuditStatus.SUCCESS,
                                  request_context=request_context)
                await session.commit()
            except VaultError as exc:
                await session.rollback()
                await self._fail(ctx, credential_id, action, exc, request_context, session)
                raise
            except SQLAlchemyError:
                await session.rollback()
                await self._fail(ctx, credential_id, action, VaultError(), request_context, session)
                raise

        logger.info("[Vault] Deleted credential %s for tenant %s", credential_id, ctx.tenant_id)

    async def list(
        self,
        ctx: TenantContext,
        service_type: Optional[Union[ServiceType, str]] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> CredentialPage:
        """Paginated metadata for the tenant's active credentials, newest first."""
        self._require_active(ctx)
        service = _service(service_type).value if service_type is not None else None
        limit = self.default_limit if limit is None else limit
        limit = min(max(limit, 1), self.max_limit)
        page = max(page, 1)
        async with self._session_factory() as session:
            repo = Repository(session)
            total = await repo.count_credentials(ctx.tenant_id, service)
            rows = await repo.list_credentials(ctx.tenant_id, service, limit=limit, offset=(page - 1) * limit)
        return CredentialPage(items=[_to_metadata(r) for r in rows], total=total, page=page, limit=limit)

    async def set_verification_status(
        self,
        ctx: TenantContext,
        credential_id: str,
        status: Union[VerificationStatus, str],
    ) -> CredentialMetadata:
        """Record the outcome of an external verification. The caller audits it."""
        self._require_active(ctx)
        status = VerificationStatus(status)
        async with self._session_factory() as session:
            async with session.begin():
                row = await Repository(session).set_verification_status(
                    ctx.tenant_id, credential_id, status.value,
                )
                if row is None:
                    raise NotFoundOrDenied()
        return _to_metadata(row)
