"""Credential verification workflow.

Decrypts a stored credential, hands it to a pluggable per-service tester,
records the outcome on the row and audits the ``verified`` action. Testers
that call live third-party APIs belong to the integration layer and are
registered here; the built-in default only re-checks the payload shape.

``verify()`` never raises. Callers surface its boolean as-is, so status codes
cannot be used to probe which ids exist.
"""

import logging
from typing import Any, Awaitable, Callable, Optional

from credvault.audit.log import AuditLog
from credvault.credentials.encryption import scrub
from credvault.credentials.store import CredentialStore
from credvault.credentials.validator import validate_credential
from credvault.types import (
    AuditAction, AuditStatus, RequestContext, ServiceType, TenantContext, VerificationStatus,
)

logger = logging.getLogger(__name__)

Tester = Callable[[ServiceType, dict[str, Any]], Awaitable[bool]]


async def shape_tester(service_type: ServiceType, payload: dict[str, Any]) -> bool:
    """Offline fallback: the payload still has the shape its service needs."""
    return validate_credential(service_type, payload).valid


class CredentialVerifier:
    """Runs verification for one credential at a time.

    Args:
        store: the credential store to read from and update.
        audit: where ``verified`` rows go.
        testers: optional ``{ServiceType: async (service, payload) -> bool}``.
        default_tester: used for services without a registered tester.
    """

    def __init__(
        self,
        store: CredentialStore,
        audit: AuditLog,
        testers: Optional[dict[ServiceType, Tester]] = None,
        default_tester: Tester = shape_tester,
    ) -> None:
        self._store = store
        self._audit = audit
        self._testers: dict[ServiceType, Tester] = dict(testers or {})
        self._default = default_tester

    def register(self, service_type: ServiceType, tester: Tester) -> None:
        self._testers[ServiceType(service_type)] = tester

    async def verify(
        self,
        ctx: TenantContext,
        credential_id: str,
        request_context: Optional[RequestContext] = None,
    ) -> bool:
        """Return whether the credential works. Any error counts as ``False``."""
        try:
            metadata = await self._store.get_metadata(ctx, credential_id)
            payload = await self._store.get(ctx, credential_id, request_context)
            try:
                tester = self._testers.get(metadata.service_type, self._default)
                is_valid = bool(await tester(metadata.service_type, payload))
            finally:
                scrub(payload)

            await self._store.set_verification_status(
                ctx, credential_id,
                VerificationStatus.VALID if is_valid else VerificationStatus.INVALID,
            )
            await self._audit.record(
                ctx.tenant_id, credential_id, AuditAction.VERIFIED,
                AuditStatus.SUCCESS if is_valid else AuditStatus.FAILED,
                failure_reason=None if is_valid else "verification_failed",
                request_context=request_context,
            )
            logger.info("[Verify] tenant=%s credential=%s service=%s valid=%s",
                        ctx.tenant_id, credential_id, metadata.service_type.value, is_valid)
            return is_valid
        except Exception as exc:
            reason = getattr(exc, "failure_reason", "internal_error")
            logger.warning("[Verify] Verification failed: tenant=%s credential=%s reason=%s",
                           ctx.tenant_id, credential_id, reason)
            await self._mark_invalid(ctx, credential_id)
            await self._audit.record(
                ctx.tenant_id, credential_id, AuditAction.VERIFIED, AuditStatus.FAILED,
                failure_reason=reason, request_context=request_context,
            )
            return False

    async def _mark_invalid(self, ctx: TenantContext, credential_id: str) -> None:
        try:
            await self._store.set_verification_status(ctx, credential_id, VerificationStatus.INVALID)
        except Exception as exc:
            logger.debug("[Verify] Could not mark credential %s invalid: %s", credential_id, type(exc).__name__)
