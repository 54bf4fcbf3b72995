"""CredentialVerifier: pluggable testers, status updates, never raises."""

from datetime import datetime, timedelta, timezone

from credvault.credentials.verification import CredentialVerifier
from credvault.types import AuditAction, AuditStatus, ServiceType, VerificationStatus


async def _verified_rows(vault, ctx, credential_id):
    rows = await vault.audit.query(ctx.tenant_id, credential_id=credential_id, limit=100)
    return [r for r in rows if r.action == AuditAction.VERIFIED]


async def test_default_tester_accepts_well_formed_payload(vault, ctx_a, shopify_payload):
    meta = await vault.store.create(ctx_a, ServiceType.SHOPIFY, "prod", shopify_payload)
    assert await vault.verifier.verify(ctx_a, meta.id) is True

    refreshed = await vault.store.get_metadata(ctx_a, meta.id)
    assert refreshed.verification_status == VerificationStatus.VALID
    assert refreshed.last_verified_at is not None
    [row] = await _verified_rows(vault, ctx_a, meta.id)
    assert row.status == AuditStatus.SUCCESS


async def test_registered_tester_gets_decrypted_payload(vault, ctx_a, ga4_payload):
    seen = {}

    async def reject(service_type, payload):
        seen.update(service=service_type, property_id=payload["property_id"])
        return False

    vault.verifier.register(ServiceType.GA4, reject)
    meta = await vault.store.create(ctx_a, ServiceType.GA4, "analytics", ga4_payload)
    assert await vault.verifier.verify(ctx_a, meta.id) is False
    assert seen == {"service": ServiceType.GA4, "property_id": ga4_payload["property_id"]}

    refreshed = await vault.store.get_metadata(ctx_a, meta.id)
    assert refreshed.verification_status == VerificationStatus.INVALID
    [row] = await _verified_rows(vault, ctx_a, meta.id)
    assert row.status == AuditStatus.FAILED
    assert row.failure_reason == "verification_failed"


async def test_tester_exception_is_reported_as_invalid(vault, ctx_a, meta_payload):
    async def explode(service_type, payload):
        raise RuntimeError("upstream 500")

    verifier = CredentialVerifier(vault.store, vault.audit, testers={ServiceType.META: explode})
    meta = await vault.store.create(ctx_a, ServiceType.META, "ads", meta_payload)
    assert await verifier.verify(ctx_a, meta.id) is False

    refreshed = await vault.store.get_metadata(ctx_a, meta.id)
    assert refreshed.verification_status == VerificationStatus.INVALID
    [row] = await _verified_rows(vault, ctx_a, meta.id)
    assert row.failure_reason == "internal_error"


async def test_other_tenants_credential_is_just_false(vault, ctx_a, ctx_b, shopify_payload):
    meta = await vault.store.create(ctx_a, ServiceType.SHOPIFY, "prod", shopify_payload)
    assert await vault.verifier.verify(ctx_b, meta.id) is False

    untouched = await vault.store.get_metadata(ctx_a, meta.id)
    assert untouched.verification_status == VerificationStatus.PENDING
    [row] = await _verified_rows(vault, ctx_b, meta.id)
    assert row.failure_reason == "not_found_or_denied"


async def test_expired_credential_fails_verification(vault, ctx_a, shopify_payload):
    past = datetime.now(timezone.utc) - timedelta(seconds=1)
    meta = await vault.store.create(ctx_a, ServiceType.SHOPIFY, "prod", shopify_payload, expires_at=past)
    assert await vault.verifier.verify(ctx_a, meta.id) is False
    [row] = await _verified_rows(vault, ctx_a, meta.id)
    assert row.failure_reason == "expired"
