"""API integration tests: auth, credential endpoints, error mapping, audit endpoints.

Coverage:
  GET    /v1/health                        — public, reports database + key state
  POST   /v1/credentials                   — 201, 409 duplicate, 400 validation, 403 inactive tenant
  GET    /v1/credentials                   — paginated, filtered, tenant-scoped
  GET    /v1/credentials/{id}              — metadata only, 404 across tenants
  PUT    /v1/credentials/{id}              — partial update, 404 missing
  DELETE /v1/credentials/{id}              — 204, then 404
  POST   /v1/credentials/{id}/verify       — always 200 with is_valid
  GET    /v1/audit, /v1/audit/suspicious   — tenant audit trail
  GET    /v1/credentials/{id}/audit        — per-credential trail
"""

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi.testclient import TestClient

from credvault.api.errors import status_for
from credvault.api.main import create_app
from credvault.auth.jwt import JWTManager
from credvault.db.repository import Repository
from credvault.exceptions import (
    AccessDenied, DuplicateCredential, EncryptionFailed, Expired, NoActiveKey, NotFound,
    NotFoundOrDenied, TenantInactive, ValidationFailed,
)

TENANT_A = "tenant-alpha-001"
TENANT_B = "tenant-beta-002"
TENANT_DORMANT = "tenant-dormant-003"


async def _seed_tenants(session_factory):
    async with session_factory() as session:
        repo = Repository(session)
        await repo.create_tenant("Alpha", tenant_id=TENANT_A)
        await repo.create_tenant("Beta", tenant_id=TENANT_B)
        await repo.create_tenant("Dormant", tenant_id=TENANT_DORMANT, is_active=False)
        await session.commit()


# ── Fixtures ───────────────────────────────────────────────────────────────────

@pytest.fixture
def client(config):
    app = create_app(config)
    with TestClient(app) as client:
        client.portal.call(_seed_tenants, app.state.vault.session_factory)
        yield client


@pytest.fixture
def headers_for(client, config):
    manager = JWTManager(config)

    def _headers(tenant_id):
        token = client.portal.call(manager.create_token, tenant_id)
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture
def auth_a(headers_for):
    return headers_for(TENANT_A)


@pytest.fixture
def auth_b(headers_for):
    return headers_for(TENANT_B)


@pytest.fixture
def created(client, auth_a, shopify_payload):
    resp = client.post("/v1/credentials", headers=auth_a, json={
        "service_type": "shopify", "name": "prod", "credential_data": shopify_payload,
    })
    assert resp.status_code == 201, resp.text
    return resp.json()


# ── Health / auth ──────────────────────────────────────────────────────────────

def test_health_is_public(client):
    resp = client.get("/v1/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["services"] == {"api": True, "database": True, "keys": True}
    assert resp.headers["X-Content-Type-Options"] == "nosniff"


def test_security_headers_on_every_response(client, auth_a, created):
    for resp in (
        client.get(f"/v1/credentials/{created['id']}", headers=auth_a),
        client.get("/v1/credentials"),
    ):
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["X-Frame-Options"] == "DENY"
        assert resp.headers["Cache-Control"] == "no-store"


def test_missing_token_is_401(client):
    assert client.get("/v1/credentials").status_code == 401


def test_garbage_token_is_401(client):
    resp = client.get("/v1/credentials", headers={"Authorization": "Bearer not.a.jwt"})
    assert resp.status_code == 401


def test_expired_token_is_401(client, config):
    token = jwt.encode(
        {"tenant_id": TENANT_A, "exp": datetime.now(timezone.utc) - timedelta(minutes=5)},
        config.secret_key.get_secret_value(),
        algorithm=config.jwt_algorithm,
    )
    resp = client.get("/v1/credentials", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401


def test_unknown_tenant_is_401(client, headers_for):
    assert client.get("/v1/credentials", headers=headers_for("ghost")).status_code == 401


def test_inactive_tenant_is_403(client, headers_for, shopify_payload):
    resp = client.post("/v1/credentials", headers=headers_for(TENANT_DORMANT), json={
        "service_type": "shopify", "name": "prod", "credential_data": shopify_payload,
    })
    assert resp.status_code == 403
    assert resp.json()["error_code"] == "USER_001"


# ── Create ─────────────────────────────────────────────────────────────────────

def test_create_returns_metadata_only(created):
    assert created["tenant_id"] == TENANT_A
    assert created["verification_status"] == "pending"
    assert created["key_version"] == 1
    for secret_field in ("encrypted_data", "iv", "auth_tag", "credential_data"):
        assert secret_field not in created
    assert "shpat_abc" not in str(created)


def test_tenant_in_body_is_ignored(client, auth_a, shopify_payload):
    resp = client.post("/v1/credentials", headers=auth_a, json={
        "tenant_id": TENANT_B, "service_type": "shopify", "name": "prod", "credential_data": shopify_payload,
    })
    assert resp.status_code == 201
    assert resp.json()["tenant_id"] == TENANT_A


def test_duplicate_is_409(client, auth_a, created, shopify_payload):
    resp = client.post("/v1/credentials", headers=auth_a, json={
        "service_type": "shopify", "name": "prod", "credential_data": shopify_payload,
    })
    assert resp.status_code == 409


def test_invalid_payload_is_400_with_field_errors(client, auth_a):
    resp = client.post("/v1/credentials", headers=auth_a, json={
        "service_type": "shopify", "name": "prod",
        "credential_data": {"shop_url": "nope", "access_token": "shpat_x", "api_version": "2024-01"},
    })
    assert resp.status_code == 400
    assert [e["field"] for e in resp.json()["errors"]] == ["shop_url"]


def test_unknown_service_is_400(client, auth_a, shopify_payload):
    resp = client.post("/v1/credentials", headers=auth_a, json={
        "service_type": "dropbox", "name": "prod", "credential_data": shopify_payload,
    })
    assert resp.status_code == 400


# ── Read / list ────────────────────────────────────────────────────────────────

def test_get_metadata(client, auth_a, created):
    resp = client.get(f"/v1/credentials/{created['id']}", headers=auth_a)
    assert resp.status_code == 200
    assert resp.json()["name"] == "prod"


def test_other_tenant_gets_404(client, auth_b, created):
    cross = client.get(f"/v1/credentials/{created['id']}", headers=auth_b)
    missing = client.get("/v1/credentials/does-not-exist", headers=auth_b)
    assert cross.status_code == missing.status_code == 404
    assert cross.json()["error"] == missing.json()["error"]


def test_list_paginates_and_filters(client, auth_a, auth_b, shopify_payload, ga4_payload):
    for i in range(3):
        client.post("/v1/credentials", headers=auth_a, json={
            "service_type": "shopify", "name": f"shop-{i}", "credential_data": shopify_payload,
        })
    client.post("/v1/credentials", headers=auth_a, json={
        "service_type": "ga4", "name": "analytics", "credential_data": ga4_payload,
    })

    page = client.get("/v1/credentials", headers=auth_a, params={"limit": 2, "page": 1}).json()
    assert page["total"] == 4
    assert len(page["items"]) == 2

    ga4 = client.get("/v1/credentials", headers=auth_a, params={"service_type": "ga4"}).json()
    assert [c["name"] for c in ga4["items"]] == ["analytics"]

    assert client.get("/v1/credentials", headers=auth_b).json()["total"] == 0


# ── Update / delete ────────────────────────────────────────────────────────────

def test_update_rename_and_expiry(client, auth_a, created):
    expires = (datetime.now(timezone.utc) + timedelta(days=3)).isoformat()
    resp = client.put(f"/v1/credentials/{created['id']}", headers=auth_a,
                      json={"name": "production", "expires_at": expires})
    assert resp.status_code == 200
    body = resp.json()
    assert body["name"] == "production"
    assert body["expires_at"] is not None
    assert body["schema_version"] == 1


def test_update_payload_bumps_schema_version(client, auth_a, created, shopify_payload):
    resp = client.put(f"/v1/credentials/{created['id']}", headers=auth_a,
                      json={"credential_data": dict(shopify_payload, access_token="shpat_new")})
    assert resp.status_code == 200
    assert resp.json()["schema_version"] == 2


def test_update_missing_is_404(client, auth_a):
    resp = client.put("/v1/credentials/does-not-exist", headers=auth_a, json={"name": "x"})
    assert resp.status_code == 404


def test_delete_then_404(client, auth_a, created):
    url = f"/v1/credentials/{created['id']}"
    assert client.delete(url, headers=auth_a).status_code == 204
    assert client.delete(url, headers=auth_a).status_code == 404
    assert client.get(url, headers=auth_a).status_code == 404


# ── Verify ─────────────────────────────────────────────────────────────────────

def test_verify_valid(client, auth_a, created):
    resp = client.post(f"/v1/credentials/{created['id']}/verify", headers=auth_a)
    assert resp.status_code == 200
    assert resp.json() == {"credential_id": created["id"], "is_valid": True, "verification_status": "valid"}
    meta = client.get(f"/v1/credentials/{created['id']}", headers=auth_a).json()
    assert meta["verification_status"] == "valid"


def test_verify_is_200_even_when_not_found(client, auth_b, created):
    for credential_id in (created["id"], "does-not-exist"):
        resp = client.post(f"/v1/credentials/{credential_id}/verify", headers=auth_b)
        assert resp.status_code == 200
        assert resp.json()["is_valid"] is False


# ── Audit ──────────────────────────────────────────────────────────────────────

def test_audit_trail_records_request_id(client, auth_a, created):
    client.put(f"/v1/credentials/{created['id']}", headers={**auth_a, "X-Request-ID": "req-abc"},
               json={"name": "renamed"})
    records = client.get(f"/v1/credentials/{created['id']}/audit", headers=auth_a).json()["records"]
    assert [r["action"] for r in records] == ["updated", "created"]
    assert records[0]["request_id"] == "req-abc"
    assert records[0]["user_agent"] == "testclient"


def test_audit_is_tenant_scoped(client, auth_a, auth_b, created):
    assert len(client.get("/v1/audit", headers=auth_a).json()["records"]) == 1
    assert client.get("/v1/audit", headers=auth_b).json()["records"] == []


def test_suspicious_flag(client, auth_b):
    for _ in range(11):
        client.post("/v1/credentials/does-not-exist/verify", headers=auth_b)
    resp = client.get("/v1/audit/suspicious", headers=auth_b)
    assert resp.json() == {"tenant_id": TENANT_B, "suspicious": True}


# ── Error mapping ──────────────────────────────────────────────────────────────

@pytest.mark.parametrize("exc, status", [
    (ValidationFailed(), 400),
    (TenantInactive(), 403),
    (AccessDenied(), 403),
    (NotFoundOrDenied(), 404),
    (NotFound(), 404),
    (DuplicateCredential(), 409),
    (Expired(), 410),
    (NoActiveKey(), 500),
    (EncryptionFailed(), 500),
])
def test_status_for(exc, status):
    assert status_for(exc) == status
