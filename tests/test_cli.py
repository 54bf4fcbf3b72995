"""CLI commands against a file-backed SQLite database configured through the environment."""

import asyncio
import base64
import json

import pytest
from typer.testing import CliRunner

from credvault.cli.main import app
from credvault.config import CredVaultConfig
from credvault.credentials.keys import KeyRegistry, generate_master_key
from credvault.db.database import create_engine_from_config, create_session_factory, init_db
from credvault.db.repository import Repository
from credvault.types import ServiceType, TenantContext
from credvault.vault import build_vault
from credvault.version import __version__

TENANT = "tenant-alpha-001"

runner = CliRunner()


def _b64(key: bytes) -> str:
    return base64.b64encode(key).decode()


async def _seed(payload) -> str:
    cfg = CredVaultConfig()
    engine = create_engine_from_config(cfg)
    try:
        await init_db(engine)
        factory = create_session_factory(engine)
        async with factory() as session:
            await Repository(session).create_tenant("Alpha", tenant_id=TENANT)
            await session.commit()
        vault = build_vault(factory, KeyRegistry.from_config(cfg), cfg)
        meta = await vault.store.create(TenantContext(tenant_id=TENANT), ServiceType.SHOPIFY, "prod", payload)
        vault.close()
    finally:
        await engine.dispose()
    return meta.id


@pytest.fixture
def first_key():
    return generate_master_key()


@pytest.fixture
def cli_env(monkeypatch, tmp_path, first_key):
    monkeypatch.setenv("CREDVAULT_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'vault.db'}")
    monkeypatch.setenv("CREDVAULT_MASTER_KEY", _b64(first_key))
    monkeypatch.setenv("CREDVAULT_MASTER_KEY_VERSION", "1")
    monkeypatch.setenv("CREDVAULT_LOG_LEVEL", "WARNING")
    return tmp_path


@pytest.fixture
def seeded(cli_env, shopify_payload):
    return asyncio.run(_seed(shopify_payload))


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert f"credvault v{__version__}" in result.output


def test_keygen_json():
    result = runner.invoke(app, ["keygen", "--json"])
    assert result.exit_code == 0
    body = json.loads(result.output)
    assert len(base64.b64decode(body["key"])) == 32
    assert len(body["fingerprint"]) == 64


def test_keygen_panel():
    result = runner.invoke(app, ["keygen"])
    assert result.exit_code == 0
    assert "Fingerprint" in result.output


def test_init_db(cli_env):
    result = runner.invoke(app, ["init-db"])
    assert result.exit_code == 0, result.output
    assert "Tables ready" in result.output
    assert (cli_env / "vault.db").exists()


def test_audit_table(seeded):
    result = runner.invoke(app, ["audit", TENANT])
    assert result.exit_code == 0, result.output
    assert "created" in result.output
    assert "shpat_abc" not in result.output


def test_audit_table_fits_an_80_column_terminal(seeded, monkeypatch):
    monkeypatch.setenv("COLUMNS", "80")
    result = runner.invoke(app, ["audit", TENANT])
    assert result.exit_code == 0, result.output
    assert "created" in result.output
    assert "success" in result.output


def test_audit_export(seeded, cli_env):
    target = cli_env / "audit.json"
    result = runner.invoke(app, ["audit", TENANT, "--export", str(target)])
    assert result.exit_code == 0, result.output
    payload = json.loads(target.read_text())
    assert payload["tenant_id"] == TENANT
    assert payload["total"] == 1
    assert payload["records"][0]["credential_id"] == seeded
    assert payload["summary"]["successful_actions"] == 1


def test_audit_unknown_tenant(cli_env):
    result = runner.invoke(app, ["audit", "nobody"])
    assert result.exit_code == 0
    assert "No audit records" in result.output


def test_suspicious_clean_tenant(seeded):
    result = runner.invoke(app, ["suspicious", TENANT])
    assert result.exit_code == 0
    assert "No suspicious activity" in result.output


def test_archive(seeded):
    result = runner.invoke(app, ["archive", "--older-than-days", "0"])
    assert result.exit_code == 0, result.output
    assert "Archived 1 audit record(s)" in result.output


def test_reencrypt_after_rotation(seeded, monkeypatch, first_key):
    monkeypatch.setenv("CREDVAULT_MASTER_KEY", _b64(generate_master_key()))
    monkeypatch.setenv("CREDVAULT_MASTER_KEY_VERSION", "2")
    monkeypatch.setenv("CREDVAULT_RETIRED_KEYS", json.dumps({"1": _b64(first_key)}))

    result = runner.invoke(app, ["reencrypt", "--batch-size", "10"])
    assert result.exit_code == 0, result.output
    assert "1 re-encrypted" in result.output
    assert "no longer referenced: 1" in result.output


def test_reencrypt_without_key(cli_env, monkeypatch):
    monkeypatch.setenv("CREDVAULT_MASTER_KEY", "")
    result = runner.invoke(app, ["reencrypt"])
    assert result.exit_code == 2
    assert "No active master key" in result.output


def test_serve_hands_off_to_uvicorn(cli_env, monkeypatch):
    calls = {}

    def fake_run(target, **kwargs):
        calls.update(target=target, **kwargs)

    monkeypatch.setattr("uvicorn.run", fake_run)
    monkeypatch.setenv("CREDVAULT_PORT", "9100")
    result = runner.invoke(app, ["serve", "--host", "127.0.0.1"])
    assert result.exit_code == 0, result.output
    assert calls == {"target": "credvault.api.main:app", "host": "127.0.0.1", "port": 9100, "reload": False}
