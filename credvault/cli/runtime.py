"""Shared setup for CLI commands: config from the environment, engine, vault."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from credvault.config import CredVaultConfig, configure_logging
from credvault.credentials.keys import KeyRegistry
from credvault.db.database import create_engine_from_config, create_session_factory, init_db
from credvault.vault import Vault, build_vault


def load_config() -> CredVaultConfig:
    # Read fresh so env changes made after import are honoured.
    return CredVaultConfig()


@asynccontextmanager
async def open_vault(cfg: CredVaultConfig = None) -> AsyncIterator[Vault]:
    cfg = cfg or load_config()
    configure_logging(cfg.log_level)
    engine = create_engine_from_config(cfg)
    vault = None
    try:
        await init_db(engine)
        vault = build_vault(create_session_factory(engine), KeyRegistry.from_config(cfg), cfg)
        yield vault
    finally:
        if vault is not None:
            vault.close()
        await engine.dispose()
