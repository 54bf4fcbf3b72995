"""credvault init-db — create tables on the configured database."""

import asyncio

from rich.console import Console

console = Console()


async def _init_db() -> str:
    from credvault.cli.runtime import load_config
    from credvault.db.database import create_engine_from_config, init_db

    cfg = load_config()
    engine = create_engine_from_config(cfg)
    try:
        await init_db(engine)
    finally:
        await engine.dispose()
    return engine.url.render_as_string(hide_password=True)


def init_database():
    """Create the credentials, audit_log and tenants tables. Idempotent."""
    url = asyncio.run(_init_db())
    console.print(f"[green]Tables ready on[/green] {url}")
