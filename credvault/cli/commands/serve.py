"""credvault serve — run the HTTP API."""

import typer
from rich.console import Console

console = Console()


def serve(
    host: str = typer.Option(None, help="Host to bind to (default: CREDVAULT_HOST)"),
    port: int = typer.Option(None, help="Port to listen on (default: CREDVAULT_PORT)"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes (development)"),
):
    """Start the credvault API server."""
    import uvicorn
    from credvault.cli.runtime import load_config

    cfg = load_config()
    host = host or cfg.host
    port = port or cfg.port
    console.print(f"[green]Starting credvault API on {host}:{port}[/green]")
    uvicorn.run("credvault.api.main:app", host=host, port=port, reload=reload)
