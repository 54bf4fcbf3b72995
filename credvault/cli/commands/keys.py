"""credvault keygen / reencrypt — master key tooling."""

import asyncio
import base64
import json

import typer
from rich.console import Console
from rich.panel import Panel

console = Console()


def keygen(
    as_json: bool = typer.Option(False, "--json", help="Print the key as JSON"),
):
    """Generate a random 32-byte master key, base64 encoded.

    Store it in your secrets manager and inject it as CREDVAULT_MASTER_KEY.
    Nothing is written to disk.
    """
    from credvault.credentials.keys import generate_master_key, key_fingerprint

    material = generate_master_key()
    encoded = base64.b64encode(material).decode("ascii")
    fingerprint = key_fingerprint(material)
    if as_json:
        console.print_json(json.dumps({"key": encoded, "fingerprint": fingerprint}))
        return
    console.print(Panel(
        f"[bold]Key:[/bold] {encoded}\n[dim]Fingerprint: {fingerprint[:16]}[/dim]",
        title="[bold blue]New master key[/bold blue]",
        border_style="blue",
    ))


async def _reencrypt(batch_size: int | None):
    from credvault.cli.runtime import load_config, open_vault
    from credvault.credentials.rotation import reencrypt_stale_credentials, unused_retired_versions

    cfg = load_config()
    async with open_vault(cfg) as vault:
        summary = await reencrypt_stale_credentials(
            vault.store, vault.session_factory, batch_size=batch_size or cfg.reencrypt_batch_size,
        )
        droppable = await unused_retired_versions(vault.registry, vault.session_factory)
    return summary, droppable


def reencrypt(
    batch_size: int = typer.Option(None, "--batch-size", "-b", help="Rows per batch"),
):
    """Re-encrypt every active credential under the active key version.

    Retired keys must still be configured (CREDVAULT_RETIRED_KEYS) so old rows
    can be read. Each row goes through a normal audited Get and Update.
    """
    from credvault.exceptions import NoActiveKey

    try:
        summary, droppable = asyncio.run(_reencrypt(batch_size))
    except NoActiveKey:
        console.print("[red]No active master key configured (CREDVAULT_MASTER_KEY).[/red]")
        raise typer.Exit(code=2)

    console.print(
        f"Active version [bold]{summary.active_version}[/bold]: "
        f"[green]{summary.reencrypted} re-encrypted[/green]  "
        f"[yellow]{summary.skipped} skipped[/yellow]  "
        + (f"[red]{summary.failed} failed[/red]" if summary.failed else "[dim]0 failed[/dim]")
    )
    for credential_id in summary.failed_ids:
        console.print(f"  [red]✗[/red] {credential_id}")
    if droppable:
        versions = ", ".join(str(v) for v in droppable)
        console.print(f"[dim]Retired key version(s) no longer referenced: {versions}[/dim]")
    if summary.failed:
        raise typer.Exit(code=1)
