"""credvault audit / archive / suspicious — audit trail tooling for compliance review."""

import asyncio
import json
from datetime import datetime, timezone

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()


async def _audit(tenant_id: str, credential_id: str | None, limit: int):
    from credvault.cli.runtime import open_vault

    async with open_vault() as vault:
        records = await vault.audit.query(tenant_id, credential_id=credential_id, limit=limit)
        report = await vault.audit.report(tenant_id)
    return records, report


def audit_trail(
    tenant: str = typer.Argument(..., help="Tenant ID"),
    credential: str = typer.Option(None, "--credential", "-c", help="Only this credential"),
    limit: int = typer.Option(50, "--limit", "-n", help="Max rows to show"),
    as_json: bool = typer.Option(False, "--json", help="Print as JSON"),
    export: str = typer.Option(None, "--export", "-e", help="Export to file path (JSON)"),
):
    """View or export a tenant's credential audit trail, newest first.

    Rows never contain credential values, only who did what and when.

    Examples:
        credvault audit acme
        credvault audit acme --credential 5f0c... --limit 100
        credvault audit acme --export audit.json
    """
    records, report = asyncio.run(_audit(tenant, credential, limit))

    if not records:
        console.print(f"[yellow]No audit records found for tenant:[/yellow] {tenant}")
        return

    if as_json or export:
        payload = {
            "exported_at": datetime.now(timezone.utc).isoformat(),
            "tenant_id": tenant,
            "total": len(records),
            "summary": report.model_dump(mode="json"),
            "records": [r.model_dump(mode="json") for r in records],
        }
        json_str = json.dumps(payload, indent=2)
        if export:
            with open(export, "w") as f:
                f.write(json_str)
            console.print(f"[green]Exported {len(records)} record(s) to[/green] {export}")
        else:
            console.print_json(json_str)
        return

    console.print()
    console.print(Panel(
        f"[bold]Tenant:[/bold] {tenant}  [dim]{report.total_actions} action(s) on record[/dim]\n"
        f"[green]{report.successful_actions} succeeded[/green]  "
        + (f"[red]{report.failed_actions} failed[/red]" if report.failed_actions else ""),
        title="[bold blue]Credential Audit Trail[/bold blue]",
        border_style="blue",
    ))

    table = Table(box=box.ROUNDED, header_style="bold dim", show_lines=False)
    table.add_column("#", width=4, justify="right", style="dim")
    table.add_column("Credential")
    table.add_column("Action", no_wrap=True, min_width=9)
    table.add_column("Status", no_wrap=True, min_width=7)
    table.add_column("Reason")
    table.add_column("IP")
    table.add_column("Timestamp")

    for i, r in enumerate(records, 1):
        color = "green" if r.status.value == "success" else "red"
        table.add_row(
            str(i),
            f"[dim]{(r.credential_id or '')[:8]}[/dim]",
            f"[cyan]{r.action.value}[/cyan]",
            f"[{color}]{r.status.value}[/{color}]",
            r.failure_reason or "",
            r.ip_address or "",
            f"[dim]{r.created_at.strftime('%Y-%m-%d %H:%M:%S')}[/dim]",
        )

    console.print(table)
    console.print(f"[dim]Showing {len(records)} record(s). "
                  f"Use --limit N to see more, --export file.json for compliance export.[/dim]")


async def _archive(older_than_days: int | None) -> tuple[int, int]:
    from credvault.cli.runtime import load_config, open_vault

    cfg = load_config()
    days = cfg.audit_retention_days if older_than_days is None else older_than_days
    async with open_vault(cfg) as vault:
        removed = await vault.audit.archive(older_than_days=days)
    return removed, days


def archive(
    older_than_days: int = typer.Option(None, "--older-than-days", "-d", min=0,
                                        help="Retention in days (default: CREDVAULT_AUDIT_RETENTION_DAYS)"),
):
    """Delete successful audit rows older than the retention window.

    Failed rows are kept indefinitely.
    """
    removed, days = asyncio.run(_archive(older_than_days))
    console.print(f"[green]Archived {removed} audit record(s)[/green] older than {days} day(s)")


async def _suspicious(tenant_id: str) -> bool:
    from credvault.cli.runtime import open_vault

    async with open_vault() as vault:
        return await vault.audit.detect_suspicious(tenant_id)


def suspicious(
    tenant: str = typer.Argument(..., help="Tenant ID"),
):
    """Flag a tenant with too many failures or source IPs in the trailing window.

    Exits 1 when flagged, so it can gate alerting from cron.
    """
    if asyncio.run(_suspicious(tenant)):
        console.print(f"[red]Suspicious activity detected for tenant[/red] {tenant}")
        raise typer.Exit(code=1)
    console.print(f"[green]No suspicious activity for tenant[/green] {tenant}")
