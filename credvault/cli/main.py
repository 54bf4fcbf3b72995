"""credvault CLI — Typer application."""

import typer
from rich.console import Console

from credvault.version import __version__

app = typer.Typer(
    name="credvault",
    help="credvault — multi-tenant encrypted credential vault.",
    no_args_is_help=True,
    invoke_without_command=True,
)
console = Console()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", "-v", is_eager=True, help="Show version"),
):
    """credvault CLI."""
    if version:
        console.print(f"credvault v{__version__}")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


# ── Keys ───────────────────────────────────────────────────────────────────────
from credvault.cli.commands import keys  # noqa: E402

app.command(name="keygen", help="Generate a new base64 master key")(keys.keygen)
app.command(name="reencrypt", help="Re-seal credentials still on a retired key version")(keys.reencrypt)

# ── Audit ──────────────────────────────────────────────────────────────────────
from credvault.cli.commands import audit  # noqa: E402

app.command(name="audit", help="View or export a tenant's credential audit trail")(audit.audit_trail)
app.command(name="archive", help="Delete successful audit rows past retention")(audit.archive)
app.command(name="suspicious", help="Check a tenant for suspicious access patterns")(audit.suspicious)

# ── Database ───────────────────────────────────────────────────────────────────
from credvault.cli.commands import db  # noqa: E402

app.command(name="init-db", help="Create the vault tables")(db.init_database)

# ── Server ─────────────────────────────────────────────────────────────────────
from credvault.cli.commands import serve  # noqa: E402

app.command(name="serve", help="Run the HTTP API with uvicorn")(serve.serve)


if __name__ == "__main__":
    app()
