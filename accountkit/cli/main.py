"""accountkit CLI entry point — `accountkit` command group."""

from __future__ import annotations

import asyncio

import click
from rich.console import Console

console = Console()


@click.group()
@click.version_option(package_name="accountkit")
def cli() -> None:
    """accountkit — user accounts, login-method linking and scheduled deletion.

    \b
    Quick start:
      accountkit serve --reload
      accountkit sweep            # run from cron once a day

    API docs: http://localhost:8000/docs
    """


@cli.command("serve")
@click.option("--host", default="0.0.0.0", show_default=True, help="Bind host")
@click.option("--port", default=8000, show_default=True, help="Bind port")
@click.option("--reload", is_flag=True, default=False, help="Enable auto-reload (dev mode)")
def serve(host: str, port: int, reload: bool) -> None:
    """Start the accountkit API server."""
    import uvicorn

    uvicorn.run(
        "accountkit.api.app:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )


@cli.command("sweep")
def sweep_cmd() -> None:
    """Delete accounts whose deletion grace period has expired."""
    from accountkit.core.database import close_engine
    from accountkit.core.scheduler import run_deletion_sweep

    async def _run() -> int | None:
        try:
            return await run_deletion_sweep()
        finally:
            await close_engine()

    deleted = asyncio.run(_run())
    if deleted is None:
        console.print("[yellow]A sweep is already running, nothing done.[/yellow]")
        return
    console.print(f"[green]Deletion sweep complete:[/green] {deleted} account(s) removed")


if __name__ == "__main__":
    cli()
