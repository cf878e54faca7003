"""Cache list command for dircache."""

from typing import Optional

import typer
from rich.table import Table

from .helpers import console, format_timestamp, get_cache_manager, run_async


async def _list_records(no_sync: bool):
    async with get_cache_manager(require_credentials=not no_sync) as manager:
        return await manager.get_all_cached(skip_auto_sync=no_sync)


def list_records(
    limit: Optional[int] = typer.Option(None, "--limit", "-l", min=1, help="Show at most this many records"),
    no_sync: bool = typer.Option(False, "--no-sync", help="Do not sync even if the cache is stale"),
):
    """List cached users, syncing first when the cache is stale."""
    try:
        records = run_async(_list_records(no_sync))
    except Exception as e:
        console.print(f"[red]Error listing cached users: {e}[/red]")
        raise typer.Exit(1)

    if not records:
        console.print("[yellow]No cached users found.[/yellow]")
        return

    shown = records[:limit] if limit else records
    table = Table(show_header=True, header_style="bold blue")
    table.add_column("User Principal Name", style="green", no_wrap=True)
    table.add_column("Display Name")
    table.add_column("Department")
    table.add_column("Job Title")
    table.add_column("Last Activity", style="cyan")

    for record in shown:
        last_activity = record.usage.last_activity if record.usage else None
        table.add_row(
            record.user_principal_name,
            record.display_name or "",
            record.department or "",
            record.job_title or "",
            format_timestamp(last_activity) if last_activity else "",
        )

    console.print(table)
    if len(shown) < len(records):
        console.print(f"[dim]Showing {len(shown)} of {len(records)} users[/dim]")
