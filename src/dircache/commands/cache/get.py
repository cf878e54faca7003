"""Cache lookup command for dircache."""

from dataclasses import fields

import typer

from ...models import UsageStats
from .helpers import console, create_key_value_table, format_timestamp, get_cache_manager, run_async


async def _get_record(upn: str):
    async with get_cache_manager(require_credentials=False) as manager:
        return await manager.get_cached_by_key(upn)


def get_record(upn: str = typer.Argument(..., help="User principal name to look up")):
    """Show one cached user. Never syncs."""
    try:
        record = run_async(_get_record(upn))
    except Exception as e:
        console.print(f"[red]Error reading cached user: {e}[/red]")
        raise typer.Exit(1)

    if record is None:
        console.print(f"[yellow]User '{upn}' is not in the cache.[/yellow]")
        raise typer.Exit(1)

    table = create_key_value_table(record.user_principal_name)
    for name, value in record.to_dict().items():
        if name == "usage" or value is None:
            continue
        table.add_row(name, str(value))

    if record.usage:
        for f in fields(UsageStats):
            table.add_row(f"usage.{f.name}", format_timestamp(getattr(record.usage, f.name)))

    console.print(table)
    console.print(f"[dim]{record.to_summary()}[/dim]")
