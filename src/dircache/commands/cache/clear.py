"""Clear cache command for dircache."""

import typer

from .helpers import console, get_cache_manager, run_async


async def _count_records() -> int:
    async with get_cache_manager(require_credentials=False) as manager:
        return await manager.storage.count(include_deleted=True)


async def _clear() -> int:
    async with get_cache_manager(require_credentials=False) as manager:
        return await manager.clear()


def clear_cache(
    force: bool = typer.Option(False, "--force", "-f", help="Force clear without confirmation"),
):
    """Remove every cached user and reset the sync metadata.

    The next sync after a clear is a full load.
    """
    if not force:
        try:
            total = run_async(_count_records())
        except Exception as e:
            console.print(f"[red]Error clearing cache: {e}[/red]")
            raise typer.Exit(1)

        console.print(f"[yellow]About to clear {total} cached records[/yellow]")
        if not typer.confirm("Are you sure you want to clear the cache?"):
            console.print("[blue]Cache clear cancelled.[/blue]")
            return

    try:
        deleted = run_async(_clear())
    except Exception as e:
        console.print(f"[red]Error clearing cache: {e}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]✓ Cleared {deleted} records and reset sync metadata[/green]")
