"""Cache sync command for dircache."""

import typer

from .helpers import console, get_cache_manager, run_async


async def _sync(force_full: bool):
    async with get_cache_manager() as manager:
        return await manager.sync(force_full=force_full)


def sync_cache(
    force_full: bool = typer.Option(
        False, "--force-full", help="Reload the whole directory instead of applying changes"
    ),
):
    """Synchronize the cache with the directory.

    Applies the changes since the last sync, or reloads everything when no
    cursor is stored or the last full sync is too old.
    """
    try:
        result = run_async(_sync(force_full))
    except Exception as e:
        console.print(f"[red]Error syncing cache: {e}[/red]")
        raise typer.Exit(1)

    kind = "Full" if result.full_sync else "Delta"
    console.print(f"[green]✓ {kind} sync completed: {result.record_count} records processed[/green]")
