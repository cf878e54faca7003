"""Usage statistics refresh command for dircache."""

import typer

from .helpers import console, get_cache_manager, run_async


async def _update_stats(force: bool):
    async with get_cache_manager() as manager:
        return await manager.update_stats(force=force)


def update_stats(
    force: bool = typer.Option(False, "--force", "-f", help="Refresh even if the stats are fresh"),
):
    """Refresh the usage statistics overlay on cached records."""
    try:
        result = run_async(_update_stats(force))
    except Exception as e:
        console.print(f"[red]Error updating usage stats: {e}[/red]")
        raise typer.Exit(1)

    if result.status == "skipped":
        console.print("[blue]Usage stats are still fresh, nothing to do.[/blue] Use --force to refresh.")
    elif result.status == "failed":
        console.print(f"[yellow]Usage report could not be fetched: {result.error_message}[/yellow]")
        raise typer.Exit(1)
    else:
        console.print(
            f"[green]✓ Applied usage stats to {result.updated_count} of "
            f"{result.report_count} reported users[/green]"
        )
