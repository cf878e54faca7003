"""Cache status command for dircache."""

import typer

from ...models import SyncStatus
from .helpers import console, create_key_value_table, format_timestamp, get_cache_manager, run_async

_STATUS_STYLES = {
    SyncStatus.SUCCESS: "green",
    SyncStatus.FAILED: "red",
    SyncStatus.IN_PROGRESS: "yellow",
    SyncStatus.NOT_RUN: "dim",
}


async def _collect_status():
    async with get_cache_manager(require_credentials=False) as manager:
        metadata = await manager.get_sync_metadata()
        active = await manager.storage.count()
        total = await manager.storage.count(include_deleted=True)
        healthy = await manager.storage.health_check()
        return manager, metadata, active, total, healthy


def cache_status():
    """Show sync metadata and record counts of the cache."""
    try:
        manager, metadata, active, total, healthy = run_async(_collect_status())
    except Exception as e:
        console.print(f"[red]Error getting cache status: {e}[/red]")
        raise typer.Exit(1)

    settings = manager.settings
    style = _STATUS_STYLES.get(metadata.last_sync_status, "white")

    table = create_key_value_table("Directory Cache Status")
    table.add_row("Backend", f"{manager.storage.backend_type} ({'healthy' if healthy else 'unreachable'})")
    table.add_row("Tables", f"{settings.records_table_name} / {settings.metadata_table_name}")
    table.add_row("Active records", str(active))
    table.add_row("Tombstones", str(total - active))
    table.add_row("Last sync status", f"[{style}]{metadata.last_sync_status.value}[/{style}]")
    if metadata.last_sync_error:
        table.add_row("Last sync error", f"[red]{metadata.last_sync_error}[/red]")
    table.add_row("Last sync count", str(metadata.last_sync_count))
    table.add_row("Last full sync", format_timestamp(metadata.last_full_sync))
    table.add_row("Last delta sync", format_timestamp(metadata.last_delta_sync))
    table.add_row("Last stats update", format_timestamp(metadata.last_stats_update))
    table.add_row("Cursor", "present" if metadata.cursor else "none (next sync is full)")
    table.add_row("Stale", "yes" if manager.is_stale(metadata) else "no")
    console.print(table)
