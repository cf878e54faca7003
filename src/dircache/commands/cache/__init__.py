"""Cache commands for dircache.

This module provides the cache management commands: status, sync, usage stats
refresh, listing, lookup and clearing.
"""

import typer

from .clear import clear_cache
from .get import get_record
from .list import list_records
from .stats import update_stats
from .status import cache_status
from .sync import sync_cache

app = typer.Typer(help="Inspect and synchronize the directory cache.")

app.command("status")(cache_status)
app.command("sync")(sync_cache)
app.command("stats")(update_stats)
app.command("list")(list_records)
app.command("get")(get_record)
app.command("clear")(clear_cache)

__all__ = ["app"]
