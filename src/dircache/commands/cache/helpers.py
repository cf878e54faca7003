"""Shared utilities for cache commands."""

import asyncio
import logging
from datetime import datetime
from typing import Any, Coroutine, Optional, TypeVar

from rich.console import Console
from rich.table import Table

from ...config import CacheSettings, GraphSettings
from ...factory import create_graph_cache_manager
from ...manager import UserCacheManager

# Shared console instance
console = Console()
logger = logging.getLogger(__name__)

T = TypeVar("T")


class CliState:
    """Options given to the top-level command."""

    config_path: Optional[str] = None


state = CliState()


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine to completion from a synchronous command."""
    return asyncio.run(coro)


def load_settings() -> CacheSettings:
    return CacheSettings.from_config_and_environment(state.config_path)


def get_cache_manager(require_credentials: bool = True) -> UserCacheManager:
    """
    Create a manager from the config file and environment.

    Commands that only read or clear the cache pass ``require_credentials=False``
    so they keep working without Graph credentials.
    """
    settings = load_settings()
    graph_settings = GraphSettings.from_config_and_environment(state.config_path)
    logger.debug(f"Creating cache manager with {settings.backend_type} storage")
    return create_graph_cache_manager(settings, graph_settings, require_credentials)


def format_timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return "Never"
    return value.strftime("%Y-%m-%d %H:%M:%S UTC")


def create_key_value_table(title: Optional[str] = None) -> Table:
    """Create a rich table for displaying key/value information."""
    table = Table(title=title, show_header=True, header_style="bold blue")
    table.add_column("Property", style="green")
    table.add_column("Value", style="cyan")
    return table
