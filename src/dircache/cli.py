"""
dircache - Directory cache synchronization engine

A CLI tool for keeping a local replica of a directory in sync.
"""
from typing import Optional

import typer
from rich.console import Console

from . import __version__
from .commands import cache
from .commands.cache.helpers import state
from .utils.logging_config import LoggingConfig, setup_logging

app = typer.Typer(
    help="Directory cache - keep a queryable local replica of the user directory in sync.",
    add_completion=True,
    no_args_is_help=True,
)
console = Console()

app.add_typer(cache.app, name="cache")


@app.callback()
def main(
    config: Optional[str] = typer.Option(
        None, "--config", "-c", help="Path to the YAML config file", envvar="DIRCACHE_CONFIG"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log progress information"),
    debug: bool = typer.Option(False, "--debug", help="Log debug information"),
):
    """Directory cache CLI."""
    state.config_path = config
    setup_logging(LoggingConfig.for_verbosity(verbose=verbose, debug=debug))


@app.command()
def version():
    """Show the application version and exit."""
    console.print(f"dircache version: {__version__}")
    raise typer.Exit()


if __name__ == "__main__":
    app()
