"""Main CLI application."""

from pathlib import Path
from typing import Annotated

import typer

from roomcron.cli.commands import jobs

app = typer.Typer(
    name="roomcron",
    help="roomcron - scheduled chat messages",
    no_args_is_help=True,
)


@app.callback()
def main(
    ctx: typer.Context,
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="Path to configuration file",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Inspect and manage persisted scheduled messages."""
    from roomcron.config import ConfigError, load_config
    from roomcron.logging import configure_logging

    try:
        loaded = load_config(config)
    except (ConfigError, FileNotFoundError) as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1) from None

    configure_logging("DEBUG" if verbose else loaded.log_level, use_rich=True)
    ctx.obj = loaded


jobs.register(app)


if __name__ == "__main__":
    app()
