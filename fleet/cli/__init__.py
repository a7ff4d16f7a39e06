"""fleet CLI: typer entry point."""

import logging

import typer

from fleet.errors import ConfigError
from fleet.lib.config import load_config

from . import agents, memory, output

app = typer.Typer(no_args_is_help=True, add_completion=False)
app.add_typer(agents.app, name="agents")
app.add_typer(memory.app, name="memory")


@app.callback()
def main(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", "-j", help="Output in JSON format."),
    quiet_output: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-essential output."),
):
    """Supervise worker agents over a shared mesh."""
    output.init_context(ctx, json_output, quiet_output)
    try:
        level = load_config().logging_level.upper()
    except ConfigError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(levelname)s %(name)s: %(message)s",
    )
