"""evalrig CLI entry point."""

import typer

from evalrig import __version__
from evalrig.cli.export_cmd import export
from evalrig.cli.run_cmd import run

app = typer.Typer(
    name="evalrig",
    help="Evaluation runner for LLM tasks",
    no_args_is_help=True,
)

# Register subcommands
app.command()(run)
app.command()(export)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"evalrig {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """Evaluation runner for LLM tasks."""
