"""
Elevatr CLI - Main application entry point.

This module sets up the Typer CLI application with all subcommands.
"""

import logging

import typer

from elevatr import __version__
from elevatr.cli import migrate, progress, status
from elevatr.cli.common import console
from elevatr.core.config.env import load_layered_env

app = typer.Typer(
    name="elevatr",
    help="Inspect and update Elevatr sprint data from the terminal",
    no_args_is_help=True,
    context_settings={"help_option_names": ["--help", "-h"]},
)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"elevatr {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug output with detailed logging",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit",
    ),
) -> None:
    """
    Elevatr - career sprint tracking.

    Quick Start:
        elevatr status --user USER_ID
        elevatr progress toggle --user USER_ID --day 1 --index 0
        elevatr progress journal --user USER_ID --day 1 "What I learned"
        elevatr migrate --guest GUEST_ID --user USER_ID
    """
    # Precedence: OS env > project .env > user .env
    load_layered_env()

    if debug:
        logging.basicConfig(level=logging.DEBUG)

    ctx.obj = {"debug": debug}


app.add_typer(status.app, name="status")
app.add_typer(progress.app, name="progress")
app.add_typer(migrate.app, name="migrate")


def cli_main() -> None:
    """Main CLI entry point."""
    app()


__all__ = ["app", "cli_main"]
