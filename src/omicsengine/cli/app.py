#!/usr/bin/env python3
"""
Main CLI Application for omicsengine

This module contains the main Typer app and entry point for the omicsengine CLI.

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

import sys
from typing import Annotated

import typer
from rich.traceback import install

from omicsengine import __version__

from .commands import audit, classify, resolve, validate
from .constants import ExitCode
from .utils import console

# Install rich traceback handler for better error displays
install(show_locals=True)

# Initialize the main Typer app
app = typer.Typer(
    name="omicsengine",
    help="🧬 omicsengine - Validate, version and diagnose bioinformatics workflows for a managed execution service",
    rich_markup_mode="rich",
    add_completion=False,
    no_args_is_help=True,
)

# Register commands
app.command()(validate)
app.command()(audit)
app.command()(resolve)
app.command()(classify)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: Annotated[
        bool, typer.Option("--version", help="Show version and exit")
    ] = False,
) -> None:
    """
    🧬 omicsengine

    Pre-deployment checks and failure triage for workflow bundles.
    """
    if version:
        console.print(
            f"🧬 [bold cyan]omicsengine[/bold cyan] version [green]{__version__}[/green]"
        )
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        ctx.exit()


def cli_main() -> None:
    """Entry point for the CLI application."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n🛑 [yellow]Operation cancelled by user[/yellow]")
        sys.exit(ExitCode.FAILURE)
    except Exception as e:
        console.print(f"💥 [bold red]Unexpected error: {e}[/bold red]")
        console.print_exception()
        sys.exit(ExitCode.FAILURE)


if __name__ == "__main__":
    cli_main()
