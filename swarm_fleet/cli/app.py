"""Main Typer app definition and routing.

This is the canonical entry point for the CLI. The app, callback, and
sub-app registrations are all defined here.
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from swarm_fleet import __version__
from swarm_fleet.cli.common import configure_logging, get_console, set_project_dir

# Create Typer app
app = typer.Typer(
    name="swarm-fleet",
    help="Branch coordination and fleet health for autonomous coding agents",
    add_completion=False,
)

# Rich console for output - use singleton from common module
console = get_console()


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"swarm-fleet version {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    project: Optional[str] = typer.Option(
        None,
        "--project",
        "-p",
        help="Project directory to operate on (default: current directory)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help="Show debug logging",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """
    Swarm Fleet - the orchestrator's safety net.

    Keeps agents on isolated branches, remediates minor conflicts and
    evaluates fleet health. Use --project/-p to operate on a different
    project directory.
    """
    configure_logging(verbose)

    set_project_dir(None)
    if project:
        project_path = Path(project)
        if not project_path.is_dir():
            console.print(f"[red]Error: Project directory not found: {project}[/red]")
            raise typer.Exit(1)
        set_project_dir(str(project_path.absolute()))

    # If no subcommand and no --help, show help
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(0)


# =========================================================================
# Sub-App Registration
# =========================================================================

from swarm_fleet.cli.branch import app as branch_app  # noqa: E402

app.add_typer(branch_app, name="branch")

from swarm_fleet.cli.health import app as health_app  # noqa: E402

app.add_typer(health_app, name="health")

from swarm_fleet.cli.config_commands import app as config_app  # noqa: E402

app.add_typer(config_app, name="config")


# =========================================================================
# Entry Point
# =========================================================================


def cli_main() -> None:
    """Entry point for the CLI."""
    app()


__all__ = ["app", "cli_main"]
