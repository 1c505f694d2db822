"""Configuration commands."""
from __future__ import annotations

from dataclasses import asdict

import typer
import yaml
from rich.syntax import Syntax

from swarm_fleet.cli.common import get_config_or_default, get_console, project_root

# Create config command group
app = typer.Typer(
    name="config",
    help="Inspect configuration",
    no_args_is_help=True,
)

console = get_console()


@app.command("show")
def show_command() -> None:
    """Show the effective configuration, defaults filled in."""
    config = get_config_or_default()
    source = project_root() / "config.yaml"
    if source.exists():
        console.print(f"[dim]Loaded from {source}[/dim]")
    else:
        console.print("[dim]No config.yaml found, showing defaults[/dim]")
    text = yaml.safe_dump(asdict(config), sort_keys=False)
    console.print(Syntax(text, "yaml", theme="ansi_dark", background_color="default"))
