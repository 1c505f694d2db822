"""Common utilities and global state for the CLI.

Contains project directory management and config loading.
This module should NOT import from branch/health modules to avoid circular imports.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from swarm_fleet.config import ConfigError, FleetConfig, load_config

# ============================================================================
# Global State
# ============================================================================

# Global project directory override (set via --project flag)
_project_dir: Optional[str] = None

# Console singleton
_console: Optional[Console] = None


def get_project_dir() -> Optional[str]:
    """Get the project directory override if set."""
    return _project_dir


def set_project_dir(path: Optional[str]) -> None:
    """Set the project directory override."""
    global _project_dir
    _project_dir = path


def get_console() -> Console:
    """Get or create the console singleton."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def configure_logging(verbose: bool = False) -> None:
    """Route stdlib logging through Rich on stderr."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


# ============================================================================
# Config Helpers
# ============================================================================


def project_root() -> Path:
    """Directory the CLI operates on (--project or the current directory)."""
    return Path(get_project_dir() or ".").absolute()


def load_config_safe() -> Optional[FleetConfig]:
    """
    Load config.yaml from the project root, returning None if it is missing.

    An invalid config file is still an error.
    """
    path = project_root() / "config.yaml"
    if not path.exists():
        return None
    return load_config(str(path))


def get_config_or_default() -> FleetConfig:
    """Get config or create a default config rooted at the project directory."""
    try:
        config = load_config_safe()
    except ConfigError as e:
        get_console().print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    if config is not None:
        return config
    return FleetConfig(repo_root=str(project_root()))
