"""CLI package for swarm-fleet.

Modules:
    app.py      - Main Typer app, version callback, sub-app registration
    branch.py   - Per-agent branch commands (name, create, push, check)
    health.py   - Fleet health evaluation against a snapshot file
    config_commands.py - Configuration inspection
    display.py  - Rich formatting for reports and health results
    common.py   - Shared helpers (get_console, get_project_dir, get_config_or_default)

Command Structure:
    swarm-fleet branch check 1 42
    swarm-fleet health check snapshot.json
    swarm-fleet config show
"""
from swarm_fleet.cli.app import app, cli_main

__all__ = ["app", "cli_main"]
