"""Fleet health commands.

Runs one evaluation tick against a snapshot of fleet state and renders the result.
"""
from __future__ import annotations

import json

import typer

from swarm_fleet.cli.common import get_config_or_default, get_console
from swarm_fleet.cli.display import (
    agent_health_table,
    alerts_table,
    fleet_table,
    format_overall_status,
)
from swarm_fleet.models import OverallStatus

# Create health command group
app = typer.Typer(
    name="health",
    help="Fleet health and budget evaluation",
    no_args_is_help=True,
)

console = get_console()

# Exit codes by overall status
EXIT_CODES = {
    OverallStatus.HEALTHY: 0,
    OverallStatus.WARNING: 0,
    OverallStatus.ERROR: 1,
    OverallStatus.CRITICAL: 2,
}


@app.command("check")
def check_command(
    snapshot: str = typer.Argument(..., help="Fleet snapshot file (JSON or YAML)."),
    as_json: bool = typer.Option(
        False,
        "--json",
        help="Print the result as JSON instead of tables.",
    ),
) -> None:
    """
    Evaluate fleet health once against a snapshot file.

    Exits 1 when the fleet status is error and 2 when it is critical.
    """
    from swarm_fleet.fleet_observer import FleetObserver
    from swarm_fleet.sources import FleetSnapshot, SnapshotError

    config = get_config_or_default()
    health = config.health

    try:
        fleet = FleetSnapshot.load(
            snapshot,
            degraded_after=health.heartbeat_degraded_seconds,
            unresponsive_after=health.heartbeat_unresponsive_seconds,
            stuck_after_minutes=health.stuck_threshold_minutes,
        )
    except (SnapshotError, ValueError, TypeError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    observer = FleetObserver(
        heartbeats=fleet,
        stuck_agents=fleet,
        queue=fleet,
        spend=fleet,
        errors=fleet,
        config=health,
    )
    try:
        result = observer.run_health_check()
    finally:
        observer.close()

    if as_json:
        console.print_json(json.dumps(result.to_dict()))
    else:
        console.print(agent_health_table(result))
        console.print(fleet_table(result))
        console.print(alerts_table(result))
        status = format_overall_status(result.overall_status)
        console.print("Overall status: ", status)

    raise typer.Exit(EXIT_CODES[result.overall_status])
