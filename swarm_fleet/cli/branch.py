"""Per-agent branch commands.

Commands for naming, creating, pushing and conflict-checking agent branches
in a working copy.
"""
from __future__ import annotations

from typing import Optional

import typer

from swarm_fleet.cli.common import get_config_or_default, get_console, project_root
from swarm_fleet.cli.display import branch_result_panel, conflict_report_table

# Create branch command group
app = typer.Typer(
    name="branch",
    help="Per-agent branch lifecycle and conflict checks",
    no_args_is_help=True,
)

console = get_console()

AGENT_ARG = typer.Argument(..., help="Agent id (positive integer).")
ISSUE_ARG = typer.Argument(..., help="Issue number the agent works on.")
REPO_OPTION = typer.Option(
    None,
    "--repo",
    "-r",
    help="Agent working copy (default: the project directory).",
)


def _build_coordinator(repo: Optional[str]):
    """Create a BranchCoordinator for a working copy using config settings."""
    from swarm_fleet.branch_coordinator import BranchCoordinator
    from swarm_fleet.git_gateway import GitGateway
    from swarm_fleet.notifier import ConsoleNotifier

    config = get_config_or_default()
    gateway = GitGateway(
        repo or project_root(),
        remote=config.git.remote,
        timeout_seconds=config.git.command_timeout_seconds,
    )
    return BranchCoordinator(
        gateway,
        baseline=config.git.base_branch,
        notifier=ConsoleNotifier(),
        create_budget_seconds=config.git.create_budget_seconds,
    )


def _validated_name(agent_id: int, issue_number: int) -> str:
    from swarm_fleet.branch_coordinator import branch_name

    try:
        return branch_name(agent_id, issue_number)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


# =============================================================================
# Commands
# =============================================================================


@app.command("name")
def name_command(
    agent_id: int = AGENT_ARG,
    issue_number: int = ISSUE_ARG,
) -> None:
    """Print the branch name for an agent and issue."""
    console.print(_validated_name(agent_id, issue_number), markup=False, highlight=False)


@app.command("create")
def create_command(
    agent_id: int = AGENT_ARG,
    issue_number: int = ISSUE_ARG,
    repo: Optional[str] = REPO_OPTION,
) -> None:
    """Create the agent branch from the latest baseline and check it out."""
    _validated_name(agent_id, issue_number)
    result = _build_coordinator(repo).create_branch(agent_id, issue_number)
    console.print(branch_result_panel(result, "Create"))
    if not result.success:
        raise typer.Exit(1)


@app.command("push")
def push_command(
    agent_id: int = AGENT_ARG,
    issue_number: int = ISSUE_ARG,
    repo: Optional[str] = REPO_OPTION,
) -> None:
    """Push the agent branch with upstream tracking."""
    _validated_name(agent_id, issue_number)
    result = _build_coordinator(repo).push_branch(agent_id, issue_number)
    console.print(branch_result_panel(result, "Push"))
    if not result.success:
        raise typer.Exit(1)


@app.command("check")
def check_command(
    agent_id: int = AGENT_ARG,
    issue_number: int = ISSUE_ARG,
    repo: Optional[str] = REPO_OPTION,
) -> None:
    """
    Check the agent branch for conflicts with the baseline.

    Minor conflicts are rebased automatically. Exits 1 when conflicts need
    manual resolution or the check could not run.
    """
    name = _validated_name(agent_id, issue_number)
    report = _build_coordinator(repo).check_for_conflicts(agent_id, issue_number)
    console.print(conflict_report_table(name, report))
    if report.needs_manual_resolution:
        console.print("[yellow]Label: needs-manual-resolution[/yellow]")
        raise typer.Exit(1)
    if report.error:
        raise typer.Exit(1)
