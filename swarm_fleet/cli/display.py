"""Display helpers and formatters for the CLI.

Contains Rich formatting for branch results, conflict reports and health results.
This module should NOT import from branch/health modules to avoid circular imports.
"""
from __future__ import annotations

from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from swarm_fleet.models import (
    AgentStatus,
    AlertLevel,
    BranchResult,
    BudgetLevel,
    ConflictReport,
    HealthCheckResult,
    OverallStatus,
    QueueLevel,
)

# Overall status display names and colors
STATUS_DISPLAY: dict[OverallStatus, tuple[str, str]] = {
    OverallStatus.HEALTHY: ("Healthy", "green bold"),
    OverallStatus.WARNING: ("Warning", "yellow bold"),
    OverallStatus.ERROR: ("Error", "red bold"),
    OverallStatus.CRITICAL: ("Critical", "red bold reverse"),
}

AGENT_STATUS_STYLE: dict[AgentStatus, str] = {
    AgentStatus.HEALTHY: "green",
    AgentStatus.DEGRADED: "yellow",
    AgentStatus.UNRESPONSIVE: "red",
}

ALERT_LEVEL_STYLE: dict[AlertLevel, str] = {
    AlertLevel.INFO: "dim",
    AlertLevel.WARNING: "yellow",
    AlertLevel.ERROR: "red",
    AlertLevel.CRITICAL: "red bold",
}


def format_overall_status(status: OverallStatus) -> Text:
    """Format an overall status as colored text."""
    display_name, style = STATUS_DISPLAY.get(status, (status.value, "white"))
    return Text(display_name, style=style)


def format_bool(value: bool) -> Text:
    return Text("yes", style="green") if value else Text("no", style="dim")


def format_percent(value: float) -> str:
    return f"{value:.1f}%"


def branch_result_panel(result: BranchResult, title: str) -> Panel:
    """Panel summarizing a branch create/push result."""
    if result.success:
        body = f"[green]{escape(result.message or 'OK')}[/green]"
        border = "green"
    else:
        body = f"[red]{escape(result.error or 'Failed')}[/red]"
        border = "red"
    if result.elapsed_seconds:
        body += f"\n[dim]Elapsed: {result.elapsed_seconds:.2f}s[/dim]"
    return Panel(body, title=f"{title}: {escape(result.branch_name)}", border_style=border)


def conflict_report_table(branch: str, report: ConflictReport) -> Table:
    """Table with every field of a conflict report."""
    table = Table(title=f"Conflict Check: {escape(branch)}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    table.add_row(
        "Has conflicts",
        Text("yes", style="red bold") if report.has_conflicts else Text("no", style="green"),
    )
    table.add_row("Minor", format_bool(report.is_minor))
    table.add_row("Auto-rebase attempted", format_bool(report.auto_remediation_attempted))
    table.add_row("Auto-rebase succeeded", format_bool(report.auto_remediation_succeeded))
    table.add_row(
        f"Conflicting files ({len(report.conflicting_files)})",
        Text("\n".join(report.conflicting_files) or "-"),
    )
    if report.message:
        table.add_row("Message", Text(report.message))
    if report.error:
        table.add_row("Error", Text(report.error, style="red"))
    return table


def agent_health_table(result: HealthCheckResult) -> Table:
    table = Table(title="Agents")
    table.add_column("Agent", style="cyan")
    table.add_column("Status")
    table.add_column("Last heartbeat", justify="right")
    table.add_column("Errors (1h)", justify="right")

    agent_ids = sorted(set(result.agent_health) | set(result.error_counts))
    for agent_id in agent_ids:
        sample = result.agent_health.get(agent_id)
        if sample is None:
            status = Text("-", style="dim")
            since = "-"
        else:
            status = Text(sample.status.value, style=AGENT_STATUS_STYLE.get(sample.status, "white"))
            since = (
                f"{round(sample.time_since_last_heartbeat)}s ago"
                if sample.time_since_last_heartbeat is not None
                else "never"
            )
        table.add_row(Text(agent_id), status, since, str(result.error_counts.get(agent_id, 0)))
    return table


def fleet_table(result: HealthCheckResult) -> Table:
    """Queue and budget summary."""
    table = Table(title="Fleet", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    queue = result.queue_health
    queue_style = {
        QueueLevel.LOW: "yellow",
        QueueLevel.HIGH: "yellow",
        QueueLevel.HEALTHY: "green",
        QueueLevel.UNKNOWN: "dim",
    }
    table.add_row("Queue depth", Text(f"{queue.depth} ({queue.level.value})", style=queue_style[queue.level]))

    budget = result.budget_health
    budget_style = {
        BudgetLevel.HEALTHY: "green",
        BudgetLevel.WARNING: "yellow",
        BudgetLevel.CRITICAL: "red bold",
        BudgetLevel.UNKNOWN: "dim",
    }
    table.add_row("Budget", Text(budget.level.value, style=budget_style[budget.level]))
    table.add_row("Daily used", format_percent(budget.daily_percent_used))
    table.add_row("Monthly used", format_percent(budget.monthly_percent_used))
    table.add_row(
        "Admission",
        Text("paused", style="red bold") if budget.admission_paused else Text("open", style="green"),
    )
    return table


def alerts_table(result: HealthCheckResult) -> Table:
    table = Table(title=f"Alerts ({len(result.alerts)})")
    table.add_column("Level")
    table.add_column("Source", style="cyan")
    table.add_column("Message")
    table.add_column("Actions", style="dim")

    for alert in result.alerts:
        table.add_row(
            Text(alert.level.value, style=ALERT_LEVEL_STYLE.get(alert.level, "white")),
            Text(alert.source),
            Text(alert.message),
            Text(", ".join(alert.actions) or "-"),
        )
    return table
