"""Tests for the swarm-fleet CLI."""

from unittest.mock import MagicMock, patch

import pytest
from rich.console import Console

from swarm_fleet import __version__
from swarm_fleet.cli.app import app
from swarm_fleet.cli.display import fleet_table
from swarm_fleet.models import (
    BudgetHealth,
    BudgetLevel,
    ConflictReport,
    HealthCheckResult,
    OverallStatus,
    QueueHealth,
    QueueLevel,
)


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def write_snapshot(tmp_path):
    """Write a YAML fleet snapshot and return its absolute path."""

    def _write(content: str) -> str:
        path = tmp_path / "fleet.yaml"
        path.write_text(content)
        return str(path)

    return _write


def _invoke(cli_runner, tmp_path, *args):
    return cli_runner.invoke(app, ["-p", str(tmp_path), *args])


# =============================================================================
# App
# =============================================================================


class TestApp:
    def test_version(self, cli_runner):
        result = cli_runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"swarm-fleet version {__version__}" in result.output

    def test_missing_project_dir(self, cli_runner, tmp_path):
        result = cli_runner.invoke(app, ["-p", str(tmp_path / "missing"), "config", "show"])
        assert result.exit_code == 1
        assert "Project directory not found" in result.output


# =============================================================================
# branch
# =============================================================================


class TestBranchCommands:
    """Tests for the branch command group."""

    def test_name(self, cli_runner, tmp_path):
        result = _invoke(cli_runner, tmp_path, "branch", "name", "1", "42")
        assert result.exit_code == 0
        assert "agent-1/project-42" in result.output

    def test_name_rejects_zero(self, cli_runner, tmp_path):
        result = _invoke(cli_runner, tmp_path, "branch", "name", "0", "42")
        assert result.exit_code == 1
        assert "agent_id must be positive" in result.output

    def test_check_with_conflicts_exits_1(self, cli_runner, tmp_path):
        coordinator = MagicMock()
        coordinator.check_for_conflicts.return_value = ConflictReport(
            has_conflicts=True,
            conflicting_files=("a.py", "b.py", "c.py", "d.py", "e.py", "f.py"),
            error="Merge conflicts detected in 6 files",
        )
        with patch("swarm_fleet.cli.branch._build_coordinator", return_value=coordinator):
            result = _invoke(cli_runner, tmp_path, "branch", "check", "1", "42")

        assert result.exit_code == 1
        assert "needs-manual-resolution" in result.output
        coordinator.check_for_conflicts.assert_called_once_with(1, 42)

    def test_check_clean_exits_0(self, cli_runner, tmp_path):
        coordinator = MagicMock()
        coordinator.check_for_conflicts.return_value = ConflictReport(
            has_conflicts=False, message="No conflicts detected with main branch"
        )
        with patch("swarm_fleet.cli.branch._build_coordinator", return_value=coordinator):
            result = _invoke(cli_runner, tmp_path, "branch", "check", "1", "42")

        assert result.exit_code == 0
        assert "needs-manual-resolution" not in result.output

    def test_check_error_exits_1(self, cli_runner, tmp_path):
        coordinator = MagicMock()
        coordinator.check_for_conflicts.return_value = ConflictReport(
            has_conflicts=False, error="Failed to check for conflicts: offline"
        )
        with patch("swarm_fleet.cli.branch._build_coordinator", return_value=coordinator):
            result = _invoke(cli_runner, tmp_path, "branch", "check", "1", "42")

        assert result.exit_code == 1

    def test_create_failure_exits_1(self, cli_runner, tmp_path):
        from swarm_fleet.models import BranchResult

        coordinator = MagicMock()
        coordinator.create_branch.return_value = BranchResult(
            success=False, branch_name="agent-1/project-42", error="Branch agent-1/project-42 already exists"
        )
        with patch("swarm_fleet.cli.branch._build_coordinator", return_value=coordinator):
            result = _invoke(cli_runner, tmp_path, "branch", "create", "1", "42")

        assert result.exit_code == 1
        assert "already exists" in result.output


# =============================================================================
# health
# =============================================================================


class TestHealthCheck:
    """Tests for `health check` exit codes and output."""

    def test_healthy_snapshot_exits_0(self, cli_runner, tmp_path, write_snapshot):
        path = write_snapshot(
            "agents:\n"
            "  '1': {seconds_since_heartbeat: 5}\n"
            "queue_depth: 5\n"
            "budget: {daily_percent_used: 10, monthly_percent_used: 5}\n"
        )
        result = _invoke(cli_runner, tmp_path, "health", "check", path)

        assert result.exit_code == 0
        assert "Overall status" in result.output

    def test_unresponsive_agent_exits_1(self, cli_runner, tmp_path, write_snapshot):
        path = write_snapshot("agents:\n  '1': {seconds_since_heartbeat: 180}\nqueue_depth: 5\n")
        result = _invoke(cli_runner, tmp_path, "health", "check", path)
        assert result.exit_code == 1

    def test_budget_critical_exits_2(self, cli_runner, tmp_path, write_snapshot):
        path = write_snapshot("queue_depth: 5\nbudget: {daily_percent_used: 95}\n")
        result = _invoke(cli_runner, tmp_path, "health", "check", path)
        assert result.exit_code == 2

    def test_json_output(self, cli_runner, tmp_path, write_snapshot):
        path = write_snapshot("queue_depth: 5\nbudget: {daily_percent_used: 95}\n")
        result = _invoke(cli_runner, tmp_path, "health", "check", path, "--json")

        assert result.exit_code == 2
        assert '"overall_status": "critical"' in result.output
        assert '"admission_paused": true' in result.output

    def test_missing_snapshot_exits_1(self, cli_runner, tmp_path):
        result = _invoke(cli_runner, tmp_path, "health", "check", str(tmp_path / "nope.yaml"))
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_invalid_config_exits_1(self, cli_runner, tmp_path, write_snapshot):
        (tmp_path / "config.yaml").write_text("health:\n  check_interval_seconds: -5\n")
        path = write_snapshot("queue_depth: 5\n")
        result = _invoke(cli_runner, tmp_path, "health", "check", path)
        assert result.exit_code == 1
        assert "must be positive" in result.output


# =============================================================================
# config
# =============================================================================


class TestConfigShow:
    def test_defaults(self, cli_runner, tmp_path):
        result = _invoke(cli_runner, tmp_path, "config", "show")
        assert result.exit_code == 0
        assert "No config.yaml found" in result.output
        assert "base_branch" in result.output

    def test_loaded_file(self, cli_runner, tmp_path):
        (tmp_path / "config.yaml").write_text("git:\n  base_branch: develop\n")
        result = _invoke(cli_runner, tmp_path, "config", "show")
        assert result.exit_code == 0
        assert "Loaded from" in result.output
        assert "develop" in result.output


# =============================================================================
# display
# =============================================================================


class TestFleetTable:
    def test_unknown_levels_are_rendered(self):
        result = HealthCheckResult(
            timestamp="2026-01-01T00:00:00Z",
            agent_health={},
            queue_health=QueueHealth(level=QueueLevel.UNKNOWN),
            budget_health=BudgetHealth(level=BudgetLevel.UNKNOWN, admission_paused=True),
            overall_status=OverallStatus.ERROR,
            alerts=[],
        )
        console = Console(record=True, width=120)

        console.print(fleet_table(result))

        text = console.export_text()
        assert "0 (unknown)" in text
        assert "unknown" in text.split("Budget")[1]
        assert "paused" in text
