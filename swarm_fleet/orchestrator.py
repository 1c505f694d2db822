"""
Fleet Orchestrator for Swarm Fleet.

This module ties the safety net together:
1. One FleetObserver evaluating health and budget on a schedule
2. One BranchCoordinator per registered agent working copy
3. Work admission gated by the observer's admission-pause flag
4. Work lifecycle:
   - start_work: admission check, then create the agent branch
   - finish_work: conflict check, push when clean, then done
     or needs-manual-resolution
5. Every lifecycle transition is written to the JSONL event log
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Union

from swarm_fleet.branch_coordinator import BranchCoordinator, branch_name
from swarm_fleet.config import FleetConfig
from swarm_fleet.errors import FleetError
from swarm_fleet.fleet_observer import FleetObserver
from swarm_fleet.git_gateway import GitGateway
from swarm_fleet.logger import FleetLogger
from swarm_fleet.models import ConflictReport, HealthCheckResult
from swarm_fleet.notifier import Notifier
from swarm_fleet.sources import (
    AgentErrorSource,
    CostLedger,
    HeartbeatSource,
    QueueDepthSource,
    SpendLedger,
    StuckAgentSource,
)


# Work outcome statuses
STATUS_STARTED = "started"
STATUS_PAUSED = "paused"
STATUS_DONE = "done"
STATUS_NEEDS_MANUAL_RESOLUTION = "needs_manual_resolution"
STATUS_FAILED = "failed"

# Label applied to a project whose conflicts need a human
NEEDS_MANUAL_RESOLUTION_LABEL = "needs-manual-resolution"


@dataclass
class WorkOutcome:
    """
    Result of starting or finishing a unit of agent work.

    Tracks where the project ended up in the lifecycle:
    started -> done, or started -> needs_manual_resolution
    """

    status: str  # "started", "paused", "done", "needs_manual_resolution", "failed"
    agent_id: int
    issue_number: int
    branch_name: str
    message: Optional[str] = None
    error: Optional[str] = None
    labels: tuple[str, ...] = ()
    conflict_report: Optional[ConflictReport] = None

    @property
    def success(self) -> bool:
        return self.status in (STATUS_STARTED, STATUS_DONE)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "status": self.status,
            "agent_id": self.agent_id,
            "issue_number": self.issue_number,
            "branch_name": self.branch_name,
            "message": self.message,
            "error": self.error,
            "labels": list(self.labels),
            "conflict_report": self.conflict_report.to_dict() if self.conflict_report else None,
        }


class FleetOrchestrator:
    """
    Coordinates branch lifecycle and fleet health for all registered agents.

    Operations for one agent are serialized by a per-agent lock; different
    agents work in different working copies and run concurrently.
    """

    def __init__(
        self,
        observer: FleetObserver,
        config: Optional[FleetConfig] = None,
        notifier: Optional[Notifier] = None,
        event_logger: Optional[FleetLogger] = None,
        restart_agent: Optional[Callable[[str], None]] = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            observer: Health observer owning the admission-pause flag.
            config: FleetConfig with git settings and paths.
            notifier: Receives conflict escalations from every coordinator.
            event_logger: JSONL event log. Defaults to the "orchestrator"
                component log when a config is given.
            restart_agent: Called with an agent id when the operator picks
                the restart action on a stuck-agent notification.
        """
        self.config = config or FleetConfig()
        self.observer = observer
        self.notifier = notifier
        self.events = event_logger
        if self.events is None and config is not None:
            self.events = FleetLogger("orchestrator", config)
        self._restart_callback = restart_agent
        self._logger = logging.getLogger(__name__)

        self._coordinators: dict[int, BranchCoordinator] = {}
        self._agent_locks: dict[int, threading.Lock] = {}
        self._registry_lock = threading.Lock()

        # Observer hooks left unset are routed through the orchestrator
        if observer.restart_agent is None:
            observer.restart_agent = self._restart_agent
        if observer.on_admission_change is None:
            observer.on_admission_change = self._admission_changed
        if observer.on_tick is None:
            observer.on_tick = self._health_ticked

    @classmethod
    def from_config(
        cls,
        config: FleetConfig,
        heartbeats: HeartbeatSource,
        stuck_agents: StuckAgentSource,
        queue: QueueDepthSource,
        spend: Optional[SpendLedger] = None,
        errors: Optional[AgentErrorSource] = None,
        notifier: Optional[Notifier] = None,
        restart_agent: Optional[Callable[[str], None]] = None,
    ) -> FleetOrchestrator:
        """
        Build an orchestrator and its observer from configuration.

        Without a spend ledger, the JSON cost log at config.cost_log_path is used.
        """
        if spend is None:
            spend = CostLedger(
                config.cost_log_path,
                daily_limit_usd=config.budget.daily_limit_usd,
                monthly_limit_usd=config.budget.monthly_limit_usd,
            )
        observer = FleetObserver(
            heartbeats=heartbeats,
            stuck_agents=stuck_agents,
            queue=queue,
            spend=spend,
            errors=errors,
            config=config.health,
        )
        observer.alert_sink.notifier = notifier
        return cls(observer, config=config, notifier=notifier, restart_agent=restart_agent)

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        """Log an event if an event log is configured."""
        if self.events:
            self.events.log(event_type, data or {}, level=level)

    # =========================================================================
    # Agent registry
    # =========================================================================

    def register_agent(
        self, agent_id: int, working_copy: Optional[Union[str, Path]] = None
    ) -> BranchCoordinator:
        """
        Register an agent's working copy and create its coordinator.

        The working copy defaults to <worktrees_root>/agent-<id>.

        Raises:
            FleetError: If the agent is already registered.
        """
        if working_copy is None:
            working_copy = self.config.worktrees_path / f"agent-{agent_id}"
        gateway = GitGateway(
            working_copy,
            remote=self.config.git.remote,
            timeout_seconds=self.config.git.command_timeout_seconds,
        )
        coordinator = BranchCoordinator(
            gateway,
            baseline=self.config.git.base_branch,
            notifier=self.notifier,
            create_budget_seconds=self.config.git.create_budget_seconds,
        )
        with self._registry_lock:
            if agent_id in self._coordinators:
                raise FleetError(f"Agent {agent_id} is already registered")
            self._coordinators[agent_id] = coordinator
            self._agent_locks[agent_id] = threading.Lock()

        self._log("agent_registered", {"agent_id": agent_id, "working_copy": str(working_copy)})
        return coordinator

    def unregister_agent(self, agent_id: int) -> None:
        with self._registry_lock:
            self._coordinators.pop(agent_id, None)
            self._agent_locks.pop(agent_id, None)
        self._log("agent_unregistered", {"agent_id": agent_id})

    @property
    def agent_ids(self) -> list[int]:
        with self._registry_lock:
            return sorted(self._coordinators)

    def coordinator(self, agent_id: int) -> BranchCoordinator:
        """
        Get the coordinator for a registered agent.

        Raises:
            FleetError: If the agent is not registered.
        """
        with self._registry_lock:
            coordinator = self._coordinators.get(agent_id)
        if coordinator is None:
            raise FleetError(f"Agent {agent_id} is not registered")
        return coordinator

    def _agent_lock(self, agent_id: int) -> threading.Lock:
        with self._registry_lock:
            lock = self._agent_locks.get(agent_id)
        if lock is None:
            raise FleetError(f"Agent {agent_id} is not registered")
        return lock

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> bool:
        """Start scheduled health monitoring. Returns False if already running."""
        started = self.observer.start()
        if started:
            self._log("monitoring_started", {
                "interval_seconds": self.observer.config.check_interval_seconds,
            })
        return started

    def stop(self) -> None:
        """Stop scheduled health monitoring and release source workers."""
        self.observer.close()
        self._log("monitoring_stopped")

    def can_admit_work(self) -> bool:
        """False while the budget has paused new project claims."""
        return not self.observer.admission_paused

    def run_health_check(self) -> HealthCheckResult:
        """Run one evaluation tick immediately."""
        return self.observer.run_health_check()

    # =========================================================================
    # Work
    # =========================================================================

    def start_work(self, agent_id: int, issue_number: int) -> WorkOutcome:
        """
        Admit a project for an agent and create its branch.

        Returns:
            WorkOutcome with status "started", "paused" or "failed".
        """
        name = branch_name(agent_id, issue_number)
        coordinator = self.coordinator(agent_id)

        with self._agent_lock(agent_id):
            if not self.can_admit_work():
                self._logger.warning(
                    f"Admission paused, agent {agent_id} may not claim project {issue_number}"
                )
                outcome = WorkOutcome(
                    status=STATUS_PAUSED,
                    agent_id=agent_id,
                    issue_number=issue_number,
                    branch_name=name,
                    message="New project claims are paused by the budget",
                )
                self._log("work_refused", outcome.to_dict(), level="warn")
                return outcome

            result = coordinator.create_branch(agent_id, issue_number)

        if not result.success:
            outcome = WorkOutcome(
                status=STATUS_FAILED,
                agent_id=agent_id,
                issue_number=issue_number,
                branch_name=name,
                error=result.error,
            )
            self._log("work_start_failed", outcome.to_dict(), level="error")
            return outcome

        outcome = WorkOutcome(
            status=STATUS_STARTED,
            agent_id=agent_id,
            issue_number=issue_number,
            branch_name=name,
            message=result.message,
        )
        self._log("work_started", {**outcome.to_dict(), "elapsed_seconds": result.elapsed_seconds})
        return outcome

    def pre_merge_check(self, agent_id: int, issue_number: int) -> ConflictReport:
        """Conflict-check an agent's branch without finishing the work."""
        coordinator = self.coordinator(agent_id)
        with self._agent_lock(agent_id):
            report = coordinator.check_for_conflicts(agent_id, issue_number)
        self._log("pre_merge_check", {
            "agent_id": agent_id,
            "issue_number": issue_number,
            **report.to_dict(),
        })
        return report

    def finish_work(self, agent_id: int, issue_number: int) -> WorkOutcome:
        """
        Conflict-check and push an agent's branch, then mark the project done.

        Unresolved conflicts never reach "done"; the project is labelled
        needs-manual-resolution instead.
        """
        name = branch_name(agent_id, issue_number)
        coordinator = self.coordinator(agent_id)

        with self._agent_lock(agent_id):
            report = coordinator.check_for_conflicts(agent_id, issue_number)

            if report.has_conflicts:
                outcome = WorkOutcome(
                    status=STATUS_NEEDS_MANUAL_RESOLUTION,
                    agent_id=agent_id,
                    issue_number=issue_number,
                    branch_name=name,
                    error=report.error,
                    labels=(NEEDS_MANUAL_RESOLUTION_LABEL,),
                    conflict_report=report,
                )
                self._log("work_needs_manual_resolution", outcome.to_dict(), level="warn")
                return outcome

            if report.error:
                outcome = WorkOutcome(
                    status=STATUS_FAILED,
                    agent_id=agent_id,
                    issue_number=issue_number,
                    branch_name=name,
                    error=report.error,
                    conflict_report=report,
                )
                self._log("work_finish_failed", outcome.to_dict(), level="error")
                return outcome

            # A successful remediation already pushed the rebased branch
            if not report.auto_remediation_succeeded:
                push = coordinator.push_branch(agent_id, issue_number)
                if not push.success:
                    outcome = WorkOutcome(
                        status=STATUS_FAILED,
                        agent_id=agent_id,
                        issue_number=issue_number,
                        branch_name=name,
                        error=push.error,
                        conflict_report=report,
                    )
                    self._log("work_finish_failed", outcome.to_dict(), level="error")
                    return outcome

        outcome = WorkOutcome(
            status=STATUS_DONE,
            agent_id=agent_id,
            issue_number=issue_number,
            branch_name=name,
            message=f"Branch {name} ready for review",
            conflict_report=report,
        )
        self._log("work_done", outcome.to_dict())
        return outcome

    # =========================================================================
    # Observer hooks
    # =========================================================================

    def _restart_agent(self, agent_id: str) -> None:
        self._log("agent_restart_requested", {"agent_id": agent_id}, level="warn")
        if self._restart_callback is None:
            self._logger.warning(f"No restart handler configured for agent {agent_id}")
            return
        self._restart_callback(agent_id)

    def _admission_changed(self, paused: bool) -> None:
        self._log(
            "admission_paused" if paused else "admission_resumed",
            {"paused": paused},
            level="warn" if paused else "info",
        )

    def _health_ticked(self, result: HealthCheckResult) -> None:
        self._log("health_tick", {
            "overall_status": result.overall_status.value,
            "alert_count": len(result.alerts),
            "agent_count": len(result.agent_health),
            "budget_level": result.budget_health.level.value,
            "admission_paused": result.budget_health.admission_paused,
            "duration_seconds": result.duration_seconds,
        })
