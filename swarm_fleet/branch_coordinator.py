"""
Per-agent branch lifecycle and conflict remediation.

Branch naming convention: agent-{agentId}/project-{issueNumber}
Example: agent-1/project-42

check_for_conflicts pipeline:
1. Guard: the checkout must be the agent's branch
2. Fetch the baseline
3. Dry-run merge (--no-commit --no-ff); the merge is always aborted
4. Minor conflicts (1-4 files) -> rebase onto the baseline, abort on failure
5. Remediated -> push (never forced); otherwise escalate to a human

A failed remediation leaves neither a conflicted nor a half-rebased
working copy, and the remote ref is never touched on failure.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Iterator, Optional

from swarm_fleet.errors import BranchGuardError, GitErrorType
from swarm_fleet.git_gateway import GitGateway, GitResult
from swarm_fleet.models import (
    CONFLICT_STATUS_CODES,
    ESCALATION_FILE_LIMIT,
    AgentBranch,
    AlertLevel,
    AlertSource,
    BranchResult,
    ConflictReport,
)
from swarm_fleet.notifier import ACTION_RESOLVE_MANUALLY, ACTION_VIEW_CONFLICTS, Notifier


def branch_name(agent_id: int, issue_number: int) -> str:
    """Canonical branch name for an agent working on an issue."""
    return AgentBranch(agent_id, issue_number).name


def parse_conflicting_files(status_lines: list[str]) -> list[str]:
    """Extract paths from short-status lines marked as modified on both sides."""
    files = []
    for line in status_lines:
        if line[:2] in CONFLICT_STATUS_CODES:
            path = line[3:].strip()
            if path:
                files.append(path)
    return files


def escalation_header(branch: str, remediation_attempted: bool) -> str:
    if remediation_attempted:
        return f"Auto-rebase failed for {branch}"
    return f"Merge conflicts detected in branch {branch}"


def format_escalation_message(
    branch: str,
    conflicting_files: list[str] | tuple[str, ...],
    remediation_attempted: bool,
    header: Optional[str] = None,
) -> str:
    """Escalation text naming the branch and up to ten conflicting files."""
    message = header or escalation_header(branch, remediation_attempted)

    shown = ", ".join(conflicting_files[:ESCALATION_FILE_LIMIT])
    extra = len(conflicting_files) - ESCALATION_FILE_LIMIT
    more = f" (+{extra} more)" if extra > 0 else ""
    return f"{message}\n\nConflicting files ({len(conflicting_files)}): {shown}{more}"


class BranchCoordinator:
    """
    Creates, pushes and conflict-checks per-agent branches in one working copy.

    Callers must serialize operations for a given agent; different agents
    use different working copies and may run concurrently.
    """

    DEFAULT_CREATE_BUDGET_SECONDS = 10.0

    def __init__(
        self,
        gateway: GitGateway,
        baseline: str = "main",
        notifier: Optional[Notifier] = None,
        create_budget_seconds: float = DEFAULT_CREATE_BUDGET_SECONDS,
    ) -> None:
        """
        Initialize the coordinator.

        Args:
            gateway: Git access for the agent's working copy.
            baseline: Integration branch agents stay synchronized with.
            notifier: Receives conflict escalations.
            create_budget_seconds: Branch creation slower than this logs a warning.
        """
        self.gateway = gateway
        self.baseline = baseline
        self.notifier = notifier
        self.create_budget_seconds = create_budget_seconds
        self._logger = logging.getLogger(__name__)

    @staticmethod
    def branch_name(agent_id: int, issue_number: int) -> str:
        return branch_name(agent_id, issue_number)

    # =========================================================================
    # Guards
    # =========================================================================

    def _require_checkout(self, branch: str) -> None:
        """Raise BranchGuardError unless `branch` is checked out."""
        current = self.gateway.current_branch()
        if not current.ok:
            raise BranchGuardError(
                f"Failed to get current branch: {current.error}", branch_name=branch
            )
        if current.stdout != branch:
            raise BranchGuardError(
                f"Not on branch {branch}, currently on {current.stdout or '(detached HEAD)'}",
                branch_name=branch,
                current_branch=current.stdout,
            )

    def _require_absent(self, branch: str) -> None:
        """Raise BranchGuardError if the branch exists locally or on the remote."""
        exists = self.gateway.branch_exists(branch)
        if not exists.ok:
            raise BranchGuardError(
                f"Could not check whether {branch} exists: {exists.error}", branch_name=branch
            )
        if exists.stdout == "true":
            raise BranchGuardError(f"Branch {branch} already exists", branch_name=branch)

    # =========================================================================
    # Create / push
    # =========================================================================

    def create_branch(self, agent_id: int, issue_number: int) -> BranchResult:
        """
        Create the agent's branch from the latest baseline and check it out.

        A name collision fails without touching the remote.
        """
        name = branch_name(agent_id, issue_number)
        started = time.monotonic()
        self._logger.info(f"Creating branch {name} for agent {agent_id}...")

        try:
            self._require_absent(name)
        except BranchGuardError as e:
            return BranchResult(success=False, branch_name=name, error=str(e))

        fetch = self.gateway.fetch(self.baseline)
        if not fetch.ok:
            return self._create_failed(name, fetch, started)

        create = self.gateway.create_from(self.baseline, name)
        if not create.ok:
            return self._create_failed(name, create, started)

        elapsed = time.monotonic() - started
        self._logger.info(f"Branch {name} created successfully in {elapsed * 1000:.0f}ms")
        if elapsed > self.create_budget_seconds:
            self._logger.warning(
                f"Branch creation took {elapsed:.1f}s, exceeding {self.create_budget_seconds}s threshold"
            )

        return BranchResult(
            success=True,
            branch_name=name,
            message=f"Branch {name} created successfully from {self.gateway.remote_ref(self.baseline)}",
            elapsed_seconds=elapsed,
        )

    def _create_failed(self, name: str, result: GitResult, started: float) -> BranchResult:
        self._logger.error(f"Failed to create branch {name}: {result.error}")
        return BranchResult(
            success=False,
            branch_name=name,
            error=f"Failed to create branch: {result.error}",
            elapsed_seconds=time.monotonic() - started,
        )

    def push_branch(self, agent_id: int, issue_number: int) -> BranchResult:
        """Push the agent's branch with upstream tracking. Fails fast on the wrong checkout."""
        name = branch_name(agent_id, issue_number)
        self._logger.info(f"Pushing branch {name} to remote...")

        try:
            self._require_checkout(name)
        except BranchGuardError as e:
            self._logger.error(f"Refusing to push {name}: {e}")
            return BranchResult(success=False, branch_name=name, error=f"Failed to push branch: {e}")

        push = self.gateway.push(name, set_upstream=True)
        if not push.ok:
            self._logger.error(f"Failed to push branch {name}: {push.error}")
            return BranchResult(
                success=False, branch_name=name, error=f"Failed to push branch: {push.error}"
            )

        self._logger.info(f"Branch {name} pushed successfully")
        return BranchResult(success=True, branch_name=name, message=f"Branch {name} pushed")

    # =========================================================================
    # Conflict detection
    # =========================================================================

    @contextmanager
    def _dry_run_merge(self) -> Iterator[GitResult]:
        """Attempt the dry-run merge; the abort runs on every exit path."""
        try:
            yield self.gateway.dry_run_merge(self.baseline)
        finally:
            abort = self.gateway.abort_merge()
            if not abort.ok:
                self._logger.error(f"Failed to abort dry-run merge: {abort.error}")

    @contextmanager
    def _rebase_attempt(self) -> Iterator[GitResult]:
        """Attempt a rebase; anything short of a clean success is aborted."""
        result: Optional[GitResult] = None
        try:
            result = self.gateway.rebase(self.baseline)
            yield result
        finally:
            if result is None or not result.ok:
                abort = self.gateway.abort_rebase()
                if abort.ok:
                    self._logger.info("Rebase aborted successfully")
                else:
                    self._logger.error(f"Failed to abort rebase: {abort.error}")

    def _collect_conflicts(self) -> list[str]:
        status = self.gateway.status_short()
        if not status.ok:
            self._logger.error(f"Failed to get conflict status: {status.error}")
            return []
        return parse_conflicting_files(status.lines())

    def _attempt_remediation(self, name: str) -> GitResult:
        """Rebase onto the baseline; on failure the rebase is aborted before returning."""
        self._logger.info(
            f"Attempting automatic rebase of {name} onto {self.gateway.remote_ref(self.baseline)}..."
        )
        with self._rebase_attempt() as result:
            if result.ok:
                self._logger.info(f"Auto-rebase succeeded for {name}")
            else:
                self._logger.warning(f"Auto-rebase failed for {name}: {result.error}")
            return result

    def check_for_conflicts(self, agent_id: int, issue_number: int) -> ConflictReport:
        """
        Check the agent's branch against the baseline and remediate minor conflicts.

        Returns:
            ConflictReport; has_conflicts=True means a human must resolve it.
        """
        name = branch_name(agent_id, issue_number)
        self._logger.info(f"Checking for conflicts with {self.baseline} for {name}...")

        try:
            self._require_checkout(name)
        except BranchGuardError as e:
            return self._check_failed(str(e))

        fetch = self.gateway.fetch(self.baseline)
        if not fetch.ok:
            return self._check_failed(fetch.error)

        conflicting_files: list[str] = []
        with self._dry_run_merge() as merge:
            if not merge.ok:
                conflicting_files = self._collect_conflicts()

        if merge.ok:
            self._logger.info(f"No conflicts detected for {name}")
            return ConflictReport(
                has_conflicts=False,
                is_minor=False,
                message=f"No conflicts detected with {self.baseline} branch",
            )

        files = tuple(conflicting_files)
        if not files and merge.error_type != GitErrorType.CONFLICT:
            # Timeouts and other non-conflict failures are reported, not escalated
            return self._check_failed(f"Dry-run merge failed: {merge.error}")

        is_minor = ConflictReport.classify_minor(files)
        self._logger.info(f"Detected {len(files)} conflicting files: {list(files)}")

        if not is_minor:
            self._escalate(name, files, remediation_attempted=False)
            if files:
                error = f"Merge conflicts detected in {len(files)} files"
            else:
                error = f"Dry-run merge failed: {merge.error}"
            return ConflictReport(
                has_conflicts=True,
                conflicting_files=files,
                is_minor=False,
                error=error,
            )

        self._logger.info(f"Conflicts are minor ({len(files)} files), attempting automatic rebase...")
        rebase = self._attempt_remediation(name)

        if not rebase.ok:
            self._escalate(name, files, remediation_attempted=True)
            return ConflictReport(
                has_conflicts=True,
                conflicting_files=files,
                is_minor=True,
                auto_remediation_attempted=True,
                auto_remediation_succeeded=False,
                error=f"Auto-rebase failed: {rebase.error}",
            )

        push = self.push_branch(agent_id, issue_number)
        if not push.success:
            # The rebased branch cannot be published without forcing; a human decides
            self._escalate(
                name,
                files,
                remediation_attempted=True,
                header=f"Auto-rebase succeeded for {name} but the push failed",
            )
            return ConflictReport(
                has_conflicts=True,
                conflicting_files=files,
                is_minor=True,
                auto_remediation_attempted=True,
                auto_remediation_succeeded=True,
                error=f"Auto-rebase succeeded but push failed: {push.error}",
            )

        return ConflictReport(
            has_conflicts=False,
            conflicting_files=(),
            is_minor=True,
            auto_remediation_attempted=True,
            auto_remediation_succeeded=True,
            message="Conflicts resolved via automatic rebase and pushed successfully",
        )

    def _check_failed(self, error: str) -> ConflictReport:
        self._logger.error(f"Error checking for conflicts: {error}")
        return ConflictReport(
            has_conflicts=False,
            error=f"Failed to check for conflicts: {error}",
        )

    def _escalate(
        self,
        name: str,
        conflicting_files: tuple[str, ...],
        remediation_attempted: bool,
        header: Optional[str] = None,
    ) -> None:
        """Hand the conflict to a human with the branch and file list."""
        message = format_escalation_message(name, conflicting_files, remediation_attempted, header)
        self._logger.warning(message.replace("\n\n", " "))
        if self.notifier is None:
            return
        self.notifier.notify(
            AlertLevel.WARNING,
            message,
            AlertSource.BRANCH_CONFLICT,
            (ACTION_VIEW_CONFLICTS, ACTION_RESOLVE_MANUALLY),
        )
        self._logger.info(f"Conflict notification shown to user for {name}")
