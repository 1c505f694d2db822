"""
Thin synchronous wrapper around git for one working copy.

Every call returns a GitResult instead of raising, so callers always see
the failure path. Each invocation carries a timeout; a timed-out command
is reported as GitErrorType.TIMEOUT.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from swarm_fleet.errors import GitErrorType, GitOutputClassifier


@dataclass
class GitResult:
    """Outcome of one git invocation."""

    ok: bool
    stdout: str = ""
    stderr: str = ""
    returncode: int = 0
    error_type: Optional[GitErrorType] = None
    command: list[str] = field(default_factory=list)

    @classmethod
    def success(cls, stdout: str = "", command: Optional[list[str]] = None) -> GitResult:
        """Create a successful result."""
        return cls(ok=True, stdout=stdout, command=command or [])

    @classmethod
    def failure(
        cls,
        error: str,
        error_type: GitErrorType = GitErrorType.UNKNOWN,
        returncode: int = -1,
        stdout: str = "",
        command: Optional[list[str]] = None,
    ) -> GitResult:
        """Create a failed result."""
        return cls(
            ok=False,
            stdout=stdout,
            stderr=error,
            returncode=returncode,
            error_type=error_type,
            command=command or [],
        )

    @property
    def error(self) -> str:
        """Human-readable failure description."""
        if self.ok:
            return ""
        text = (self.stderr or self.stdout).strip()
        if not text:
            text = f"exit code {self.returncode}"
        if self.command:
            return f"`{' '.join(self.command)}` failed: {text}"
        return text

    @property
    def timed_out(self) -> bool:
        return self.error_type == GitErrorType.TIMEOUT

    def lines(self) -> list[str]:
        return [line for line in self.stdout.splitlines() if line.strip()]


class GitGateway:
    """
    Issues version-control commands against a single working copy.

    The gateway owns no policy: it does not decide when to abort or
    escalate, it only reports what git did.
    """

    DEFAULT_TIMEOUT = 60.0

    def __init__(
        self,
        working_copy: Union[str, Path],
        remote: str = "origin",
        timeout_seconds: float = DEFAULT_TIMEOUT,
        git_binary: str = "git",
    ) -> None:
        """
        Initialize the gateway.

        Args:
            working_copy: Path to the checked-out repository.
            remote: Remote that holds the baseline and agent branches.
            timeout_seconds: Timeout applied to every command.
            git_binary: git executable to run.
        """
        self.working_copy = str(working_copy)
        self.remote = remote
        self.timeout_seconds = timeout_seconds
        self.git_binary = git_binary
        self._logger = logging.getLogger(__name__)

    def remote_ref(self, branch: str) -> str:
        """Name of the remote-tracking ref for a branch, e.g. origin/main."""
        return f"{self.remote}/{branch}"

    def _run(self, *args: str, timeout: Optional[float] = None) -> GitResult:
        """Run one git command and convert every outcome into a GitResult."""
        cmd = [self.git_binary, *args]
        limit = timeout or self.timeout_seconds
        self._logger.debug(f"Running {' '.join(cmd)} in {self.working_copy}")
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                cwd=self.working_copy,
                timeout=limit,
            )
        except subprocess.TimeoutExpired:
            self._logger.warning(f"{' '.join(cmd)} timed out after {limit}s")
            return GitResult.failure(
                f"timed out after {limit}s",
                error_type=GitErrorType.TIMEOUT,
                command=cmd,
            )
        except FileNotFoundError as e:
            return GitResult.failure(
                f"{self.git_binary} not found: {e}",
                error_type=GitErrorType.GIT_NOT_FOUND,
                command=cmd,
            )
        except OSError as e:
            return GitResult.failure(str(e), command=cmd)

        if proc.returncode == 0:
            return GitResult(
                ok=True,
                stdout=proc.stdout,
                stderr=proc.stderr,
                returncode=0,
                command=cmd,
            )

        return GitResult(
            ok=False,
            stdout=proc.stdout,
            stderr=proc.stderr,
            returncode=proc.returncode,
            error_type=GitOutputClassifier.classify(proc.stderr, proc.stdout, proc.returncode),
            command=cmd,
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def current_branch(self) -> GitResult:
        """Name of the checked-out branch in stdout (empty when detached)."""
        result = self._run("branch", "--show-current")
        if result.ok:
            result.stdout = result.stdout.strip()
        return result

    def local_branch_exists(self, name: str) -> GitResult:
        """ok=True with stdout 'true'/'false'; ok=False only if git failed."""
        result = self._run("branch", "--list", "--format=%(refname:short)", name)
        if not result.ok:
            return result
        exists = name in (line.strip() for line in result.stdout.splitlines())
        return GitResult.success("true" if exists else "false", command=result.command)

    def remote_branch_exists(self, name: str) -> GitResult:
        """Check the remote-tracking refs for a branch."""
        result = self._run("branch", "-r", "--list", "--format=%(refname:short)", self.remote_ref(name))
        if not result.ok:
            return result
        target = self.remote_ref(name)
        exists = target in (line.strip() for line in result.stdout.splitlines())
        return GitResult.success("true" if exists else "false", command=result.command)

    def branch_exists(self, name: str) -> GitResult:
        """Branch exists locally or as a remote-tracking ref."""
        local = self.local_branch_exists(name)
        if not local.ok or local.stdout == "true":
            return local
        return self.remote_branch_exists(name)

    def remote_head(self, name: str) -> GitResult:
        """Commit hash of a branch on the remote itself (stdout empty when absent)."""
        result = self._run("ls-remote", "--heads", self.remote, name)
        if not result.ok:
            return result
        ref = f"refs/heads/{name}"
        for line in result.stdout.splitlines():
            parts = line.split("\t")
            if len(parts) == 2 and parts[1].strip() == ref:
                return GitResult.success(parts[0].strip(), command=result.command)
        return GitResult.success("", command=result.command)

    def status_short(self) -> GitResult:
        """Short-format status; one line per changed path."""
        return self._run("status", "--short")

    def merge_in_progress(self) -> bool:
        """True while a MERGE_HEAD exists."""
        return self._run("rev-parse", "-q", "--verify", "MERGE_HEAD").ok

    def rebase_in_progress(self) -> bool:
        """True while a rebase-merge or rebase-apply directory exists."""
        for marker in ("rebase-merge", "rebase-apply"):
            result = self._run("rev-parse", "--git-path", marker)
            if not result.ok:
                continue
            path = Path(result.stdout.strip())
            if not path.is_absolute():
                path = Path(self.working_copy) / path
            if path.exists():
                return True
        return False

    # =========================================================================
    # Mutations
    # =========================================================================

    def fetch(self, baseline: str) -> GitResult:
        """Fetch the latest baseline from the remote."""
        return self._run("fetch", self.remote, baseline)

    def create_from(self, baseline: str, name: str) -> GitResult:
        """Create and check out a new branch from the remote baseline."""
        return self._run("checkout", "-b", name, self.remote_ref(baseline))

    def dry_run_merge(self, baseline: str) -> GitResult:
        """Merge the baseline without committing and without fast-forward."""
        return self._run("merge", "--no-commit", "--no-ff", self.remote_ref(baseline))

    def abort_merge(self) -> GitResult:
        """Abort a pending merge. Succeeds without action when none is pending."""
        if not self.merge_in_progress():
            return GitResult.success("no merge in progress")
        return self._run("merge", "--abort")

    def rebase(self, baseline: str) -> GitResult:
        """Rebase the checked-out branch onto the remote baseline."""
        return self._run("rebase", self.remote_ref(baseline))

    def abort_rebase(self) -> GitResult:
        """Abort a pending rebase. Succeeds without action when none is pending."""
        if not self.rebase_in_progress():
            return GitResult.success("no rebase in progress")
        return self._run("rebase", "--abort")

    def push(self, name: str, set_upstream: bool = True) -> GitResult:
        """Push a branch to the remote. Never forces."""
        if set_upstream:
            return self._run("push", "-u", self.remote, name)
        return self._run("push", self.remote, name)
