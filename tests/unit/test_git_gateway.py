"""Unit tests for GitGateway and git failure classification.

subprocess.run is patched; every call returns a CompletedProcess-like mock.
"""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from swarm_fleet.errors import GitErrorType, GitOutputClassifier
from swarm_fleet.git_gateway import GitGateway, GitResult


def _proc(returncode=0, stdout="", stderr=""):
    proc = MagicMock()
    proc.returncode = returncode
    proc.stdout = stdout
    proc.stderr = stderr
    return proc


@pytest.fixture
def gateway(tmp_path):
    return GitGateway(tmp_path, remote="origin", timeout_seconds=7.0)


# =============================================================================
# GitOutputClassifier
# =============================================================================


class TestGitOutputClassifier:
    """Tests for GitOutputClassifier.classify()."""

    def test_success_is_unclassified(self):
        assert GitOutputClassifier.classify("", returncode=0) is None

    @pytest.mark.parametrize("stderr,expected", [
        ("fatal: not a git repository (or any of the parent directories): .git", GitErrorType.NOT_A_REPO),
        ("CONFLICT (content): Merge conflict in a.py\nAutomatic merge failed", GitErrorType.CONFLICT),
        ("error: could not apply 1234abc... change", GitErrorType.CONFLICT),
        ("error: Your local changes to the following files would be overwritten by merge", GitErrorType.DIRTY_WORKTREE),
        (" ! [rejected]        agent-1/project-2 -> agent-1/project-2 (non-fast-forward)", GitErrorType.REJECTED),
        ("fatal: Authentication failed for 'https://example.com/repo.git'", GitErrorType.AUTH),
        ("fatal: unable to access 'https://example.com/': Could not resolve host: example.com", GitErrorType.NETWORK),
        ("something unexpected", GitErrorType.UNKNOWN),
    ])
    def test_classify(self, stderr, expected):
        assert GitOutputClassifier.classify(stderr, returncode=1) == expected

    def test_conflict_reported_on_stdout(self):
        assert GitOutputClassifier.classify("", "CONFLICT (content): Merge conflict in x", 1) == GitErrorType.CONFLICT


# =============================================================================
# GitResult
# =============================================================================


class TestGitResult:
    def test_success_has_no_error(self):
        result = GitResult.success("out")
        assert result.ok is True
        assert result.error == ""

    def test_failure_error_includes_command(self):
        result = GitResult.failure("boom", command=["git", "fetch"])
        assert result.error == "`git fetch` failed: boom"
        assert result.error_type == GitErrorType.UNKNOWN

    def test_failure_without_output_reports_exit_code(self):
        result = GitResult(ok=False, returncode=128)
        assert result.error == "exit code 128"

    def test_lines_skip_blank(self):
        assert GitResult.success("UU a.py\n\nAA b.py\n").lines() == ["UU a.py", "AA b.py"]

    def test_timed_out(self):
        assert GitResult.failure("x", error_type=GitErrorType.TIMEOUT).timed_out is True


# =============================================================================
# GitGateway
# =============================================================================


class TestGatewayRun:
    """Tests for command execution and failure conversion."""

    def test_runs_in_working_copy_with_timeout(self, gateway, tmp_path):
        with patch("swarm_fleet.git_gateway.subprocess.run", return_value=_proc()) as run:
            gateway.fetch("main")

        args, kwargs = run.call_args
        assert args[0] == ["git", "fetch", "origin", "main"]
        assert kwargs["cwd"] == str(tmp_path)
        assert kwargs["timeout"] == 7.0
        assert kwargs["capture_output"] is True

    def test_timeout_becomes_structured_failure(self, gateway):
        with patch(
            "swarm_fleet.git_gateway.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="git", timeout=7.0),
        ):
            result = gateway.rebase("main")

        assert result.ok is False
        assert result.error_type == GitErrorType.TIMEOUT
        assert result.timed_out is True

    def test_missing_git_becomes_structured_failure(self, gateway):
        with patch("swarm_fleet.git_gateway.subprocess.run", side_effect=FileNotFoundError("git")):
            result = gateway.fetch("main")

        assert result.ok is False
        assert result.error_type == GitErrorType.GIT_NOT_FOUND

    def test_nonzero_exit_is_classified(self, gateway):
        proc = _proc(1, stdout="CONFLICT (content): Merge conflict in a.py\n")
        with patch("swarm_fleet.git_gateway.subprocess.run", return_value=proc):
            result = gateway.dry_run_merge("main")

        assert result.ok is False
        assert result.error_type == GitErrorType.CONFLICT


class TestGatewayCommands:
    """Tests for the exact git invocations."""

    @pytest.mark.parametrize("method,args,expected", [
        ("create_from", ("main", "agent-1/project-2"), ["checkout", "-b", "agent-1/project-2", "origin/main"]),
        ("dry_run_merge", ("main",), ["merge", "--no-commit", "--no-ff", "origin/main"]),
        ("rebase", ("main",), ["rebase", "origin/main"]),
        ("push", ("agent-1/project-2",), ["push", "-u", "origin", "agent-1/project-2"]),
        ("status_short", (), ["status", "--short"]),
    ])
    def test_command_line(self, gateway, method, args, expected):
        with patch("swarm_fleet.git_gateway.subprocess.run", return_value=_proc()) as run:
            getattr(gateway, method)(*args)
        assert run.call_args[0][0] == ["git", *expected]

    def test_push_never_forces(self, gateway):
        with patch("swarm_fleet.git_gateway.subprocess.run", return_value=_proc()) as run:
            gateway.push("agent-1/project-2", set_upstream=False)
        cmd = run.call_args[0][0]
        assert "--force" not in cmd and "-f" not in cmd
        assert cmd == ["git", "push", "origin", "agent-1/project-2"]

    def test_current_branch_is_stripped(self, gateway):
        with patch("swarm_fleet.git_gateway.subprocess.run", return_value=_proc(stdout="agent-1/project-2\n")):
            assert gateway.current_branch().stdout == "agent-1/project-2"

    def test_local_branch_exists_uses_exact_match(self, gateway):
        # A longer name sharing the prefix must not count as a match
        with patch("swarm_fleet.git_gateway.subprocess.run", return_value=_proc(stdout="agent-1/project-22\n")):
            assert gateway.local_branch_exists("agent-1/project-2").stdout == "false"
        with patch("swarm_fleet.git_gateway.subprocess.run", return_value=_proc(stdout="agent-1/project-2\n")):
            assert gateway.local_branch_exists("agent-1/project-2").stdout == "true"

    def test_branch_exists_checks_remote_when_not_local(self, gateway):
        outputs = [_proc(stdout=""), _proc(stdout="origin/agent-1/project-2\n")]
        with patch("swarm_fleet.git_gateway.subprocess.run", side_effect=outputs):
            assert gateway.branch_exists("agent-1/project-2").stdout == "true"

    def test_remote_head(self, gateway):
        out = "abc123\trefs/heads/agent-1/project-2\n"
        with patch("swarm_fleet.git_gateway.subprocess.run", return_value=_proc(stdout=out)):
            assert gateway.remote_head("agent-1/project-2").stdout == "abc123"
        with patch("swarm_fleet.git_gateway.subprocess.run", return_value=_proc(stdout="")):
            assert gateway.remote_head("agent-1/project-2").stdout == ""


class TestIdempotentAborts:
    """Aborts succeed without running git when nothing is in progress."""

    def test_abort_merge_without_merge_head(self, gateway):
        with patch("swarm_fleet.git_gateway.subprocess.run", return_value=_proc(returncode=1)) as run:
            result = gateway.abort_merge()

        assert result.ok is True
        assert run.call_count == 1
        assert run.call_args[0][0] == ["git", "rev-parse", "-q", "--verify", "MERGE_HEAD"]

    def test_abort_merge_with_merge_head(self, gateway):
        with patch("swarm_fleet.git_gateway.subprocess.run", side_effect=[_proc(), _proc()]) as run:
            result = gateway.abort_merge()

        assert result.ok is True
        assert run.call_args[0][0] == ["git", "merge", "--abort"]

    def test_abort_rebase_without_rebase_dir(self, gateway, tmp_path):
        outputs = [
            _proc(stdout=".git/rebase-merge\n"),
            _proc(stdout=".git/rebase-apply\n"),
        ]
        with patch("swarm_fleet.git_gateway.subprocess.run", side_effect=outputs) as run:
            result = gateway.abort_rebase()

        assert result.ok is True
        assert run.call_count == 2

    def test_abort_rebase_with_rebase_dir(self, gateway, tmp_path):
        (tmp_path / ".git" / "rebase-merge").mkdir(parents=True)
        outputs = [_proc(stdout=".git/rebase-merge\n"), _proc()]
        with patch("swarm_fleet.git_gateway.subprocess.run", side_effect=outputs) as run:
            result = gateway.abort_rebase()

        assert result.ok is True
        assert run.call_args[0][0] == ["git", "rebase", "--abort"]
