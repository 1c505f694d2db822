"""
Error classification for Swarm Fleet.

This module provides:
- GitErrorType enum for categorizing version-control failures
- GitOutputClassifier for detecting error types from git output
- Exception classes for guard failures and unavailable data sources
"""

from __future__ import annotations

import re
from enum import Enum, auto
from typing import Optional


class GitErrorType(Enum):
    """
    Classification of git command failures.

    Used to decide between escalation and a structured failure result.
    """

    # Local state
    CONFLICT = auto()           # Merge or rebase stopped on conflicts
    NOT_A_REPO = auto()         # Working copy is not a git repository
    DIRTY_WORKTREE = auto()     # Local changes would be overwritten

    # Remote
    REJECTED = auto()           # Push rejected (non-fast-forward, hooks)
    NETWORK = auto()            # Remote unreachable
    AUTH = auto()               # Remote refused credentials

    # Process
    TIMEOUT = auto()            # Command exceeded its timeout
    GIT_NOT_FOUND = auto()      # git binary not installed

    # Unknown
    UNKNOWN = auto()            # Unclassified failure


class FleetError(Exception):
    """Base exception for Swarm Fleet errors."""
    pass


class BranchGuardError(FleetError):
    """
    Raised when a branch operation precondition fails.

    Guard failures are terminal: a wrong checkout or a name collision is
    never retried.
    """

    def __init__(self, message: str, branch_name: str = "", current_branch: str = "") -> None:
        super().__init__(message)
        self.branch_name = branch_name
        self.current_branch = current_branch


class SourceUnavailableError(FleetError):
    """Raised when a health data source fails or does not answer in time."""

    def __init__(self, source: str, message: str, timed_out: bool = False) -> None:
        super().__init__(message)
        self.source = source
        self.timed_out = timed_out


class GitOutputClassifier:
    """
    Classifies git failures from command output.

    Uses pattern matching on stderr/stdout to determine error type.
    """

    CONFLICT_PATTERNS = [
        r"conflict",
        r"automatic\s+merge\s+failed",
        r"could\s+not\s+apply",
        r"resolve\s+all\s+conflicts",
    ]

    NOT_A_REPO_PATTERNS = [
        r"not\s+a\s+git\s+repository",
    ]

    DIRTY_PATTERNS = [
        r"local\s+changes.*would\s+be\s+overwritten",
        r"uncommitted\s+changes",
        r"unstaged\s+changes",
    ]

    REJECTED_PATTERNS = [
        r"\[rejected\]",
        r"non-fast-forward",
        r"failed\s+to\s+push\s+some\s+refs",
        r"pre-receive\s+hook\s+declined",
    ]

    AUTH_PATTERNS = [
        r"authentication\s+failed",
        r"permission\s+denied",
        r"could\s+not\s+read\s+username",
        r"403",
    ]

    NETWORK_PATTERNS = [
        r"could\s+not\s+resolve\s+host",
        r"connection\s+(timed\s+out|refused|reset)",
        r"unable\s+to\s+access",
        r"could\s+not\s+read\s+from\s+remote\s+repository",
    ]

    @classmethod
    def classify(
        cls,
        stderr: str,
        stdout: str = "",
        returncode: int = -1,
    ) -> Optional[GitErrorType]:
        """
        Classify a git failure based on output.

        Args:
            stderr: Standard error output from git.
            stdout: Standard output from git.
            returncode: Process return code.

        Returns:
            GitErrorType classification, or None when the command succeeded.
        """
        if returncode == 0:
            return None

        combined = f"{stderr} {stdout}".lower()

        if cls._matches_any(combined, cls.NOT_A_REPO_PATTERNS):
            return GitErrorType.NOT_A_REPO

        # Dirty worktree messages can mention merge; check before conflicts
        if cls._matches_any(combined, cls.DIRTY_PATTERNS):
            return GitErrorType.DIRTY_WORKTREE

        if cls._matches_any(combined, cls.CONFLICT_PATTERNS):
            return GitErrorType.CONFLICT

        if cls._matches_any(combined, cls.AUTH_PATTERNS):
            return GitErrorType.AUTH

        if cls._matches_any(combined, cls.NETWORK_PATTERNS):
            return GitErrorType.NETWORK

        if cls._matches_any(combined, cls.REJECTED_PATTERNS):
            return GitErrorType.REJECTED

        return GitErrorType.UNKNOWN

    @classmethod
    def _matches_any(cls, text: str, patterns: list[str]) -> bool:
        """Check if text matches any of the given patterns."""
        for pattern in patterns:
            if re.search(pattern, text, re.IGNORECASE):
                return True
        return False
