"""
Core data models for Swarm Fleet.

This module defines the structures exchanged between the branch coordinator,
the fleet observer and the orchestrator:
- AgentBranch and the results of branch operations
- Health samples, alerts and budget state for the evaluation loop
- Classification constants shared by the control loop
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


# Conflicts touching fewer files than this are eligible for auto-remediation
MINOR_CONFLICT_FILE_LIMIT = 5

# Error-rate thresholds (errors within the rolling window)
ERROR_RATE_WINDOW_SECONDS = 3600.0
ERROR_RATE_WARNING_THRESHOLD = 3
ERROR_RATE_ERROR_THRESHOLD = 10

# Queue depth thresholds (projects waiting)
QUEUE_LOW_THRESHOLD = 3
QUEUE_HIGH_THRESHOLD = 10

# Budget thresholds (percent of daily/monthly limit)
BUDGET_NOTICE_PERCENT = 50.0
BUDGET_WARNING_PERCENT = 75.0
BUDGET_CRITICAL_PERCENT = 90.0

# Conflict escalation lists at most this many files
ESCALATION_FILE_LIMIT = 10

# Short-status codes for paths modified on both sides of a merge
CONFLICT_STATUS_CODES = ("UU", "AA", "DD", "AU", "UA", "DU", "UD")


def now_iso() -> str:
    """Get current timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def iso_from_epoch(epoch: float) -> str:
    """Format an epoch timestamp the same way as now_iso()."""
    return datetime.fromtimestamp(epoch, timezone.utc).isoformat().replace("+00:00", "Z")


class AgentStatus(Enum):
    """Liveness classification of an agent, derived from its heartbeat."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNRESPONSIVE = "unresponsive"


class AlertLevel(Enum):
    """Severity of an alert, in ascending order."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]


_LEVEL_RANK = {
    AlertLevel.INFO: 0,
    AlertLevel.WARNING: 1,
    AlertLevel.ERROR: 2,
    AlertLevel.CRITICAL: 3,
}


class OverallStatus(Enum):
    """Fleet status reported by one evaluation tick."""
    HEALTHY = "healthy"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @classmethod
    def from_alerts(cls, alerts: list[Alert]) -> OverallStatus:
        """
        Highest severity among the given alerts.

        Info alerts are dashboard-only and never raise the status.
        """
        worst: Optional[AlertLevel] = None
        for alert in alerts:
            if alert.level == AlertLevel.INFO:
                continue
            if worst is None or alert.level.rank > worst.rank:
                worst = alert.level
        if worst is None:
            return cls.HEALTHY
        return cls(worst.value)


class QueueLevel(Enum):
    """Classification of the project queue depth."""
    LOW = "low"
    HEALTHY = "healthy"
    HIGH = "high"
    UNKNOWN = "unknown"  # queue check failed this tick


class BudgetLevel(Enum):
    """Classification of spend against the daily/monthly limits."""
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    UNKNOWN = "unknown"  # budget check failed this tick


class AlertSource:
    """Alert source constants."""
    AGENT_HEALTH = "agent-health"
    AGENT_ERROR_RATE = "agent-error-rate"
    AGENT_STUCK = "agent-stuck"
    QUEUE_DEPTH = "queue-depth"
    BUDGET = "budget"
    HEALTH_CHECK = "health-check"
    BRANCH_CONFLICT = "branch-conflict"


# =============================================================================
# Branches
# =============================================================================


@dataclass(frozen=True)
class AgentBranch:
    """
    Identity of a per-agent branch.

    Branch naming convention: agent-{agent_id}/project-{issue_number}
    """
    agent_id: int
    issue_number: int

    def __post_init__(self) -> None:
        for label, value in (("agent_id", self.agent_id), ("issue_number", self.issue_number)):
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{label} must be an integer, got {value!r}")
            if value <= 0:
                raise ValueError(f"{label} must be positive, got {value}")

    @property
    def name(self) -> str:
        return f"agent-{self.agent_id}/project-{self.issue_number}"

    def __str__(self) -> str:
        return self.name


@dataclass
class BranchResult:
    """Result of a branch creation or push."""
    success: bool
    branch_name: str
    message: Optional[str] = None
    error: Optional[str] = None
    elapsed_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


@dataclass(frozen=True)
class ConflictReport:
    """
    Result of a divergence check against the baseline branch.

    Produced once per check and never mutated afterwards.
    """
    has_conflicts: bool
    conflicting_files: tuple[str, ...] = ()
    is_minor: bool = False
    auto_remediation_attempted: bool = False
    auto_remediation_succeeded: bool = False
    message: Optional[str] = None
    error: Optional[str] = None

    @staticmethod
    def classify_minor(conflicting_files: list[str] | tuple[str, ...]) -> bool:
        """True iff the conflict touches at least one and fewer than five files."""
        return 0 < len(conflicting_files) < MINOR_CONFLICT_FILE_LIMIT

    @property
    def needs_manual_resolution(self) -> bool:
        return self.has_conflicts

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["conflicting_files"] = list(self.conflicting_files)
        return data


# =============================================================================
# Health data supplied by collaborators
# =============================================================================


@dataclass(frozen=True)
class AgentHealthSample:
    """Heartbeat-derived health of one agent."""
    agent_id: str
    status: AgentStatus
    last_heartbeat: Optional[str] = None
    time_since_last_heartbeat: Optional[float] = None  # seconds

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "status": self.status.value,
            "last_heartbeat": self.last_heartbeat,
            "time_since_last_heartbeat": self.time_since_last_heartbeat,
        }


@dataclass(frozen=True)
class StuckAgentInfo:
    """An agent in a working state that has stopped making progress."""
    agent_id: str
    current_status: str
    stuck_duration_minutes: float


@dataclass(frozen=True)
class AgentErrorReport:
    """Error counters reported for one agent, with messages seen since the last read."""
    agent_id: str
    error_count: int = 0
    last_error: Optional[str] = None
    new_errors: tuple[str, ...] = ()

    def messages(self) -> tuple[str, ...]:
        """Messages to consider this tick; falls back to last_error."""
        if self.new_errors:
            return self.new_errors
        if self.error_count > 0 and self.last_error:
            return (self.last_error,)
        return ()


@dataclass(frozen=True)
class QueueDepth:
    """Number of projects waiting to be claimed."""
    project_queue_depth: int


@dataclass(frozen=True)
class BudgetStatus:
    """Spend against limits, as reported by the spend ledger."""
    daily_percent_used: float
    monthly_percent_used: float
    daily_spend: float = 0.0
    monthly_spend: float = 0.0
    daily_limit: float = 0.0
    monthly_limit: float = 0.0


# =============================================================================
# Alerts
# =============================================================================


@dataclass(frozen=True)
class AlertId:
    """Structured alert identifier: source, category and a sequence number."""
    source: str
    category: str
    sequence: int

    def __str__(self) -> str:
        return f"{self.source}/{self.category}/{self.sequence:06d}"


@dataclass
class Alert:
    """
    A classified event produced by the fleet observer.

    Only `dismissed` changes after creation.
    """
    id: AlertId
    level: AlertLevel
    message: str
    source: str
    timestamp: str
    dismissed: bool = False
    agent_id: Optional[str] = None
    actions: tuple[str, ...] = ()

    @property
    def category(self) -> str:
        return self.id.category

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": str(self.id),
            "level": self.level.value,
            "message": self.message,
            "source": self.source,
            "timestamp": self.timestamp,
            "dismissed": self.dismissed,
            "agent_id": self.agent_id,
            "actions": list(self.actions),
        }


# =============================================================================
# Evaluation results
# =============================================================================


@dataclass
class QueueHealth:
    """Queue depth classification for one tick."""
    depth: int = 0
    level: QueueLevel = QueueLevel.HEALTHY
    last_checked: str = field(default_factory=now_iso)


@dataclass
class BudgetHealth:
    """Budget classification for one tick."""
    daily_percent_used: float = 0.0
    monthly_percent_used: float = 0.0
    level: BudgetLevel = BudgetLevel.HEALTHY
    admission_paused: bool = False
    last_checked: str = field(default_factory=now_iso)

    @property
    def peak_percent_used(self) -> float:
        return max(self.daily_percent_used, self.monthly_percent_used)


@dataclass
class HealthCheckResult:
    """Everything one evaluation tick observed."""
    timestamp: str
    agent_health: dict[str, AgentHealthSample]
    queue_health: QueueHealth
    budget_health: BudgetHealth
    overall_status: OverallStatus
    alerts: list[Alert]
    error_counts: dict[str, int] = field(default_factory=dict)
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "timestamp": self.timestamp,
            "agent_health": {k: v.to_dict() for k, v in self.agent_health.items()},
            "queue_health": {
                "depth": self.queue_health.depth,
                "level": self.queue_health.level.value,
                "last_checked": self.queue_health.last_checked,
            },
            "budget_health": {
                "daily_percent_used": self.budget_health.daily_percent_used,
                "monthly_percent_used": self.budget_health.monthly_percent_used,
                "level": self.budget_health.level.value,
                "admission_paused": self.budget_health.admission_paused,
                "last_checked": self.budget_health.last_checked,
            },
            "overall_status": self.overall_status.value,
            "alerts": [a.to_dict() for a in self.alerts],
            "error_counts": dict(self.error_counts),
            "duration_seconds": self.duration_seconds,
        }
