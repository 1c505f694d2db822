"""
Health data sources consumed by the fleet observer.

This module provides:
- Protocols for the heartbeat, stuck-agent, error, queue and spend sources
- In-process implementations used by the orchestrator and the CLI
- FleetSnapshot for loading every source from a JSON/YAML file

Timestamps are epoch seconds; each implementation takes an injectable clock.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional, Protocol, Union

import yaml
from filelock import FileLock, Timeout

from swarm_fleet.errors import SourceUnavailableError
from swarm_fleet.models import (
    AgentErrorReport,
    AgentHealthSample,
    AgentStatus,
    BudgetStatus,
    QueueDepth,
    StuckAgentInfo,
    iso_from_epoch,
)


Clock = Callable[[], float]


# =============================================================================
# Collaborator contracts
# =============================================================================


class HeartbeatSource(Protocol):
    def all_agent_health(self) -> dict[str, AgentHealthSample]:
        ...


class StuckAgentSource(Protocol):
    def detect_stuck(self) -> list[StuckAgentInfo]:
        ...


class AgentErrorSource(Protocol):
    def recent_errors(self) -> list[AgentErrorReport]:
        ...


class QueueDepthSource(Protocol):
    def queue_depth(self) -> QueueDepth:
        ...


class SpendLedger(Protocol):
    def budget_status(self) -> BudgetStatus:
        ...


# =============================================================================
# Heartbeats
# =============================================================================


class HeartbeatRegistry:
    """
    Tracks the last heartbeat of every agent and classifies liveness.

    healthy:      silent for less than degraded_after seconds
    degraded:     silent for at least degraded_after seconds
    unresponsive: silent for at least unresponsive_after seconds
    """

    def __init__(
        self,
        degraded_after: float = 60.0,
        unresponsive_after: float = 120.0,
        clock: Clock = time.time,
    ) -> None:
        if degraded_after > unresponsive_after:
            raise ValueError("degraded_after must not exceed unresponsive_after")
        self.degraded_after = degraded_after
        self.unresponsive_after = unresponsive_after
        self._clock = clock
        self._lock = threading.Lock()
        self._beats: dict[str, float] = {}

    def beat(self, agent_id: str, at: Optional[float] = None) -> None:
        """Record a heartbeat for an agent."""
        with self._lock:
            self._beats[str(agent_id)] = self._clock() if at is None else at

    def forget(self, agent_id: str) -> None:
        with self._lock:
            self._beats.pop(str(agent_id), None)

    def classify(self, silence_seconds: float) -> AgentStatus:
        if silence_seconds >= self.unresponsive_after:
            return AgentStatus.UNRESPONSIVE
        if silence_seconds >= self.degraded_after:
            return AgentStatus.DEGRADED
        return AgentStatus.HEALTHY

    def all_agent_health(self) -> dict[str, AgentHealthSample]:
        now = self._clock()
        with self._lock:
            beats = dict(self._beats)
        samples = {}
        for agent_id, last in beats.items():
            silence = max(0.0, now - last)
            samples[agent_id] = AgentHealthSample(
                agent_id=agent_id,
                status=self.classify(silence),
                last_heartbeat=iso_from_epoch(last),
                time_since_last_heartbeat=silence,
            )
        return samples


# =============================================================================
# Progress / stuck detection
# =============================================================================


# Agent statuses that are expected to make progress
WORKING_STATUSES = frozenset(["working", "claiming", "reviewing"])


@dataclass
class _Progress:
    status: str
    last_progress: float


class ProgressTracker:
    """Detects agents in a working status that stopped making progress."""

    def __init__(self, stuck_after_minutes: float = 30.0, clock: Clock = time.time) -> None:
        self.stuck_after_minutes = stuck_after_minutes
        self._clock = clock
        self._lock = threading.Lock()
        self._agents: dict[str, _Progress] = {}

    def update(self, agent_id: str, status: str, at: Optional[float] = None) -> None:
        """Record that an agent moved to a status (or made progress in it)."""
        with self._lock:
            self._agents[str(agent_id)] = _Progress(
                status=status,
                last_progress=self._clock() if at is None else at,
            )

    def forget(self, agent_id: str) -> None:
        with self._lock:
            self._agents.pop(str(agent_id), None)

    def detect_stuck(self) -> list[StuckAgentInfo]:
        now = self._clock()
        with self._lock:
            agents = dict(self._agents)
        stuck = []
        for agent_id, progress in sorted(agents.items()):
            if progress.status not in WORKING_STATUSES:
                continue
            minutes = (now - progress.last_progress) / 60.0
            if minutes >= self.stuck_after_minutes:
                stuck.append(StuckAgentInfo(
                    agent_id=agent_id,
                    current_status=progress.status,
                    stuck_duration_minutes=round(minutes, 1),
                ))
        return stuck


# =============================================================================
# Errors and queue
# =============================================================================


class ErrorFeed:
    """
    Errors reported by agent sessions.

    recent_errors() hands out the messages reported since the previous call
    (drain semantics) together with each agent's lifetime counters. Drained
    messages exist only in the returned reports; FleetObserver keeps the
    result of a call that outlives its timeout for the next tick.
    """

    def __init__(self, drain: bool = True) -> None:
        self.drain = drain
        self._lock = threading.Lock()
        self._counts: dict[str, int] = {}
        self._last: dict[str, str] = {}
        self._pending: dict[str, list[str]] = {}

    def report(self, agent_id: str, message: str) -> None:
        """Record a new error for an agent."""
        key = str(agent_id)
        with self._lock:
            self._counts[key] = self._counts.get(key, 0) + 1
            self._last[key] = message
            self._pending.setdefault(key, []).append(message)

    def recent_errors(self) -> list[AgentErrorReport]:
        with self._lock:
            reports = [
                AgentErrorReport(
                    agent_id=agent_id,
                    error_count=count,
                    last_error=self._last.get(agent_id),
                    new_errors=tuple(self._pending.get(agent_id, [])),
                )
                for agent_id, count in self._counts.items()
            ]
            if self.drain:
                self._pending.clear()
        return reports


class WorkQueue:
    """In-memory queue of issue numbers waiting to be claimed."""

    def __init__(self, issues: Optional[list[int]] = None) -> None:
        self._lock = threading.Lock()
        self._issues: list[int] = list(issues or [])

    def enqueue(self, issue_number: int) -> None:
        with self._lock:
            if issue_number not in self._issues:
                self._issues.append(issue_number)

    def claim(self) -> Optional[int]:
        """Pop the oldest queued issue, or None when empty."""
        with self._lock:
            if not self._issues:
                return None
            return self._issues.pop(0)

    def queue_depth(self) -> QueueDepth:
        with self._lock:
            return QueueDepth(project_queue_depth=len(self._issues))


# =============================================================================
# Spend
# =============================================================================


# USD per million tokens
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "sonnet": (3.0, 15.0),
    "opus": (15.0, 75.0),
    "haiku": (0.25, 1.25),
}

# Assumed cost of a request whose model has no pricing entry
FALLBACK_COST_PER_REQUEST = 0.50


class CostLedger:
    """
    JSON cost log with daily and monthly budget accounting.

    Log file format (JSON):
    {
        "entries": [
            {"timestamp": "2024-12-17T10:00:00Z", "agent_id": "1",
             "issue_number": 42, "model": "sonnet",
             "input_tokens": 1000, "output_tokens": 200, "cost_usd": 0.006}
        ]
    }
    """

    def __init__(
        self,
        log_path: Union[str, Path],
        daily_limit_usd: float = 50.0,
        monthly_limit_usd: float = 1000.0,
        clock: Clock = time.time,
    ) -> None:
        if daily_limit_usd <= 0 or monthly_limit_usd <= 0:
            raise ValueError("budget limits must be positive")
        self.log_path = Path(log_path)
        self.daily_limit_usd = daily_limit_usd
        self.monthly_limit_usd = monthly_limit_usd
        self._clock = clock
        self._lock_path = self.log_path.with_suffix(".lock")
        self._logger = logging.getLogger(__name__)

    @staticmethod
    def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
        pricing = MODEL_PRICING.get(model)
        if pricing is None:
            return FALLBACK_COST_PER_REQUEST
        input_price, output_price = pricing
        return (input_tokens / 1_000_000) * input_price + (output_tokens / 1_000_000) * output_price

    def _read(self) -> dict[str, Any]:
        if not self.log_path.exists():
            return {"entries": []}
        try:
            data = json.loads(self.log_path.read_text())
        except (json.JSONDecodeError, OSError) as e:
            self._logger.error(f"Error reading cost log {self.log_path}: {e}")
            return {"entries": []}
        if not isinstance(data, dict) or not isinstance(data.get("entries"), list):
            return {"entries": []}
        return data

    def _write(self, data: dict[str, Any]) -> None:
        # Atomic write using temp file + rename
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.log_path.with_suffix(".tmp")
        temp_path.write_text(json.dumps(data, indent=2))
        temp_path.replace(self.log_path)

    def record_usage(
        self,
        agent_id: str,
        issue_number: int,
        model: str,
        input_tokens: int,
        output_tokens: int,
    ) -> float:
        """Append a usage entry and return its cost in USD."""
        cost = self.calculate_cost(model, input_tokens, output_tokens)
        entry = {
            "timestamp": iso_from_epoch(self._clock()),
            "agent_id": str(agent_id),
            "issue_number": issue_number,
            "model": model,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "cost_usd": cost,
        }
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            # Agents in other processes append to the same log
            with FileLock(self._lock_path, timeout=10):
                data = self._read()
                data["entries"].append(entry)
                self._write(data)
        except Timeout:
            self._logger.error(f"Timeout acquiring lock for cost log {self.log_path}")
            raise SourceUnavailableError(
                "spend ledger", f"Timeout acquiring lock for cost log {self.log_path}", timed_out=True
            )
        self._logger.info(f"Logged usage: agent={agent_id} issue={issue_number} cost=${cost:.4f}")
        return cost

    def _spend_with_prefix(self, prefix: str) -> float:
        entries = self._read()["entries"]
        return sum(
            float(e.get("cost_usd", 0.0))
            for e in entries
            if str(e.get("timestamp", "")).startswith(prefix)
        )

    def daily_spend(self) -> float:
        today = datetime.fromtimestamp(self._clock(), timezone.utc).strftime("%Y-%m-%d")
        return self._spend_with_prefix(today)

    def monthly_spend(self) -> float:
        month = datetime.fromtimestamp(self._clock(), timezone.utc).strftime("%Y-%m")
        return self._spend_with_prefix(month)

    def budget_status(self) -> BudgetStatus:
        daily = self.daily_spend()
        monthly = self.monthly_spend()
        return BudgetStatus(
            daily_percent_used=daily / self.daily_limit_usd * 100.0,
            monthly_percent_used=monthly / self.monthly_limit_usd * 100.0,
            daily_spend=daily,
            monthly_spend=monthly,
            daily_limit=self.daily_limit_usd,
            monthly_limit=self.monthly_limit_usd,
        )


# =============================================================================
# Snapshot files
# =============================================================================


class SnapshotError(Exception):
    """Raised when a fleet snapshot file cannot be loaded."""
    pass


class FleetSnapshot:
    """
    Static fleet state loaded from a file, serving every source protocol.

    Snapshot format (YAML or JSON):

        agents:
          "1": {seconds_since_heartbeat: 30, status: working,
                minutes_without_progress: 5, errors: ["boom"]}
        queue_depth: 4
        budget: {daily_percent_used: 40, monthly_percent_used: 20}
    """

    def __init__(
        self,
        data: dict[str, Any],
        degraded_after: float = 60.0,
        unresponsive_after: float = 120.0,
        stuck_after_minutes: float = 30.0,
        clock: Clock = time.time,
    ) -> None:
        self._now = clock()
        self.heartbeats = HeartbeatRegistry(degraded_after, unresponsive_after, clock=lambda: self._now)
        self.progress = ProgressTracker(stuck_after_minutes, clock=lambda: self._now)
        self.errors = ErrorFeed(drain=False)
        agents = data.get("agents") or {}
        if not isinstance(agents, dict):
            raise SnapshotError("'agents' must be a mapping of agent id to state")
        for agent_id, state in agents.items():
            state = state or {}
            if "seconds_since_heartbeat" in state:
                self.heartbeats.beat(str(agent_id), at=self._now - float(state["seconds_since_heartbeat"]))
            if "status" in state:
                minutes = float(state.get("minutes_without_progress", 0))
                self.progress.update(str(agent_id), str(state["status"]), at=self._now - minutes * 60)
            for message in state.get("errors") or []:
                self.errors.report(str(agent_id), str(message))
        self._queue_depth = int(data.get("queue_depth", 0))
        budget = data.get("budget") or {}
        self._budget = BudgetStatus(
            daily_percent_used=float(budget.get("daily_percent_used", 0.0)),
            monthly_percent_used=float(budget.get("monthly_percent_used", 0.0)),
        )

    @classmethod
    def load(cls, path: Union[str, Path], **kwargs: Any) -> FleetSnapshot:
        path = Path(path)
        if not path.exists():
            raise SnapshotError(f"Snapshot file not found: {path}")
        try:
            text = path.read_text()
            data = json.loads(text) if path.suffix == ".json" else yaml.safe_load(text)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise SnapshotError(f"Invalid snapshot file {path}: {e}")
        if not isinstance(data, dict):
            raise SnapshotError(f"Snapshot file {path} must contain a mapping")
        return cls(data, **kwargs)

    def all_agent_health(self) -> dict[str, AgentHealthSample]:
        return self.heartbeats.all_agent_health()

    def detect_stuck(self) -> list[StuckAgentInfo]:
        return self.progress.detect_stuck()

    def recent_errors(self) -> list[AgentErrorReport]:
        return self.errors.recent_errors()

    def queue_depth(self) -> QueueDepth:
        return QueueDepth(project_queue_depth=self._queue_depth)

    def budget_status(self) -> BudgetStatus:
        return self._budget
