"""
FleetObserver - periodic fleet health and budget evaluation.

Each tick:
1. Agent health from heartbeats (unresponsive -> error, degraded -> warning)
2. Error-rate tracking over a rolling one-hour window per agent
3. Queue depth (low -> info, high -> warning)
4. Budget (>=90% critical + admission pause, >=75% warning, >=50% info)
5. Stuck agents (error with a restart action)
6. Overall status = highest severity among this tick's alerts

A failing sub-check is recorded as a `health-check` error alert and the
tick carries on with the remaining checks; a failed queue or budget check
is reported with an `unknown` level. Each data source runs on its own
worker thread with at most one call in flight, bounded by the tick window.
Ticks are serialized; the scheduled loop runs on a daemon thread with an
idempotent start.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, Optional, TypeVar

from swarm_fleet.alert_sink import AlertSink
from swarm_fleet.config import HealthConfig
from swarm_fleet.errors import SourceUnavailableError
from swarm_fleet.models import (
    BUDGET_CRITICAL_PERCENT,
    BUDGET_NOTICE_PERCENT,
    BUDGET_WARNING_PERCENT,
    ERROR_RATE_ERROR_THRESHOLD,
    ERROR_RATE_WARNING_THRESHOLD,
    ERROR_RATE_WINDOW_SECONDS,
    QUEUE_HIGH_THRESHOLD,
    QUEUE_LOW_THRESHOLD,
    AgentHealthSample,
    AgentStatus,
    Alert,
    AlertLevel,
    AlertSource,
    BudgetHealth,
    BudgetLevel,
    HealthCheckResult,
    OverallStatus,
    QueueHealth,
    QueueLevel,
    iso_from_epoch,
)
from swarm_fleet.notifier import ACTION_DISMISS, ACTION_RESTART_AGENT
from swarm_fleet.sources import (
    AgentErrorSource,
    HeartbeatSource,
    QueueDepthSource,
    SpendLedger,
    StuckAgentSource,
)

T = TypeVar("T")


class ErrorWindow:
    """
    Time-bounded buffer of (timestamp, message) pairs for one agent.

    Entries are kept only while now - timestamp < window_seconds. Growth is
    bounded by pruning, not by a maximum count.
    """

    def __init__(self, agent_id: str, window_seconds: float = ERROR_RATE_WINDOW_SECONDS) -> None:
        self.agent_id = agent_id
        self.window_seconds = window_seconds
        self._entries: list[tuple[float, str]] = []

    def contains(self, message: str) -> bool:
        return any(m == message for _, m in self._entries)

    def record(self, timestamp: float, message: str) -> bool:
        """
        Add an error unless the same message is already in the window.

        Returns:
            True if the error was added.
        """
        if self.contains(message):
            return False
        self._entries.append((timestamp, message))
        return True

    def prune(self, now: float) -> int:
        """Drop entries that fell out of the window. Returns how many were dropped."""
        kept = [(ts, m) for ts, m in self._entries if now - ts < self.window_seconds]
        dropped = len(self._entries) - len(kept)
        self._entries = kept
        return dropped

    @property
    def last_message(self) -> Optional[str]:
        return self._entries[-1][1] if self._entries else None

    def entries(self) -> list[tuple[float, str]]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


class FleetObserver:
    """
    Runs the fleet health evaluation and owns the admission-pause flag.

    The flag, the error windows and the alert sink are instance state, so
    several independent fleets can live in one process.
    """

    def __init__(
        self,
        heartbeats: HeartbeatSource,
        stuck_agents: StuckAgentSource,
        queue: QueueDepthSource,
        spend: SpendLedger,
        errors: Optional[AgentErrorSource] = None,
        alert_sink: Optional[AlertSink] = None,
        config: Optional[HealthConfig] = None,
        restart_agent: Optional[Callable[[str], None]] = None,
        on_admission_change: Optional[Callable[[bool], None]] = None,
        on_tick: Optional[Callable[[HealthCheckResult], None]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the observer.

        Args:
            heartbeats: Source of per-agent health samples.
            stuck_agents: Source of agents without progress.
            queue: Source of the project queue depth.
            spend: Spend ledger with daily/monthly percent used.
            errors: Optional source of per-agent error reports.
            alert_sink: Where alerts are recorded and dispatched.
            config: Health settings (interval, cooldown, timeouts).
            restart_agent: Called with an agent id when the operator picks
                the restart action on a stuck-agent notification. Runs
                after the tick has released its lock.
            on_admission_change: Called with the new value whenever the
                admission-pause flag flips.
            on_tick: Called with every completed evaluation result.
            clock: Epoch-seconds clock, injectable for tests.
        """
        self.config = config or HealthConfig()
        self.heartbeats = heartbeats
        self.stuck_agents = stuck_agents
        self.queue = queue
        self.spend = spend
        self.errors = errors
        self.alert_sink = alert_sink or AlertSink(
            cooldown_seconds=self.config.notification_cooldown_seconds,
            history_limit=self.config.alert_history_limit,
            clock=clock,
        )
        self.restart_agent = restart_agent
        self.on_admission_change = on_admission_change
        self.on_tick = on_tick
        self._clock = clock
        self._logger = logging.getLogger(__name__)

        self._tick_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._admission_paused = False
        self._error_windows: dict[str, ErrorWindow] = {}
        self._last_error_reports: dict[str, tuple[int, Optional[str]]] = {}
        self._last_result: Optional[HealthCheckResult] = None

        self._pending_calls: dict[str, Future] = {}
        self._abandoned_calls: set[str] = set()
        self._late_calls: dict[str, Future] = {}
        self._tick_calls: dict[str, object] = {}
        self._source_wait = 0.0
        self._tick_deadline = 0.0
        self._schedule_lock = threading.Lock()
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None

    # =========================================================================
    # Shared state
    # =========================================================================

    @property
    def admission_paused(self) -> bool:
        """True while new work claims are blocked by the budget."""
        with self._state_lock:
            return self._admission_paused

    def _set_admission_paused(self, paused: bool) -> None:
        with self._state_lock:
            if self._admission_paused == paused:
                return
            self._admission_paused = paused
        if paused:
            self._logger.warning("Budget limit reached, pausing new project claims")
        else:
            self._logger.info("Budget under limit, resuming project claims")
        if self.on_admission_change is not None:
            self.on_admission_change(paused)

    @property
    def last_result(self) -> Optional[HealthCheckResult]:
        return self._last_result

    def error_count(self, agent_id: str) -> int:
        with self._state_lock:
            window = self._error_windows.get(str(agent_id))
            return len(window) if window else 0

    def record_agent_error(self, agent_id: str, message: str, at: Optional[float] = None) -> bool:
        """Record an error directly into an agent's window."""
        with self._state_lock:
            window = self._error_windows.setdefault(str(agent_id), ErrorWindow(str(agent_id)))
            return window.record(self._clock() if at is None else at, message)

    # =========================================================================
    # Source access
    # =========================================================================

    def _sources(self) -> list[tuple[str, Callable[[], object]]]:
        sources = [
            ("heartbeat source", self.heartbeats.all_agent_health),
            ("queue source", self.queue.queue_depth),
            ("spend ledger", self.spend.budget_status),
            ("stuck-agent source", self.stuck_agents.detect_stuck),
        ]
        if self.errors is not None:
            sources.append(("error source", self.errors.recent_errors))
        return sources

    def _launch(self, name: str, fn: Callable[[], T]) -> Future[T]:
        """
        Start a data source call on its own daemon thread.

        Each source has at most one call in flight. A source still busy
        with a call from an earlier tick is reported unavailable without
        starting another one.

        Raises:
            SourceUnavailableError: The previous call has not returned yet.
        """
        with self._state_lock:
            pending = self._pending_calls.get(name)
            if pending is not None and not pending.done():
                raise SourceUnavailableError(
                    name, f"{name} is still busy with a previous call", timed_out=True
                )
            if pending is not None and name in self._abandoned_calls:
                self._late_calls[name] = pending
                self._abandoned_calls.discard(name)
            future: Future = Future()
            self._pending_calls[name] = future

        def run() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(fn())
            except Exception as e:
                future.set_exception(e)

        threading.Thread(target=run, name=f"fleet-source-{name}", daemon=True).start()
        return future

    def _start_source_calls(self) -> None:
        """Launch every source at the start of the tick."""
        self._tick_calls = {}
        for name, fn in self._sources():
            try:
                self._tick_calls[name] = self._launch(name, fn)
            except SourceUnavailableError as e:
                self._tick_calls[name] = e

    def _source_result(self, name: str):
        """
        Wait for a source launched this tick, up to the tick deadline.

        Raises:
            SourceUnavailableError: The source was busy or did not answer
                before the deadline.
        """
        call = self._tick_calls.pop(name)
        if isinstance(call, SourceUnavailableError):
            raise call
        try:
            return call.result(timeout=max(0.0, self._tick_deadline - time.monotonic()))
        except FutureTimeoutError:
            with self._state_lock:
                self._abandoned_calls.add(name)
            raise SourceUnavailableError(
                name, f"{name} did not respond within {self._source_wait:g}s", timed_out=True
            )

    def _take_late_result(self, name: str) -> Optional[object]:
        """Return the result of a timed-out call that completed since, once."""
        with self._state_lock:
            late = self._late_calls.pop(name, None)
        if late is None or late.exception() is not None:
            return None
        return late.result()

    # =========================================================================
    # Sub-checks
    # =========================================================================

    def _check_agent_health(self, alerts: list[Alert]) -> dict[str, AgentHealthSample]:
        samples = self._source_result("heartbeat source")

        for agent_id, sample in samples.items():
            if sample.time_since_last_heartbeat is not None:
                ago = f"{round(sample.time_since_last_heartbeat)}s ago"
            else:
                ago = "N/A"

            if sample.status == AgentStatus.UNRESPONSIVE:
                alert, _ = self.alert_sink.emit(
                    AlertLevel.ERROR,
                    f"Agent {agent_id} is unresponsive (last heartbeat: {ago})",
                    AlertSource.AGENT_HEALTH,
                    category="unresponsive",
                    agent_id=str(agent_id),
                )
                alerts.append(alert)
            elif sample.status == AgentStatus.DEGRADED:
                alerts.append(self.alert_sink.record(
                    AlertLevel.WARNING,
                    f"Agent {agent_id} is degraded (last heartbeat: {ago})",
                    AlertSource.AGENT_HEALTH,
                    category="degraded",
                    agent_id=str(agent_id),
                ))

        return {str(k): v for k, v in samples.items()}

    def _ingest_error_reports(self, now: float) -> None:
        """
        Pull error reports into the per-agent windows.

        A draining feed hands its messages over only once, so the result
        of a call that timed out is picked up on a later tick.
        """
        if self.errors is None:
            return
        late = self._take_late_result("error source")
        if late:
            self._record_error_reports(late, now)
        self._record_error_reports(self._source_result("error source"), now)

    def _record_error_reports(self, reports, now: float) -> None:
        with self._state_lock:
            for report in reports:
                agent_id = str(report.agent_id)
                fingerprint = (report.error_count, report.last_error)
                unchanged = self._last_error_reports.get(agent_id) == fingerprint
                self._last_error_reports[agent_id] = fingerprint
                if unchanged and not report.new_errors:
                    continue
                window = self._error_windows.setdefault(agent_id, ErrorWindow(agent_id))
                for message in report.messages():
                    window.record(now, message)

    def _check_error_rate(self, alerts: list[Alert], error_counts: dict[str, int]) -> None:
        now = self._clock()
        try:
            self._ingest_error_reports(now)
        finally:
            # Windows are pruned even when the error source is unavailable
            with self._state_lock:
                windows = list(self._error_windows.values())
                for window in windows:
                    window.prune(now)
                    error_counts[window.agent_id] = len(window)

        for window in windows:
            count = error_counts[window.agent_id]
            if count >= ERROR_RATE_ERROR_THRESHOLD:
                alert, _ = self.alert_sink.emit(
                    AlertLevel.ERROR,
                    f"Agent {window.agent_id} has {count} errors in the last hour "
                    f"(last error: {window.last_message or 'N/A'})",
                    AlertSource.AGENT_ERROR_RATE,
                    category="high-error-rate",
                    agent_id=window.agent_id,
                )
                alerts.append(alert)
            elif count >= ERROR_RATE_WARNING_THRESHOLD:
                alerts.append(self.alert_sink.record(
                    AlertLevel.WARNING,
                    f"Agent {window.agent_id} has {count} errors in the last hour",
                    AlertSource.AGENT_ERROR_RATE,
                    category="elevated-error-rate",
                    agent_id=window.agent_id,
                ))

    def _check_queue(self, alerts: list[Alert]) -> QueueHealth:
        depth = self._source_result("queue source").project_queue_depth

        if depth < QUEUE_LOW_THRESHOLD:
            level = QueueLevel.LOW
            alerts.append(self.alert_sink.record(
                AlertLevel.INFO,
                f"Project queue depth is low ({depth} projects)",
                AlertSource.QUEUE_DEPTH,
                category="queue-low",
            ))
        elif depth > QUEUE_HIGH_THRESHOLD:
            level = QueueLevel.HIGH
            alert, _ = self.alert_sink.emit(
                AlertLevel.WARNING,
                f"Project queue depth is high ({depth} projects). Consider pausing ideation.",
                AlertSource.QUEUE_DEPTH,
                category="queue-high",
            )
            alerts.append(alert)
        else:
            level = QueueLevel.HEALTHY

        return QueueHealth(depth=depth, level=level, last_checked=iso_from_epoch(self._clock()))

    def _check_budget(self, alerts: list[Alert]) -> BudgetHealth:
        status = self._source_result("spend ledger")
        daily = status.daily_percent_used
        monthly = status.monthly_percent_used
        peak = max(daily, monthly)
        usage = f"{daily:.1f}% daily, {monthly:.1f}% monthly"

        if peak >= BUDGET_CRITICAL_PERCENT:
            level = BudgetLevel.CRITICAL
            self._set_admission_paused(True)
            alert, _ = self.alert_sink.emit(
                AlertLevel.CRITICAL,
                f"Budget critical: {usage}. New project claims paused.",
                AlertSource.BUDGET,
                category="budget-critical",
            )
            alerts.append(alert)
        elif peak >= BUDGET_WARNING_PERCENT:
            level = BudgetLevel.WARNING
            alert, _ = self.alert_sink.emit(
                AlertLevel.WARNING,
                f"Budget warning: {usage} used.",
                AlertSource.BUDGET,
                category="budget-warning",
            )
            alerts.append(alert)
        elif peak >= BUDGET_NOTICE_PERCENT:
            level = BudgetLevel.WARNING
            alerts.append(self.alert_sink.record(
                AlertLevel.INFO,
                f"Budget notice: {usage} used.",
                AlertSource.BUDGET,
                category="budget-notice",
            ))
        else:
            level = BudgetLevel.HEALTHY
            # Only a healthy reading clears the pause
            self._set_admission_paused(False)

        return BudgetHealth(
            daily_percent_used=daily,
            monthly_percent_used=monthly,
            level=level,
            admission_paused=self.admission_paused,
            last_checked=iso_from_epoch(self._clock()),
        )

    def _check_stuck_agents(self, alerts: list[Alert], restarts: list[str]) -> None:
        stuck_agents = self._source_result("stuck-agent source")

        for stuck in stuck_agents:
            agent_id = str(stuck.agent_id)
            alert, action = self.alert_sink.emit(
                AlertLevel.ERROR,
                f"Agent {agent_id} is stuck in {stuck.current_status} state "
                f"for {stuck.stuck_duration_minutes:g} minutes",
                AlertSource.AGENT_STUCK,
                category="stuck",
                agent_id=agent_id,
                actions=(ACTION_RESTART_AGENT, ACTION_DISMISS),
            )
            alerts.append(alert)
            if action == ACTION_RESTART_AGENT:
                self._logger.info(f"Restart agent action triggered for {agent_id}")
                restarts.append(agent_id)
            elif action == ACTION_DISMISS:
                self.alert_sink.dismiss(alert.id)

    def _check_failed(self, check: str, error: Exception, alerts: list[Alert]) -> None:
        self._logger.error(f"Health check '{check}' failed: {error}")
        alerts.append(self.alert_sink.record(
            AlertLevel.ERROR,
            f"Health check failed ({check}): {str(error) or type(error).__name__}",
            AlertSource.HEALTH_CHECK,
            category="check-failed",
        ))

    # =========================================================================
    # Evaluation
    # =========================================================================

    def run_health_check(self) -> HealthCheckResult:
        """
        Run one evaluation tick.

        Ticks never overlap: a concurrent caller waits for the running tick.
        `on_tick` and `on_admission_change` run inside the tick and must not
        start another one. Restart requests are handed to `restart_agent`
        after the tick has finished, so that callback may trigger a tick.
        """
        restarts: list[str] = []
        with self._tick_lock:
            result = self._evaluate(restarts)
            if self.on_tick is not None:
                try:
                    self.on_tick(result)
                except Exception:
                    self._logger.exception("Health check listener failed")

        if self.restart_agent is not None:
            for agent_id in restarts:
                try:
                    self.restart_agent(agent_id)
                except Exception:
                    self._logger.exception(f"Restart of agent {agent_id} failed")
        return result

    def _evaluate(self, restarts: list[str]) -> HealthCheckResult:
        started = time.monotonic()
        self._source_wait = min(self.config.source_timeout_seconds, self.config.tick_budget_seconds)
        self._tick_deadline = started + self._source_wait
        self._start_source_calls()
        self._logger.debug("Running health check...")

        alerts: list[Alert] = []
        agent_health: dict[str, AgentHealthSample] = {}
        error_counts: dict[str, int] = {}
        # Reported as-is when the matching check fails
        queue_health = QueueHealth(
            level=QueueLevel.UNKNOWN,
            last_checked=iso_from_epoch(self._clock()),
        )
        budget_health = BudgetHealth(
            level=BudgetLevel.UNKNOWN,
            admission_paused=self.admission_paused,
            last_checked=iso_from_epoch(self._clock()),
        )

        try:
            agent_health = self._check_agent_health(alerts)
        except Exception as e:
            self._check_failed("agent health", e, alerts)

        try:
            self._check_error_rate(alerts, error_counts)
        except Exception as e:
            self._check_failed("error rate", e, alerts)

        try:
            queue_health = self._check_queue(alerts)
        except Exception as e:
            self._check_failed("queue depth", e, alerts)

        try:
            budget_health = self._check_budget(alerts)
        except Exception as e:
            self._check_failed("budget", e, alerts)

        try:
            self._check_stuck_agents(alerts, restarts)
        except Exception as e:
            self._check_failed("stuck agents", e, alerts)

        overall = OverallStatus.from_alerts(alerts)
        duration = time.monotonic() - started
        if duration > self.config.tick_budget_seconds:
            self._logger.warning(
                f"Health check took {duration:.2f}s, exceeding {self.config.tick_budget_seconds}s budget"
            )
        self._logger.info(f"Health check completed in {duration * 1000:.0f}ms, status: {overall.value}")

        result = HealthCheckResult(
            timestamp=iso_from_epoch(self._clock()),
            agent_health=agent_health,
            queue_health=queue_health,
            budget_health=budget_health,
            overall_status=overall,
            alerts=alerts,
            error_counts=error_counts,
            duration_seconds=duration,
        )
        self._last_result = result
        return result

    # =========================================================================
    # Scheduling
    # =========================================================================

    @property
    def is_running(self) -> bool:
        with self._schedule_lock:
            return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        """
        Start periodic evaluation on a background thread.

        Returns:
            False if monitoring was already running (no second loop is created).
        """
        with self._schedule_lock:
            if self._thread is not None and self._thread.is_alive():
                self._logger.info("Health monitoring already running")
                return False
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run_loop,
                args=(self._stop_event,),
                name="fleet-observer",
                daemon=True,
            )
            self._logger.info(
                f"Starting health monitoring (interval: {self.config.check_interval_seconds}s)"
            )
            self._thread.start()
            return True

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop periodic evaluation and wait for the loop to exit."""
        with self._schedule_lock:
            thread, stop_event = self._thread, self._stop_event
            self._thread = None
            self._stop_event = None
        if thread is None or stop_event is None:
            return
        stop_event.set()
        if thread is not threading.current_thread():
            thread.join(timeout)
        self._logger.info("Stopped health monitoring")

    def close(self) -> None:
        """Stop the loop and forget in-flight source calls."""
        self.stop()
        with self._state_lock:
            self._pending_calls.clear()
            self._abandoned_calls.clear()
            self._late_calls.clear()

    def _run_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            try:
                self.run_health_check()
            except Exception:
                self._logger.exception("Unexpected failure in health check loop")
            if stop_event.wait(self.config.check_interval_seconds):
                break
