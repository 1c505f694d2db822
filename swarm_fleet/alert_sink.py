"""
AlertSink - rate-limited notification dispatch with bounded history.

This module provides:
- Alert creation with structured identifiers (source, category, sequence)
- Append-only history capped at a fixed size, oldest evicted first
- Per (source, level) cooldown that suppresses repeated dispatch
- Dismissal in place without removing the alert from history
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Callable, Optional, Sequence

from swarm_fleet.models import Alert, AlertId, AlertLevel, iso_from_epoch
from swarm_fleet.notifier import Notifier


DEFAULT_HISTORY_LIMIT = 100
DEFAULT_COOLDOWN_SECONDS = 300.0


class AlertSink:
    """
    Records alerts and dispatches the ones that warrant a notification.

    Suppression by cooldown affects dispatch only; every alert is recorded.
    All shared state is guarded by one re-entrant lock so concurrent ticks
    and dispatches cannot race on the history or the cooldown map.
    """

    def __init__(
        self,
        notifier: Optional[Notifier] = None,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the sink.

        Args:
            notifier: Where dispatched alerts go. None records only.
            cooldown_seconds: Minimum gap between dispatches of one (source, level).
            history_limit: Maximum alerts retained.
            clock: Epoch-seconds clock, injectable for tests.
        """
        if history_limit <= 0:
            raise ValueError(f"history_limit must be positive, got {history_limit}")
        self.notifier = notifier
        self.cooldown_seconds = cooldown_seconds
        self.history_limit = history_limit
        self._clock = clock
        self._lock = threading.RLock()
        self._history: deque[Alert] = deque(maxlen=history_limit)
        self._last_dispatch: dict[tuple[str, AlertLevel], float] = {}
        self._sequence = 0
        self._logger = logging.getLogger(__name__)

    def _next_id(self, source: str, category: str) -> AlertId:
        with self._lock:
            self._sequence += 1
            return AlertId(source=source, category=category, sequence=self._sequence)

    def record(
        self,
        level: AlertLevel,
        message: str,
        source: str,
        category: str = "general",
        agent_id: Optional[str] = None,
        actions: Sequence[str] = (),
    ) -> Alert:
        """Create an alert and append it to history without dispatching."""
        with self._lock:
            alert = Alert(
                id=self._next_id(source, category),
                level=level,
                message=message,
                source=source,
                timestamp=iso_from_epoch(self._clock()),
                agent_id=agent_id,
                actions=tuple(actions),
            )
            self._history.append(alert)
        self._logger.debug(f"Recorded alert {alert.id}: {message}")
        return alert

    def emit(
        self,
        level: AlertLevel,
        message: str,
        source: str,
        category: str = "general",
        agent_id: Optional[str] = None,
        actions: Sequence[str] = (),
    ) -> tuple[Alert, Optional[str]]:
        """
        Record an alert and dispatch it unless its (source, level) is cooling down.

        Returns:
            The alert and the action chosen by the operator, if any.
        """
        alert = self.record(level, message, source, category, agent_id, actions)
        return alert, self.dispatch(alert)

    def can_dispatch(self, source: str, level: AlertLevel) -> bool:
        """Check if the cooldown for (source, level) has elapsed."""
        with self._lock:
            last = self._last_dispatch.get((source, level))
            if last is None:
                return True
            return self._clock() - last >= self.cooldown_seconds

    def dispatch(self, alert: Alert) -> Optional[str]:
        """
        Send an already-recorded alert to the notifier, honoring the cooldown.

        Info alerts are dashboard-only and never dispatched.
        """
        if alert.level == AlertLevel.INFO:
            return None

        with self._lock:
            if not self.can_dispatch(alert.source, alert.level):
                self._logger.info(f"Skipping notification (cooldown): {alert.message}")
                return None
            self._last_dispatch[(alert.source, alert.level)] = self._clock()

        if self.notifier is None:
            return None
        # Notifier runs outside the lock; an interactive one may block on the operator
        return self.notifier.notify(alert.level, alert.message, alert.source, alert.actions)

    def history(self) -> list[Alert]:
        """Snapshot of the alert history, oldest first."""
        with self._lock:
            return list(self._history)

    def active(self) -> list[Alert]:
        """Alerts not yet dismissed, oldest first."""
        with self._lock:
            return [a for a in self._history if not a.dismissed]

    def find(self, alert_id: AlertId | str) -> Optional[Alert]:
        key = str(alert_id)
        with self._lock:
            for alert in self._history:
                if str(alert.id) == key:
                    return alert
        return None

    def dismiss(self, alert_id: AlertId | str) -> bool:
        """
        Mark an alert dismissed in place.

        Returns:
            True if the alert was found in history.
        """
        with self._lock:
            alert = self.find(alert_id)
            if alert is None:
                return False
            alert.dismissed = True
        self._logger.info(f"Dismissed alert: {alert_id}")
        return True

    def clear(self) -> None:
        """Drop all history and cooldown state. Useful for testing."""
        with self._lock:
            self._history.clear()
            self._last_dispatch.clear()
        self._logger.info("Cleared all alerts")

    def __len__(self) -> int:
        with self._lock:
            return len(self._history)
